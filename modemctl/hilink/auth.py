"""HiLink handshake, password encoding and login.

Login sequence (password_type 4):

1. GET /api/webserver/SesTokInfo -> TokInfo (token) + SessionID cookie
2. GET /api/user/state-login with that cookie -> password_type
3. POST /api/user/login with Username, encoded Password, password_type,
   the handshake token in __RequestVerificationToken and the cookie
4. "<response>OK</response>" -> new SessionID from Set-Cookie and the next
   token from the __RequestVerificationToken response header

Password = b64(sha256_hex(username + b64(sha256_hex(password)) + token)),
where both base64 steps encode the ASCII hex string, not the raw digest.
"""

import base64
import enum
import hashlib
import logging
from dataclasses import dataclass
from xml.sax.saxutils import escape

from . import transport
from .session import ModemConfig, ModemSession, VerificationToken
from .xmlfields import error_code, extract_field, has_error, is_ok
from ..errors import AuthFailed, LoginFailure, ProtocolError

log = logging.getLogger("modemctl.hilink.auth")

DEFAULT_PASSWORD_TYPE = "4"

LOGIN_ERROR_CODES = {
    "108001": LoginFailure.BAD_USERNAME,
    "108002": LoginFailure.BAD_PASSWORD,
    "108003": LoginFailure.SESSION_CONFLICT,   # already logged in
    "108005": LoginFailure.SESSION_CONFLICT,   # too many sessions
    "108006": LoginFailure.BAD_CREDENTIALS,
    "108007": LoginFailure.RATE_LIMITED,
    "108009": LoginFailure.SESSION_CONFLICT,   # logged in on another device
    "108010": LoginFailure.RATE_LIMITED,
    "125001": LoginFailure.INVALID_TOKEN,
    "125002": LoginFailure.INVALID_TOKEN,
    "125003": LoginFailure.INVALID_TOKEN,
}


@dataclass
class Handshake:
    token: VerificationToken
    session: str


def _b64_sha256_hex(data: str) -> str:
    digest = hashlib.sha256(data.encode("utf-8")).hexdigest()
    return base64.b64encode(digest.encode("ascii")).decode("ascii")


def encode_password(username: str, password: str, token: str) -> str:
    """Encode credentials for a password_type 4 login. Pure."""
    return _b64_sha256_hex(username + _b64_sha256_hex(password) + token)


def acquire_handshake(ip: str, cookie: str | None = None, timeout: float = 10) -> Handshake:
    """Fetch a fresh verification token and session id.

    With ``cookie`` the token is requested for an existing session.
    Raises ``ProtocolError`` when the device sends no TokInfo (not a HiLink
    device, or an unsupported firmware) and ``DeviceUnreachable`` on
    network failure.
    """
    r = transport.get(ip, "webserver/SesTokInfo", cookie=cookie, timeout=timeout)
    body = r.text or ""
    token = extract_field(body, "TokInfo")
    if not token:
        raise ProtocolError(f"No TokInfo in SesTokInfo response from {ip}")

    session = transport.cookie_from_response(r)
    if not session:
        ses_info = extract_field(body, "SesInfo")
        if ses_info:
            session = ses_info if ses_info.startswith("SessionID=") else f"SessionID={ses_info}"
    if not session and cookie:
        session = cookie
    return Handshake(token=VerificationToken(token), session=session)


def classify_login_error(body: str) -> AuthFailed:
    """Map a login error envelope to ``AuthFailed``. Unknown codes map to UNKNOWN."""
    code = error_code(body)
    reason = LOGIN_ERROR_CODES.get(code, LoginFailure.UNKNOWN)
    wait = extract_field(body, "waittime")
    wait_time = int(wait) if wait.isdigit() else None
    return AuthFailed(reason, code=code, wait_time=wait_time)


class LoginState(enum.Enum):
    NO_SESSION = "no_session"
    HANDSHAKE_DONE = "handshake_done"
    PASSWORD_TYPE_RESOLVED = "password_type_resolved"
    LOGIN_SUBMITTED = "login_submitted"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class LoginAttempt:
    """One pass through the HiLink login state machine.

    ``run()`` returns the authenticated ``ModemSession`` or raises; in both
    cases ``state`` ends in AUTHENTICATED or FAILED and ``error`` holds the
    failure, if any.
    """

    def __init__(self, config: ModemConfig, timeout: float = 10):
        self.config = config
        self.timeout = timeout
        self.state = LoginState.NO_SESSION
        self.error = None
        self.handshake = None
        self.password_type = None

    def _advance(self, state):
        log.debug("Login %s: %s -> %s", self.config.ip, self.state.value, state.value)
        self.state = state

    def run(self) -> ModemSession:
        try:
            return self._run()
        except Exception as e:
            self.error = e
            self._advance(LoginState.FAILED)
            log.warning("Login to %s failed: %s", self.config.ip, e)
            raise

    def _run(self) -> ModemSession:
        ip = self.config.ip

        self.handshake = acquire_handshake(ip, timeout=self.timeout)
        self._advance(LoginState.HANDSHAKE_DONE)

        r = transport.get(ip, "user/state-login", cookie=self.handshake.session,
                          timeout=self.timeout)
        self.password_type = extract_field(r.text, "password_type") or DEFAULT_PASSWORD_TYPE
        self._advance(LoginState.PASSWORD_TYPE_RESOLVED)

        token = self.handshake.token.consume()
        body = (
            '<?xml version="1.0" encoding="UTF-8"?>'
            "<request>"
            f"<Username>{escape(self.config.username)}</Username>"
            f"<Password>{encode_password(self.config.username, self.config.password, token)}</Password>"
            f"<password_type>{self.password_type}</password_type>"
            "</request>"
        )
        r = transport.post(ip, "user/login", body, cookie=self.handshake.session,
                           token=token, timeout=self.timeout)
        self._advance(LoginState.LOGIN_SUBMITTED)

        text = r.text or ""
        if is_ok(text):
            session = transport.cookie_from_response(r) or self.handshake.session
            next_token = transport.token_from_response(r) or token
            if not session:
                raise ProtocolError(f"Login to {ip} succeeded without a session id")
            self._advance(LoginState.AUTHENTICATED)
            return ModemSession(session=session, token=next_token)

        if has_error(text):
            raise classify_login_error(text)
        raise ProtocolError(f"Unexpected login response from {ip}: {text[:120]!r}")
