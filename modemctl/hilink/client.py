"""Authenticated request execution against a HiLink modem."""

import logging

from . import transport
from .auth import acquire_handshake
from .session import ModemConfig, SessionManager
from .xmlfields import error_code, has_error
from ..errors import AuthExpired

log = logging.getLogger("modemctl.hilink.client")

# 100003: no rights (not logged in), 12500x: token/session rejected
AUTH_ERROR_CODES = {"100003", "125001", "125002", "125003"}


def is_auth_error(body: str) -> bool:
    """True if an ``<error>`` body means the session is no longer accepted."""
    if not has_error(body):
        return False
    code = error_code(body)
    return not code or code in AUTH_ERROR_CODES


class HiLinkClient:
    """Runs API calls for one user's modem under that user's session.

    Each call takes the user's lock, makes sure a session exists, fetches a
    fresh single-use token for it and sends the request. An auth error in
    the reply triggers one forced re-login and one retry; a second auth
    error raises ``AuthExpired``. Non-auth ``<error>`` bodies are returned
    to the caller unchanged.
    """

    MAX_ATTEMPTS = 2

    def __init__(self, config: ModemConfig, user_id: int, sessions: SessionManager,
                 timeout: float = 10):
        self.config = config
        self.user_id = user_id
        self.sessions = sessions
        self.timeout = timeout

    @property
    def ip(self) -> str:
        return self.config.ip

    def call(self, path: str, method: str = "GET", body: str | None = None,
             timeout: float | None = None, retry: bool = True) -> str:
        """Issue an authenticated request and return the response body.

        With ``retry=False`` the request is sent once and any body, auth
        errors included, is returned as-is.
        """
        timeout = timeout or self.timeout
        attempts = self.MAX_ATTEMPTS if retry else 1
        with self.sessions.lock(self.user_id):
            for attempt in range(attempts):
                if attempt:
                    log.info("Auth error on %s for user %s, logging in again", path, self.user_id)
                    self.sessions.invalidate(self.user_id)
                self.sessions.ensure_logged_in(self.config, self.user_id)
                text = self._send(path, method, body, timeout)
                if not retry or not is_auth_error(text):
                    return text
            self.sessions.invalidate(self.user_id)
            raise AuthExpired(
                f"Session for user {self.user_id} rejected on {path} after re-login"
            )

    def _send(self, path, method, body, timeout):
        session = self.sessions.get(self.user_id)
        fresh = acquire_handshake(self.ip, cookie=session.session, timeout=self.timeout)
        token = fresh.token.consume()
        if method == "POST":
            r = transport.post(self.ip, path, body or "", cookie=session.session,
                               token=token, timeout=timeout)
        else:
            r = transport.get(self.ip, path, cookie=session.session,
                              token=token, timeout=timeout)
        return r.text or ""
