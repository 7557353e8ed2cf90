"""Exception hierarchy for HiLink modem control.

Every failure the engine reports is a ``ModemError``. Read paths catch them
and render placeholders; login, rotation and reboot let them propagate.
"""

import enum


class LoginFailure(enum.Enum):
    """Classified reasons a HiLink login can be rejected."""

    BAD_USERNAME = "bad_username"
    BAD_PASSWORD = "bad_password"
    BAD_CREDENTIALS = "bad_credentials"
    SESSION_CONFLICT = "session_conflict"
    RATE_LIMITED = "rate_limited"
    INVALID_TOKEN = "invalid_token"
    UNKNOWN = "unknown"


LOGIN_FAILURE_MESSAGES = {
    LoginFailure.BAD_USERNAME: "Wrong username",
    LoginFailure.BAD_PASSWORD: "Wrong password",
    LoginFailure.BAD_CREDENTIALS: "Wrong username or password",
    LoginFailure.SESSION_CONFLICT: "Another session is already logged in",
    LoginFailure.RATE_LIMITED: "Too many login attempts",
    LoginFailure.INVALID_TOKEN: "Session token rejected by the modem",
    LoginFailure.UNKNOWN: "Login rejected by the modem",
}


class ModemError(Exception):
    """Base class for all modem control failures."""

    kind = "modem_error"


class DeviceUnreachable(ModemError):
    """Network or timeout failure reaching the device."""

    kind = "device_unreachable"


class ProtocolError(ModemError):
    """Device answered, but not with what a HiLink firmware should send."""

    kind = "protocol_error"


class TokenConsumed(ProtocolError):
    """A single-use verification token was used twice."""

    kind = "token_consumed"


class AuthFailed(ModemError):
    """The device rejected a login attempt."""

    kind = "auth_failed"

    def __init__(self, reason: LoginFailure, code: str = "", wait_time: int | None = None):
        self.reason = reason
        self.code = code
        self.wait_time = wait_time
        super().__init__(self.describe())

    def describe(self) -> str:
        msg = LOGIN_FAILURE_MESSAGES[self.reason]
        if self.wait_time:
            msg += f", retry in {self.wait_time} min"
        if self.code:
            msg += f" (code {self.code})"
        return msg


class AuthExpired(ModemError):
    """A session stopped working and one re-login did not bring it back."""

    kind = "auth_expired"


class IPChangeFailed(ModemError):
    """The IP rotation procedure did not complete.

    ``last_wan_ip`` is the WAN address known before the procedure started
    (``None`` if it could not be read). The underlying failure is chained
    as ``__cause__``.
    """

    kind = "ip_change_failed"

    def __init__(self, message: str, last_wan_ip: str | None = None):
        self.last_wan_ip = last_wan_ip
        super().__init__(message)
