"""Per-user HiLink session state.

One ``ModemSession`` exists per user. Sessions are replaced as a whole,
never mutated field by field, so a reader always sees a session cookie and
token that came from the same login response.
"""

import logging
import threading
from dataclasses import dataclass

from ..errors import TokenConsumed

log = logging.getLogger("modemctl.hilink.session")


@dataclass(frozen=True)
class ModemConfig:
    """Address and credentials of one user's modem."""

    ip: str
    username: str
    password: str

    def to_dict(self) -> dict:
        return {"ip": self.ip, "username": self.username, "password": self.password}


@dataclass(frozen=True)
class ModemSession:
    session: str | None = None
    token: str | None = None

    @property
    def is_valid(self) -> bool:
        return bool(self.session and self.token)


EMPTY_SESSION = ModemSession()


class VerificationToken:
    """A single-use ``__RequestVerificationToken`` value.

    ``consume()`` hands the value out exactly once; a second call raises
    ``TokenConsumed`` instead of silently sending a spent token.
    """

    def __init__(self, value: str):
        self._value = value
        self._consumed = False
        self._lock = threading.Lock()

    @property
    def consumed(self) -> bool:
        return self._consumed

    def peek(self) -> str:
        """Return the value without spending it (for logging and reuse decisions)."""
        return self._value

    def consume(self) -> str:
        with self._lock:
            if self._consumed:
                raise TokenConsumed(f"Verification token {self._value[:8]}... already used")
            self._consumed = True
            return self._value

    def __repr__(self):
        state = "consumed" if self._consumed else "fresh"
        return f"<VerificationToken {self._value[:8]}... {state}>"


class SessionRegistry:
    """Thread-safe map of user id -> ModemSession with one lock per user.

    Entries are created lazily on first access. ``lock(user_id)`` returns the
    user's re-entrant lock; holders may nest authenticated calls.
    """

    def __init__(self):
        self._sessions: dict[int, ModemSession] = {}
        self._locks: dict[int, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def lock(self, user_id: int) -> threading.RLock:
        with self._registry_lock:
            lk = self._locks.get(user_id)
            if lk is None:
                lk = threading.RLock()
                self._locks[user_id] = lk
            return lk

    def get(self, user_id: int) -> ModemSession:
        with self._registry_lock:
            return self._sessions.setdefault(user_id, EMPTY_SESSION)

    def set(self, user_id: int, session: ModemSession) -> None:
        with self._registry_lock:
            self._sessions[user_id] = session

    def invalidate(self, user_id: int) -> None:
        with self._registry_lock:
            if user_id in self._sessions:
                self._sessions[user_id] = EMPTY_SESSION

    def remove(self, user_id: int) -> None:
        with self._registry_lock:
            self._sessions.pop(user_id, None)

    def __contains__(self, user_id) -> bool:
        with self._registry_lock:
            return user_id in self._sessions

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._sessions)


class SessionManager:
    """Owns the registry and decides when a user has to log in again."""

    def __init__(self, registry: SessionRegistry | None = None, timeout: int = 10):
        self.registry = registry if registry is not None else SessionRegistry()
        self.timeout = timeout

    def get(self, user_id: int) -> ModemSession:
        return self.registry.get(user_id)

    def lock(self, user_id: int) -> threading.RLock:
        return self.registry.lock(user_id)

    def invalidate(self, user_id: int) -> None:
        """Drop the stored session/token. Idempotent."""
        self.registry.invalidate(user_id)

    def forget(self, user_id: int) -> None:
        """Remove the user's entry entirely (logout / reset)."""
        with self.registry.lock(user_id):
            self.registry.remove(user_id)
        log.info("Session for user %s removed", user_id)

    def login(self, config: ModemConfig, user_id: int) -> ModemSession:
        """Perform a fresh login and store the resulting session.

        Raises the classified ``ModemError`` from the login flow; the stored
        session is left invalidated on failure.
        """
        from .auth import LoginAttempt

        with self.registry.lock(user_id):
            self.registry.invalidate(user_id)
            session = LoginAttempt(config, timeout=self.timeout).run()
            self.registry.set(user_id, session)
            log.info("Login OK for user %s (session %s...)", user_id, session.session[:18])
            return session

    def ensure_logged_in(self, config: ModemConfig, user_id: int) -> bool:
        """Log in unless a valid session is already stored.

        Returns whether the user now holds a usable session. Login
        failures propagate as ``ModemError``.
        """
        with self.registry.lock(user_id):
            if self.registry.get(user_id).is_valid:
                return True
            return self.login(config, user_id).is_valid
