"""WAN IP rotation via PLMN scan, and modem reboot.

A manual PLMN scan (GET /api/net/plmn-list) makes the modem drop its data
bearer while it searches for networks and re-register afterwards, which
gets it a new address from the carrier. The device gives no signal when it
is back online, so the flow waits a fixed settle interval before reading the
new WAN IP.

Steps:
    1. Read the current WAN IP (best effort)
    2. Clean login
    3. PLMN scan (device errors are tolerated, network errors are not)
    4. Settle sleep
    5. Clean login, read the new WAN IP
    6. Compare and timestamp with the caller's clock
"""

import logging
import time
from dataclasses import dataclass

from . import readers
from .client import HiLinkClient
from .session import SessionManager
from .xmlfields import error_code, extract_all, has_error, is_ok
from .. import tz
from ..errors import IPChangeFailed, ModemError, ProtocolError

log = logging.getLogger("modemctl.hilink.rotation")

SCAN_TIMEOUT = 120
SETTLE_SECONDS = 15

REBOOT_REQUEST = (
    '<?xml version="1.0" encoding="UTF-8"?><request><Control>1</Control></request>'
)


@dataclass
class RotationResult:
    old_ip: str | None
    new_ip: str
    timestamp: str
    changed: bool

    def to_dict(self) -> dict:
        return {
            "old_ip": self.old_ip,
            "new_ip": self.new_ip,
            "timestamp": self.timestamp,
            "changed": self.changed,
        }


class IPRotator:
    """Runs the PLMN-scan rotation for one user's modem.

    ``sleep`` and ``clock`` are injectable so tests need not wait.
    """

    def __init__(self, sessions: SessionManager, scan_timeout: float = SCAN_TIMEOUT,
                 settle_seconds: float = SETTLE_SECONDS, request_timeout: float = 10,
                 sleep=time.sleep, clock=None):
        self.sessions = sessions
        self.scan_timeout = scan_timeout
        self.settle_seconds = settle_seconds
        self.request_timeout = request_timeout
        self._sleep = sleep
        self._clock = clock

    def rotate(self, config, user_id: int) -> RotationResult:
        client = HiLinkClient(config, user_id, self.sessions, timeout=self.request_timeout)
        log.info("User %s: starting IP change on %s", user_id, config.ip)

        with self.sessions.lock(user_id):
            old_ip = self._current_ip(client)
            log.info("User %s: old IP %s", user_id, old_ip or "unknown")

            try:
                self.sessions.login(config, user_id)
                self._scan(client)

                log.info("User %s: waiting %ss for network re-registration",
                         user_id, self.settle_seconds)
                self._sleep(self.settle_seconds)

                self.sessions.login(config, user_id)
                new_ip = readers.read_wan_ip(client)
            except ModemError as e:
                log.error("User %s: IP change failed: %s", user_id, e)
                self.sessions.invalidate(user_id)
                raise IPChangeFailed(f"IP change failed: {e}", last_wan_ip=old_ip) from e

        now = self._clock() if self._clock else None
        result = RotationResult(
            old_ip=old_ip,
            new_ip=new_ip,
            timestamp=tz.format_timestamp(now),
            changed=old_ip != new_ip,
        )
        if result.changed:
            log.info("User %s: IP changed %s -> %s", user_id, old_ip, new_ip)
        else:
            log.warning("User %s: IP unchanged (%s), carrier reassigned the same address",
                        user_id, new_ip)
        return result

    @staticmethod
    def _current_ip(client) -> str | None:
        try:
            return readers.read_wan_ip(client)
        except ModemError as e:
            log.warning("User %s: could not read current WAN IP: %s", client.user_id, e)
            return None

    def _scan(self, client) -> list[str]:
        """Trigger the PLMN scan. Returns the network names found, if any.

        The scan is sent once, without the auth retry. Any device error body,
        auth errors included, is tolerated; only DeviceUnreachable and login
        failures propagate.
        """
        log.info("User %s: requesting PLMN scan (timeout %ss)", client.user_id, self.scan_timeout)
        try:
            body = client.call("net/plmn-list", timeout=self.scan_timeout, retry=False)
        except ProtocolError as e:
            log.warning("User %s: PLMN scan returned unusable data: %s", client.user_id, e)
            return []

        if has_error(body):
            log.warning("User %s: PLMN scan device error %s, continuing",
                        client.user_id, error_code(body) or "?")
            return []
        networks = extract_all(body, "FullName")
        log.info("User %s: PLMN scan found %d network(s): %s",
                 client.user_id, len(networks), ", ".join(networks))
        return networks


def reboot(config, user_id: int, sessions: SessionManager, timeout: float = 15) -> None:
    """Reboot the modem. Raises ModemError on failure.

    The device drops every session when it restarts, so the user's session
    is invalidated afterwards either way.
    """
    client = HiLinkClient(config, user_id, sessions, timeout=timeout)
    with sessions.lock(user_id):
        try:
            sessions.login(config, user_id)
            body = client.call("device/control", method="POST", body=REBOOT_REQUEST)
            if is_ok(body):
                log.info("User %s: reboot command accepted by %s", user_id, config.ip)
                return
            if has_error(body):
                raise ProtocolError(f"Reboot rejected with code {error_code(body) or '?'}")
            raise ProtocolError(f"Unexpected reboot response: {body[:120]!r}")
        finally:
            sessions.invalidate(user_id)
