"""Service facade used by the chat bot and the HTTP API.

Every operation takes a ``ModemConfig`` and the user id. Read operations
return placeholder values when the modem misbehaves; ``login``,
``change_ip`` and ``reboot`` raise ``ModemError`` subclasses.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout

from .errors import DeviceUnreachable
from .hilink import discovery, readers, transport
from .hilink.client import HiLinkClient
from .hilink.readers import ModemInfo
from .hilink.rotation import IPRotator, reboot
from .hilink.session import ModemConfig, SessionManager

log = logging.getLogger("modemctl.service")

FULL_READERS = (readers.read_wan_info, readers.read_provider, readers.read_traffic)
DETAILED_READERS = (
    readers.read_wan_info,
    readers.read_provider,
    readers.read_signal,
    readers.read_traffic,
    readers.read_month_stats,
)


class ModemService:
    """Multi-user modem operations backed by one SessionManager."""

    def __init__(self, store=None, sessions: SessionManager | None = None,
                 request_timeout=10, probe_timeout=2, test_timeout=5,
                 scan_timeout=120, settle_seconds=15, status_timeout=5,
                 sleep=time.sleep):
        self.store = store
        self.sessions = sessions or SessionManager(timeout=request_timeout)
        self.request_timeout = request_timeout
        self.probe_timeout = probe_timeout
        self.test_timeout = test_timeout
        self.status_timeout = status_timeout
        self.rotator = IPRotator(
            self.sessions,
            scan_timeout=scan_timeout,
            settle_seconds=settle_seconds,
            request_timeout=request_timeout,
            sleep=sleep,
        )
        # Background pool for caller-level timeouts; reads outlive the wait.
        self._pool = ThreadPoolExecutor(max_workers=8, thread_name_prefix="modem-status")

    @classmethod
    def from_config(cls, config_mgr, store=None):
        return cls(store=store, **config_mgr.service_options())

    def _client(self, config, user_id) -> HiLinkClient:
        return HiLinkClient(config, user_id, self.sessions, timeout=self.request_timeout)

    # ── Session ──

    def login(self, config: ModemConfig, user_id: int) -> bool:
        """Force a fresh login. Raises AuthFailed / DeviceUnreachable / ProtocolError."""
        return self.sessions.login(config, user_id).is_valid

    def logout(self, user_id: int) -> None:
        self.sessions.forget(user_id)

    # ── Reads ──

    def _last_change_timestamp(self, user_id):
        if self.store is None:
            return None
        return self.store.get_last_change(user_id).get("timestamp")

    def get_full_info(self, config: ModemConfig, user_id: int) -> ModemInfo:
        """Name, WAN IP, provider and traffic totals, each degrading on its own."""
        data = readers.collect(self._client(config, user_id), FULL_READERS)
        return ModemInfo(
            name=data["name"],
            wan_ip=data["wan_ip"],
            timestamp=self._last_change_timestamp(user_id),
            provider=data["provider"],
            data_usage=data["data_usage"],
            total_download=data["total_download"],
            total_upload=data["total_upload"],
        )

    def get_detailed_info(self, config: ModemConfig, user_id: int) -> dict:
        data = readers.collect(self._client(config, user_id), DETAILED_READERS)
        return {
            "device_name": data["name"],
            "wan_ip": data["wan_ip"],
            "provider": data["provider"],
            "signal_strength": data["signal_strength"],
            "rssi": data["rssi"],
            "rsrp": data["rsrp"],
            "rsrq": data["rsrq"],
            "sinr": data["sinr"],
            "total_download": readers.format_bytes(data["total_download"]),
            "total_upload": readers.format_bytes(data["total_upload"]),
            "month_usage": data["month_usage"],
        }

    def get_status(self, config: ModemConfig, user_id: int, timeout=None) -> ModemInfo:
        """Full info, or a 'Checking...' placeholder if it takes longer than ``timeout``.

        A read that misses the deadline keeps running in the background;
        it only ever replaces the stored session as a whole.
        """
        timeout = timeout if timeout is not None else self.status_timeout
        future = self._pool.submit(self.get_full_info, config, user_id)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            log.info("Status for user %s not ready after %ss", user_id, timeout)
            return ModemInfo(wan_ip="Checking...", timestamp=self._last_change_timestamp(user_id))
        except Exception as e:
            log.error("Status for user %s failed: %s", user_id, e)
            return ModemInfo(wan_ip="Modem Offline")

    def check_connection(self, config: ModemConfig) -> bool:
        """True if the modem's web server answers at all."""
        try:
            r = transport.get(config.ip, "monitoring/traffic-statistics", timeout=self.test_timeout)
        except DeviceUnreachable as e:
            log.debug("Connection check to %s failed: %s", config.ip, e)
            return False
        return r.status_code < 400

    # ── Actions ──

    def change_ip(self, config: ModemConfig, user_id: int):
        """Rotate the WAN IP. Raises IPChangeFailed; records the result on success."""
        result = self.rotator.rotate(config, user_id)
        if self.store is not None:
            self.store.record_ip_change(user_id, result.new_ip, result.timestamp)
        return result

    def reboot(self, config: ModemConfig, user_id: int) -> None:
        reboot(config, user_id, self.sessions, timeout=max(self.request_timeout, 15))

    # ── Setup ──

    def auto_detect_modem_ip(self, ips=None):
        return discovery.auto_detect_modem_ip(ips, timeout=self.probe_timeout)

    def test_connection(self, ip: str) -> dict:
        return discovery.test_connection(ip, timeout=self.test_timeout)

    def config_for(self, user_id: int) -> ModemConfig | None:
        return self.store.get_modem_config(user_id) if self.store is not None else None

    def setup(self, user_id: int, username: str, password: str, ip: str | None = None) -> ModemConfig:
        """Store a user's modem config, detecting the address when none is given.

        Raises DeviceUnreachable if no address is given and none is found. The
        user's session is dropped when the stored config changes.
        """
        if not ip:
            found = self.auto_detect_modem_ip()
            if not found:
                raise DeviceUnreachable("No modem found on common gateway addresses")
            ip = found["ip"]
        config = ModemConfig(ip=ip, username=username, password=password)
        if self.config_for(user_id) != config:
            self.sessions.forget(user_id)
        if self.store is not None:
            self.store.save_modem_config(user_id, config)
        return config

    def delete_config(self, user_id: int) -> bool:
        self.sessions.forget(user_id)
        return self.store.delete_config(user_id) if self.store is not None else False

    def shutdown(self):
        self._pool.shutdown(wait=False)
