"""Per-user modem config and IP change history, persisted as JSON.

File layout (``users.json``)::

    {
      "123456": {
        "modem": {"ip": "192.168.8.1", "username": "admin", "password": "..."},
        "last_ip": "10.20.30.40",
        "last_change": "14-12-2025, 09:08:40"
      }
    }

The file holds modem passwords and is written with 0600 permissions.
"""

import json
import logging
import os
import stat
import threading

from .hilink.session import ModemConfig
from .tz import normalize_timestamp

log = logging.getLogger("modemctl.storage")


class UserStore:
    """Credential and history store keyed by user id."""

    def __init__(self, path):
        self.path = path
        self._lock = threading.Lock()
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)

    # ── File access ──

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            log.warning("Failed to read %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> None:
        tmp = self.path + ".tmp"
        # the O_CREAT mode only applies to a newly created file
        if os.path.exists(tmp):
            os.remove(tmp)
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, stat.S_IRUSR | stat.S_IWUSR)
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, self.path)

    def _update(self, user_id, fn) -> None:
        with self._lock:
            data = self._read()
            entry = data.setdefault(str(user_id), {})
            fn(entry)
            if not entry:
                data.pop(str(user_id), None)
            self._write(data)

    def _entry(self, user_id) -> dict:
        with self._lock:
            return self._read().get(str(user_id), {})

    # ── Credential store ──

    def get_modem_config(self, user_id) -> ModemConfig | None:
        modem = self._entry(user_id).get("modem")
        if not modem or not modem.get("ip"):
            return None
        return ModemConfig(
            ip=modem["ip"],
            username=modem.get("username", ""),
            password=modem.get("password", ""),
        )

    def save_modem_config(self, user_id, config: ModemConfig) -> None:
        def apply(entry):
            entry["modem"] = config.to_dict()
        self._update(user_id, apply)
        log.info("Saved modem config for user %s (%s)", user_id, config.ip)

    def delete_config(self, user_id) -> bool:
        """Remove everything stored for the user. Returns whether anything existed."""
        with self._lock:
            data = self._read()
            existed = data.pop(str(user_id), None) is not None
            if existed:
                self._write(data)
        if existed:
            log.info("Deleted config for user %s", user_id)
        return existed

    # ── History store ──

    def record_ip_change(self, user_id, wan_ip: str, timestamp: str) -> None:
        def apply(entry):
            entry["last_ip"] = wan_ip
            entry["last_change"] = timestamp
        self._update(user_id, apply)

    def get_last_change(self, user_id) -> dict:
        """Return ``{"ip", "timestamp"}``; missing values are None."""
        entry = self._entry(user_id)
        ts = entry.get("last_change")
        return {
            "ip": entry.get("last_ip"),
            "timestamp": normalize_timestamp(ts) if ts else None,
        }
