"""Service configuration: optional config.json in the data dir, env vars win."""

import json
import logging
import os

log = logging.getLogger("modemctl.config")

DEFAULTS = {
    "request_timeout": 10,
    "probe_timeout": 2,
    "test_timeout": 5,
    "scan_timeout": 120,
    "settle_seconds": 15,
    "status_timeout": 5,
    "web_port": 8765,
    "api_token": "",
}

ENV_MAP = {
    "request_timeout": "REQUEST_TIMEOUT",
    "probe_timeout": "PROBE_TIMEOUT",
    "test_timeout": "TEST_TIMEOUT",
    "scan_timeout": "SCAN_TIMEOUT",
    "settle_seconds": "SETTLE_SECONDS",
    "status_timeout": "STATUS_TIMEOUT",
    "web_port": "WEB_PORT",
    "api_token": "API_TOKEN",
}

# Timing knobs handed to ModemService
SERVICE_KEYS = (
    "request_timeout", "probe_timeout", "test_timeout",
    "scan_timeout", "settle_seconds", "status_timeout",
)

INT_KEYS = set(SERVICE_KEYS) | {"web_port"}


class ConfigManager:
    """Read-only view over DEFAULTS, config.json and environment variables."""

    def __init__(self, data_dir="/data"):
        self.data_dir = data_dir
        self.config_path = os.path.join(data_dir, "config.json")
        self._file_config = self._load()

    def _load(self) -> dict:
        if not os.path.exists(self.config_path):
            log.info("No config.json in %s, using defaults/env", self.data_dir)
            return {}
        try:
            with open(self.config_path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            log.warning("Ignoring unreadable %s: %s", self.config_path, e)
            return {}
        if not isinstance(data, dict):
            log.warning("Ignoring %s: expected a JSON object", self.config_path)
            return {}
        log.info("Loaded config from %s", self.config_path)
        return data

    def _raw(self, key):
        env_name = ENV_MAP.get(key)
        if env_name and os.environ.get(env_name):
            return os.environ[env_name]
        return self._file_config.get(key)

    def get(self, key, default=None):
        """Env var > config.json > ``default`` > DEFAULTS.

        Integer keys that fail to parse fall back to their default.
        """
        value = self._raw(key)
        if value is None:
            return default if default is not None else DEFAULTS.get(key)
        if key in INT_KEYS:
            try:
                return int(value)
            except (TypeError, ValueError):
                log.warning("Invalid integer for %s: %r", key, value)
                return DEFAULTS[key]
        return value

    def service_options(self) -> dict:
        """Keyword arguments for ``ModemService``."""
        return {key: self.get(key) for key in SERVICE_KEYS}

    def is_api_protected(self):
        """True if an API token is required for the HTTP API."""
        return bool(self.get("api_token"))
