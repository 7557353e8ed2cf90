"""Device information readers.

The ``read_*`` functions are strict: they raise ``ModemError`` when the
device cannot be reached or answers with an error. ``safe_read`` and
``collect`` wrap them for display paths, where a failing field becomes a
placeholder instead of failing the whole snapshot.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass

from . import transport
from .xmlfields import error_code, extract_field, has_error
from ..errors import ModemError, ProtocolError

log = logging.getLogger("modemctl.hilink.readers")

DEFAULT_DEVICE_NAME = "Huawei Modem"
NOT_AVAILABLE = "N/A"
UNKNOWN = "Unknown"

# RSSI lower bounds in dBm, checked top to bottom
SIGNAL_LEVELS = [
    (-65, "Excellent"),
    (-75, "Good"),
    (-85, "Fair"),
    (-95, "Weak"),
]


@dataclass
class ModemInfo:
    """Snapshot of one modem as shown to a user."""

    name: str = DEFAULT_DEVICE_NAME
    wan_ip: str = UNKNOWN
    timestamp: str | None = None
    provider: str | None = None
    data_usage: str | None = None
    total_download: int | None = None
    total_upload: int | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


def format_bytes(num) -> str:
    """Format a byte count with 1024-based units, e.g. 1536 -> '1.5 KB'."""
    if not num or num <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(num)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


def _int(value: str) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _checked(client, path, timeout=None) -> str:
    body = client.call(path, timeout=timeout)
    if has_error(body):
        raise ProtocolError(f"{path}: device error {error_code(body) or '?'}")
    return body


def signal_quality(rssi: str) -> str:
    """Map an RSSI reading like '-71dBm' to a quality label."""
    try:
        value = int(str(rssi).replace("dBm", "").strip())
    except ValueError:
        return NOT_AVAILABLE
    for bound, label in SIGNAL_LEVELS:
        if value >= bound:
            return label
    return "Very weak"


# ── Strict readers ─────────────────────────────────────────

def read_wan_info(client) -> dict:
    """Device name and WAN IP from /api/device/information."""
    body = _checked(client, "device/information")
    return {
        "name": extract_field(body, "DeviceName") or DEFAULT_DEVICE_NAME,
        "wan_ip": extract_field(body, "WanIPAddress") or UNKNOWN,
    }


def read_wan_ip(client) -> str:
    """WAN IP only; raises ProtocolError if the device reports none."""
    body = _checked(client, "device/information")
    wan_ip = extract_field(body, "WanIPAddress")
    if not wan_ip:
        raise ProtocolError(f"{client.ip}: no WanIPAddress in device information")
    return wan_ip


def read_provider(client) -> dict:
    body = _checked(client, "net/current-plmn")
    return {
        "provider": extract_field(body, "FullName") or extract_field(body, "ShortName") or UNKNOWN,
    }


def read_traffic(client) -> dict:
    body = _checked(client, "monitoring/traffic-statistics")
    total_down = _int(extract_field(body, "TotalDownload"))
    total_up = _int(extract_field(body, "TotalUpload"))
    return {
        "current_download_rate": _int(extract_field(body, "CurrentDownloadRate")),
        "current_upload_rate": _int(extract_field(body, "CurrentUploadRate")),
        "total_download": total_down,
        "total_upload": total_up,
        "data_usage": f"↓ {format_bytes(total_down)} / ↑ {format_bytes(total_up)}",
    }


def read_signal(client) -> dict:
    body = _checked(client, "device/signal")
    result = {
        key: extract_field(body, key) or NOT_AVAILABLE
        for key in ("rssi", "rsrp", "rsrq", "sinr")
    }
    result["signal_strength"] = signal_quality(result["rssi"])
    return result


def read_month_stats(client) -> dict:
    body = _checked(client, "monitoring/month_statistics")
    down = _int(extract_field(body, "CurrentMonthDownload"))
    up = _int(extract_field(body, "CurrentMonthUpload"))
    return {
        "current_month_download": down,
        "current_month_upload": up,
        "month_usage": format_bytes(down + up),
    }


def read_device_name(ip: str, timeout: float = 2) -> str:
    """Unauthenticated device name lookup, best effort."""
    try:
        r = transport.get(ip, "device/basic_information", timeout=timeout)
    except ModemError as e:
        log.debug("basic_information on %s failed: %s", ip, e)
        return DEFAULT_DEVICE_NAME
    body = r.text or ""
    return (extract_field(body, "devicename")
            or extract_field(body, "DeviceName")
            or DEFAULT_DEVICE_NAME)


# ── Degrading wrappers ─────────────────────────────────────

PLACEHOLDERS = {
    read_wan_info: {"name": DEFAULT_DEVICE_NAME, "wan_ip": NOT_AVAILABLE},
    read_provider: {"provider": UNKNOWN},
    read_traffic: {
        "current_download_rate": 0, "current_upload_rate": 0,
        "total_download": 0, "total_upload": 0, "data_usage": NOT_AVAILABLE,
    },
    read_signal: {
        "rssi": NOT_AVAILABLE, "rsrp": NOT_AVAILABLE, "rsrq": NOT_AVAILABLE,
        "sinr": NOT_AVAILABLE, "signal_strength": NOT_AVAILABLE,
    },
    read_month_stats: {
        "current_month_download": 0, "current_month_upload": 0,
        "month_usage": NOT_AVAILABLE,
    },
}


def safe_read(reader, client) -> dict:
    """Run ``reader``; on ModemError log and return its placeholder dict."""
    try:
        return reader(client)
    except ModemError as e:
        log.warning("%s for user %s degraded: %s", reader.__name__, client.user_id, e)
        return dict(PLACEHOLDERS[reader])


def collect(client, readers) -> dict:
    """Run several readers concurrently and merge their results.

    Each reader degrades on its own; the calls themselves still serialize
    on the user's session lock.
    """
    with ThreadPoolExecutor(max_workers=len(readers)) as pool:
        futures = [pool.submit(safe_read, reader, client) for reader in readers]
        merged = {}
        for future in futures:
            merged.update(future.result())
    return merged
