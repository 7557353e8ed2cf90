"""Find a HiLink modem on the local network.

Probes a short list of common gateway addresses with the unauthenticated
SesTokInfo call. Only used while a user sets up their modem, never on the
request path.
"""

import logging

from .auth import acquire_handshake
from .readers import read_device_name
from ..errors import ModemError

log = logging.getLogger("modemctl.hilink.discovery")

COMMON_MODEM_IPS = [
    "192.168.8.1",    # Huawei HiLink default
    "192.168.1.1",
    "192.168.0.1",
    "192.168.100.1",
    "10.0.0.1",
    "192.168.2.1",
    "192.168.3.1",    # ZTE
    "192.168.31.1",   # Xiaomi
]


def probe(ip: str, timeout: float = 2) -> bool:
    """True if ``ip`` answers SesTokInfo with a token."""
    try:
        acquire_handshake(ip, timeout=timeout)
    except ModemError as e:
        log.debug("No HiLink modem at %s: %s", ip, e)
        return False
    return True


def auto_detect_modem_ip(ips=None, timeout: float = 2) -> dict | None:
    """Return ``{"ip", "device_name"}`` for the first responding modem, or None."""
    log.info("Auto-detecting modem IP")
    for ip in ips or COMMON_MODEM_IPS:
        log.debug("Trying %s", ip)
        if probe(ip, timeout=timeout):
            name = read_device_name(ip, timeout=timeout)
            log.info("Found HiLink modem at %s (%s)", ip, name)
            return {"ip": ip, "device_name": name}
    log.info("No modem found at common IP addresses")
    return None


def test_connection(ip: str, timeout: float = 5) -> dict:
    """Check a user-supplied address. Returns ``{"success", "device_name"?}``."""
    if not probe(ip, timeout=timeout):
        return {"success": False}
    return {"success": True, "device_name": read_device_name(ip, timeout=2)}
