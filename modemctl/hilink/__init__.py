"""Huawei HiLink protocol engine: handshake, login, sessions, reads, rotation."""

from .client import HiLinkClient
from .session import ModemConfig, ModemSession, SessionManager, SessionRegistry

__all__ = [
    "HiLinkClient",
    "ModemConfig",
    "ModemSession",
    "SessionManager",
    "SessionRegistry",
]
