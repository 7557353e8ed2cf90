"""Multi-user control engine for Huawei HiLink LTE modems."""

__version__ = "1.0.0"
