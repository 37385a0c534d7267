"""desperados - LAN peer discovery and group messaging."""

__version__ = "0.1.0"
