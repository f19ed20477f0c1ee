"""LAN file sharing server with live folder updates."""

__version__ = "1.0.0"
