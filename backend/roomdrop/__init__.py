"""Roomdrop: room-scoped LAN file and folder transfer over a WebSocket relay."""

__version__ = "0.1.0"
