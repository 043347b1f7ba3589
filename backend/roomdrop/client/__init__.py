"""WebSocket peer client for the file-share relay."""
from .peer import ConnectionStatus, PeerClient, ensure_endpoint

__all__ = ["ConnectionStatus", "PeerClient", "ensure_endpoint"]
