"""Room registry and WebSocket relay for file-share peers."""

from .registry import RoomRegistry, is_valid_room_id
from .service import RelayConnection, RelayService
from .router import router

__all__ = [
    "RoomRegistry",
    "is_valid_room_id",
    "RelayConnection",
    "RelayService",
    "router",
]
