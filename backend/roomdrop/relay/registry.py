"""In-memory room membership registry.

Rooms are created implicitly on first join and disappear when their last
member leaves or disconnects. Membership is many-to-many: a connection may
be in several rooms at once. Nothing outlives the process.
"""
import logging
from typing import Dict, List, Set

logger = logging.getLogger(__name__)


def is_valid_room_id(room_id: object) -> bool:
    """A room id must be a non-blank string."""
    return isinstance(room_id, str) and room_id.strip() != ""


class RoomRegistry:
    """Tracks which connections belong to which rooms.

    Note:
        Designed for a single event loop; not thread-safe.
    """

    def __init__(self) -> None:
        # room_id -> connection ids
        self.rooms: Dict[str, Set[str]] = {}

        # connection_id -> room ids
        self.memberships: Dict[str, Set[str]] = {}

    def join(self, connection_id: str, room_id: str) -> bool:
        """Add a connection to a room.

        Returns:
            False if the room id is blank (nothing changes), True otherwise.
        """
        if not is_valid_room_id(room_id):
            return False

        self.rooms.setdefault(room_id, set()).add(connection_id)
        self.memberships.setdefault(connection_id, set()).add(room_id)
        return True

    def leave(self, connection_id: str, room_id: str) -> bool:
        """Remove a connection from a room.

        Returns:
            True if the connection was a member of the room.
        """
        members = self.rooms.get(room_id)
        if not members or connection_id not in members:
            return False

        members.discard(connection_id)
        if not members:
            del self.rooms[room_id]
            logger.debug(f"[Registry] Room {room_id} is empty and was removed")

        joined = self.memberships.get(connection_id)
        if joined is not None:
            joined.discard(room_id)
            if not joined:
                del self.memberships[connection_id]
        return True

    def drop_connection(self, connection_id: str) -> List[str]:
        """Remove a connection from every room it is in.

        Returns:
            The room ids the connection was a member of, sorted.
        """
        rooms = sorted(self.memberships.get(connection_id, ()))
        for room_id in rooms:
            self.leave(connection_id, room_id)
        return rooms

    def members(self, room_id: str) -> Set[str]:
        return set(self.rooms.get(room_id, ()))

    def rooms_of(self, connection_id: str) -> Set[str]:
        return set(self.memberships.get(connection_id, ()))

    def room_size(self, room_id: str) -> int:
        return len(self.rooms.get(room_id, ()))

    def clear(self) -> None:
        self.rooms.clear()
        self.memberships.clear()
