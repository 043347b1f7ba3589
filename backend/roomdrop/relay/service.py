"""Room-scoped WebSocket relay for peer-to-peer file transfers.

This module forwards transfer-protocol frames from one room member to every
other member of that room. It is a pure forwarder: frames are routed on
``event`` and ``roomId`` alone and passed on as the exact object received,
so chunk bodies are never decoded, copied or kept.

Key features:
    - Explicit lifecycle (start/stop); one instance per application,
      stored on ``app.state.relay`` rather than a module global
    - Implicit room creation and removal through the RoomRegistry
    - room:joined / peer:joined / peer:left notifications
    - peer:left fan-out for every room on abrupt disconnect
    - Concurrent fan-out with asyncio.gather(), serialized per connection
    - Silent drop of frames that cannot be routed

Thread Safety:
    Designed for a single event loop. Each connection's inbound frames are
    handled sequentially by its own endpoint task, so per-sender ordering
    within a room is preserved.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from fastapi import WebSocket

from roomdrop.config import RelaySettings
from roomdrop.protocol.codec import Frame, FrameError, encode_frame, peek_route
from roomdrop.protocol.messages import TRANSFER_EVENTS, Event
from roomdrop.relay.registry import RoomRegistry, is_valid_room_id

logger = logging.getLogger(__name__)

# WebSocket close code sent to every client when the relay shuts down
CLOSE_GOING_AWAY = 1001


@dataclass(eq=False)
class RelayConnection:
    """One accepted WebSocket connection.

    Attributes:
        id: Relay-assigned connection id.
        websocket: The underlying WebSocket.
        send_lock: Serializes frames written to this connection.
        closed: Set once a send failed or the connection was torn down.
    """
    websocket: WebSocket
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    closed: bool = False

    async def send(self, frame: Frame) -> None:
        async with self.send_lock:
            if isinstance(frame, bytes):
                await self.websocket.send_bytes(frame)
            else:
                await self.websocket.send_text(frame)


class RelayService:
    """Relays file-share frames between members of ephemeral rooms.

    Usage:
        relay = RelayService(settings.relay)
        await relay.start()
        ...
        await relay.stop()
    """

    def __init__(self, settings: Optional[RelaySettings] = None) -> None:
        self.settings = settings or RelaySettings()
        self.registry = RoomRegistry()

        # connection_id -> RelayConnection
        self.connections: Dict[str, RelayConnection] = {}

        self._running = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        self._running = True
        logger.info(
            f"[Relay] Started (path={self.settings.path}, "
            f"max_message_size={self.settings.max_message_size})"
        )

    async def stop(self) -> None:
        """Close every open connection and forget all rooms."""
        self._running = False
        connections = list(self.connections.values())
        for connection in connections:
            connection.closed = True
            try:
                await connection.websocket.close(code=CLOSE_GOING_AWAY)
            except RuntimeError as e:
                # Already closed by the peer
                logger.debug(f"[Relay] Close failed for {connection.id}: {e}")
        self.connections.clear()
        self.registry.clear()
        logger.info(f"[Relay] Stopped, closed {len(connections)} connection(s)")

    # =========================================================================
    # Connections
    # =========================================================================

    async def connect(self, websocket: WebSocket) -> Optional[RelayConnection]:
        """Accept a WebSocket and register it.

        Returns:
            The new RelayConnection, or None if the relay is not running
            (the socket is closed immediately in that case).
        """
        await websocket.accept()
        if not self._running:
            logger.warning("[Relay] Rejecting connection: relay is not running")
            await websocket.close(code=CLOSE_GOING_AWAY)
            return None

        connection = RelayConnection(websocket=websocket)
        self.connections[connection.id] = connection
        logger.info(f"[Relay] Connection {connection.id} accepted ({len(self.connections)} open)")
        return connection

    async def disconnect(self, connection: RelayConnection) -> List[str]:
        """Tear down a connection, clean or abrupt.

        Emits exactly one ``peer:left`` to the remaining members of every
        room the connection was in.

        Returns:
            Room ids the connection was a member of.
        """
        connection.closed = True
        self.connections.pop(connection.id, None)
        rooms = self.registry.drop_connection(connection.id)

        for room_id in rooms:
            await self._fan_out(room_id, encode_frame(Event.PEER_LEFT.value, {"roomId": room_id}))

        logger.info(f"[Relay] Connection {connection.id} closed, left rooms {rooms}")
        return rooms

    # =========================================================================
    # Message handling
    # =========================================================================

    async def handle_frame(self, connection: RelayConnection, frame: Frame) -> None:
        """Dispatch one inbound frame from *connection*.

        Malformed frames, unknown events and frames without a usable
        ``roomId`` are dropped without a reply.
        """
        try:
            event, data = peek_route(frame)
        except FrameError as e:
            logger.debug(f"[Relay] Dropping undecodable frame from {connection.id}: {e.message}")
            return

        room_id = data.get("roomId")
        if not is_valid_room_id(room_id):
            logger.debug(f"[Relay] Dropping {event} from {connection.id}: invalid roomId")
            return

        if event == Event.ROOM_JOIN.value:
            await self.join(connection, room_id)
        elif event == Event.ROOM_LEAVE.value:
            await self.leave(connection, room_id)
        elif event in TRANSFER_EVENTS:
            await self.broadcast(connection, room_id, frame)
        else:
            logger.debug(f"[Relay] Dropping unknown event {event!r} from {connection.id}")

    async def join(self, connection: RelayConnection, room_id: str) -> bool:
        """Add *connection* to a room and announce it.

        The joiner receives ``room:joined``; every other member receives
        ``peer:joined``. Blank room ids are ignored.
        """
        if not self.registry.join(connection.id, room_id):
            return False

        payload = {"roomId": room_id}
        await self._safe_send(connection, encode_frame(Event.ROOM_JOINED.value, payload))
        await self._fan_out(
            room_id, encode_frame(Event.PEER_JOINED.value, payload), exclude=connection.id
        )
        logger.info(
            f"[Relay] {connection.id} joined room {room_id} "
            f"({self.registry.room_size(room_id)} member(s))"
        )
        return True

    async def leave(self, connection: RelayConnection, room_id: str) -> bool:
        """Remove *connection* from a room and notify the remaining members."""
        if not self.registry.leave(connection.id, room_id):
            logger.debug(f"[Relay] {connection.id} left room {room_id} without being a member")
            return False

        await self._fan_out(room_id, encode_frame(Event.PEER_LEFT.value, {"roomId": room_id}))
        logger.info(f"[Relay] {connection.id} left room {room_id}")
        return True

    async def broadcast(self, sender: RelayConnection, room_id: str, frame: Frame) -> int:
        """Forward *frame* unchanged to every member of a room except the sender.

        The sender does not need to be a member of the room.

        Returns:
            Number of connections the frame was delivered to.
        """
        return await self._fan_out(room_id, frame, exclude=sender.id)

    # =========================================================================
    # Delivery
    # =========================================================================

    async def _fan_out(self, room_id: str, frame: Frame, exclude: Optional[str] = None) -> int:
        targets = [
            self.connections[member_id]
            for member_id in self.registry.members(room_id)
            if member_id != exclude and member_id in self.connections
        ]
        targets = [conn for conn in targets if not conn.closed]
        if not targets:
            return 0

        results = await asyncio.gather(
            *[self._safe_send(conn, frame) for conn in targets],
            return_exceptions=True
        )
        return sum(1 for success in results if success is True)

    async def _safe_send(self, connection: RelayConnection, frame: Frame) -> bool:
        """Send a frame, marking the connection closed if the send fails.

        Dead connections stay registered until their endpoint task runs
        :meth:`disconnect`, which performs the peer:left fan-out.
        """
        if connection.closed:
            return False
        try:
            await connection.send(frame)
            return True
        except Exception as e:
            logger.debug(f"[Relay] Failed to send to connection {connection.id}: {e}")
            connection.closed = True
            return False

    def get_room_size(self, room_id: str) -> int:
        return self.registry.room_size(room_id)
