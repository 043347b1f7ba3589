"""Relay router providing the file-share WebSocket and room helpers.

This module provides:
    - POST /rooms: Generate a fresh random room id
    - GET /rooms/{room_id}: Current member count of a room
    - file_share_endpoint: Room-scoped frame relay, mounted by the
      application at the configured relay path (default /ws/file-share)

Protocol Flow:
    1. Client connects → relay accepts and assigns a connection id
    2. Client sends: {event: "room:join", data: {roomId}}
       → Client receives: {event: "room:joined", data: {roomId}}
       → Other members receive: {event: "peer:joined", data: {roomId}}
    3. Client sends file:meta / file:chunk / file:complete / file:error
       → Frame is forwarded unchanged to every other room member
    4. Client sends: {event: "room:leave", data: {roomId}}
       → Remaining members receive: {event: "peer:left", data: {roomId}}
    5. On disconnect → peer:left for every room the client was in
"""
import logging

from fastapi import APIRouter, Request, WebSocket
from pydantic import BaseModel

from roomdrop.relay.service import RelayService
from roomdrop.transfer.ids import generate_room_id

logger = logging.getLogger(__name__)

router = APIRouter()

# 1009 = Message Too Big
CLOSE_MESSAGE_TOO_BIG = 1009


class RoomInfo(BaseModel):
    roomId: str
    members: int = 0


def get_relay(request: Request) -> RelayService:
    return request.app.state.relay


@router.post("/rooms", response_model=RoomInfo)
async def create_room() -> RoomInfo:
    """Generate a random room id.

    Rooms are created implicitly on first join, so this only suggests an
    id; nothing is registered until a client joins it.
    """
    return RoomInfo(roomId=generate_room_id())


@router.get("/rooms/{room_id}", response_model=RoomInfo)
async def get_room(room_id: str, request: Request) -> RoomInfo:
    """Return how many connections are currently in a room."""
    relay = get_relay(request)
    return RoomInfo(roomId=room_id, members=relay.get_room_size(room_id))


async def file_share_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint relaying file-share frames within rooms.

    Each connection is served by this single task: inbound frames are
    handled one at a time, which keeps a sender's frames in order.

    Args:
        websocket: The WebSocket connection.
    """
    relay: RelayService = websocket.app.state.relay
    connection = await relay.connect(websocket)
    if connection is None:
        return

    max_size = relay.settings.max_message_size
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(f"[WS] Connection {connection.id} disconnected (code={message.get('code')})")
                break

            frame = message.get("bytes")
            if frame is None:
                frame = message.get("text")
            if frame is None:
                continue

            frame_size = len(frame.encode("utf-8")) if isinstance(frame, str) else len(frame)
            if frame_size > max_size:
                logger.warning(
                    f"[WS] Frame of {frame_size} bytes from {connection.id} exceeds "
                    f"{max_size}; closing connection"
                )
                await websocket.close(code=CLOSE_MESSAGE_TOO_BIG)
                break

            await relay.handle_frame(connection, frame)
    finally:
        await relay.disconnect(connection)
