"""WebSocket peer for the file-share relay.

A PeerClient owns one relay connection, one TransferSender and one
ReceptionAssembler. A single receive task consumes every inbound frame,
so the assembler is only ever touched from that task.

Usage:
    peer = PeerClient("192.168.1.10:8000", room_id="ab12cd34")
    await peer.connect()
    files, _ = collect_files(["./photos"])
    peer.enqueue(files)
    await peer.send_all()
    await peer.close()
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import urlsplit, urlunsplit

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from roomdrop.config import TransferSettings, RelaySettings
from roomdrop.protocol.codec import Envelope, Frame, FrameError, decode_frame, encode_frame
from roomdrop.protocol.messages import ROOM_EVENTS, TRANSFER_EVENTS, Event, parse_peer_message
from roomdrop.relay.registry import is_valid_room_id
from roomdrop.transfer.assembler import ReceptionAssembler
from roomdrop.transfer.exceptions import NotConnectedError
from roomdrop.transfer.folders import FolderAggregator
from roomdrop.transfer.ids import generate_room_id
from roomdrop.transfer.schemas import OutgoingTransfer
from roomdrop.transfer.sender import QueuedFile, TransferSender
from roomdrop.transfer.sources import SourceFile

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "ws://127.0.0.1:8000"

# Seconds to wait for the WebSocket handshake
CONNECT_TIMEOUT = 10.0

RoomListener = Callable[[str, str], None]


class ConnectionStatus(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


def ensure_endpoint(raw: Optional[str], path: str = "/ws/file-share") -> str:
    """Normalise what a user typed into a relay WebSocket URL.

    Examples:
        >>> ensure_endpoint("")
        'ws://127.0.0.1:8000/ws/file-share'
        >>> ensure_endpoint("192.168.1.10:8000")
        'ws://192.168.1.10:8000/ws/file-share'
        >>> ensure_endpoint("https://relay.lan/custom")
        'wss://relay.lan/custom'
    """
    trimmed = (raw or "").strip() or DEFAULT_ENDPOINT
    if "://" not in trimmed:
        trimmed = f"ws://{trimmed}"

    parts = urlsplit(trimmed)
    scheme = {"http": "ws", "https": "wss"}.get(parts.scheme, parts.scheme)
    url_path = parts.path if parts.path not in ("", "/") else path
    return urlunsplit((scheme, parts.netloc, url_path, parts.query, ""))


class PeerClient:
    """One browser-equivalent peer: connects, joins a room, sends and receives.

    Args:
        endpoint: Relay address (``host:port``, ``http(s)://`` or ``ws(s)://``).
        room_id: Room to join; a random one is generated if omitted.
        transfer: Chunking and assembly settings.
        relay: Transport settings (path and maximum message size).
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        room_id: Optional[str] = None,
        transfer: Optional[TransferSettings] = None,
        relay: Optional[RelaySettings] = None,
    ) -> None:
        self.transfer_settings = transfer or TransferSettings()
        self.relay_settings = relay or RelaySettings()

        self.url = ensure_endpoint(endpoint, self.relay_settings.path)
        self.room_id = (room_id or "").strip() or generate_room_id()

        self.status = ConnectionStatus.IDLE
        self.error: Optional[str] = None
        self.joined_rooms: set = set()

        self.assembler = ReceptionAssembler(strict=self.transfer_settings.strict_assembly)
        self.folders = FolderAggregator(self.assembler, self.transfer_settings.download_dir)
        self.sender = TransferSender(
            self,
            chunk_size=self.transfer_settings.chunk_size,
            parallel_limit=self.transfer_settings.parallel_limit,
        )

        self._ws = None
        self._receive_task: Optional[asyncio.Task] = None
        self._room_listeners: List[RoomListener] = []

    # =========================================================================
    # Connection
    # =========================================================================

    async def connect(self) -> None:
        """Open the relay connection and join :attr:`room_id`.

        Connection failures are reported through :attr:`status` and
        :attr:`error`; nothing is retried.
        """
        if not is_valid_room_id(self.room_id):
            self._set_status(ConnectionStatus.ERROR, "Room ID is required.")
            return

        await self.close()
        self.assembler.reset()
        self.joined_rooms.clear()
        self._set_status(ConnectionStatus.CONNECTING)

        try:
            self._ws = await websockets.connect(
                self.url,
                max_size=self.relay_settings.max_message_size,
                open_timeout=CONNECT_TIMEOUT,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            self._set_status(ConnectionStatus.ERROR, str(e) or "Failed to connect to the relay.")
            return

        self._set_status(ConnectionStatus.CONNECTED)
        self._receive_task = asyncio.create_task(self._receive_loop(self._ws))
        await self.join(self.room_id)

    async def close(self) -> None:
        """Close the connection, if any, and wait for the receive task."""
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        task, self._receive_task = self._receive_task, None
        if task is not None:
            await task
        if self.status == ConnectionStatus.CONNECTED:
            self._set_status(ConnectionStatus.IDLE)

    async def join(self, room_id: str) -> None:
        await self.emit(Event.ROOM_JOIN.value, {"roomId": room_id})

    async def leave(self, room_id: str) -> None:
        await self.emit(Event.ROOM_LEAVE.value, {"roomId": room_id})
        self.joined_rooms.discard(room_id)

    @property
    def connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED and self._ws is not None

    def _set_status(self, status: ConnectionStatus, error: Optional[str] = None) -> None:
        self.status = status
        self.error = error
        if error:
            logger.warning(f"[Peer] {status.value}: {error}")
        else:
            logger.info(f"[Peer] {status.value} ({self.url}, room {self.room_id})")

    # =========================================================================
    # Sending
    # =========================================================================

    async def emit(self, event: str, data: Dict[str, Any], chunk: Optional[bytes] = None) -> None:
        """Put one event on the wire (the sender's Emitter interface).

        Raises:
            NotConnectedError: If there is no open connection.
        """
        if self._ws is None:
            raise NotConnectedError()
        await self._ws.send(encode_frame(event, data, chunk))

    def enqueue(self, files: Iterable[SourceFile]) -> List[QueuedFile]:
        return self.sender.enqueue(files)

    async def send_all(self) -> List[OutgoingTransfer]:
        """Send every queued file to the joined room.

        Raises:
            NotConnectedError: If the client is not connected.
        """
        if not self.connected:
            raise NotConnectedError()
        return await self.sender.send_all(self.room_id)

    # =========================================================================
    # Receiving
    # =========================================================================

    def on_room_event(self, listener: RoomListener) -> Callable[[], None]:
        """Call ``listener(event, room_id)`` for room:joined / peer:joined / peer:left."""
        self._room_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._room_listeners:
                self._room_listeners.remove(listener)

        return unsubscribe

    async def _receive_loop(self, ws) -> None:
        try:
            async for frame in ws:
                self.handle_frame(frame)
        except ConnectionClosed as e:
            if ws is self._ws:
                self._ws = None
                self._set_status(ConnectionStatus.ERROR, f"Connection lost: {e}")
            return

        if ws is self._ws:
            self._ws = None
            self._set_status(ConnectionStatus.IDLE)

    def handle_frame(self, frame: Frame) -> None:
        """Dispatch one inbound frame."""
        try:
            envelope = decode_frame(frame)
        except FrameError as e:
            logger.debug(f"[Peer] Ignoring undecodable frame: {e.message}")
            return

        if envelope.event in ROOM_EVENTS:
            self._handle_room_event(envelope)
        elif envelope.event in TRANSFER_EVENTS:
            try:
                message = parse_peer_message(envelope.event, envelope.data, envelope.body)
            except ValidationError as e:
                logger.debug(f"[Peer] Ignoring invalid {envelope.event}: {e.error_count()} error(s)")
                return
            try:
                self.assembler.handle(message)
            except Exception:
                # One bad transfer must not end the receive loop for the others
                logger.exception(f"[Peer] Failed to apply {envelope.event} for {message.transferId}")
        else:
            logger.debug(f"[Peer] Ignoring unknown event {envelope.event!r}")

    def _handle_room_event(self, envelope: Envelope) -> None:
        room_id = envelope.room_id
        if not isinstance(room_id, str):
            return
        if envelope.event == Event.ROOM_JOINED.value:
            self.joined_rooms.add(room_id)
            self.error = None

        logger.info(f"[Peer] {envelope.event} in room {room_id}")
        for listener in list(self._room_listeners):
            try:
                listener(envelope.event, room_id)
            except Exception:
                logger.exception("[Peer] Room listener failed")
