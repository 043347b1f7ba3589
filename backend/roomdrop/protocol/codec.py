"""WebSocket frame codec for the file-share protocol.

Two frame kinds are used:

    - Text frame: ``{"event": <name>, "data": {...}}`` as UTF-8 JSON.
    - Binary frame: 4-byte big-endian header length, the same JSON envelope
      as the header, then the raw payload bytes (chunk body).

The relay only needs ``event`` and ``data.roomId`` to route a frame, so
:func:`peek_route` decodes the header and never touches the body. Peers use
:func:`decode_frame` to get the full envelope including the body.
"""
import json
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

HEADER_LENGTH = struct.Struct(">I")

Frame = Union[str, bytes]


class FrameError(Exception):
    """Raised when a frame cannot be decoded into an envelope."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


@dataclass
class Envelope:
    """Decoded frame.

    Attributes:
        event: Event name.
        data: JSON object carried by the frame.
        body: Raw payload of a binary frame, ``None`` for text frames.
    """
    event: str
    data: Dict[str, Any] = field(default_factory=dict)
    body: Optional[bytes] = None

    @property
    def room_id(self) -> Any:
        return self.data.get("roomId")


def encode_frame(event: str, data: Dict[str, Any], body: Optional[bytes] = None) -> Frame:
    """Encode an event as a text frame, or a binary frame when *body* is set.

    Args:
        event: Event name (e.g. ``file:chunk``).
        data: JSON-serializable payload.
        body: Raw bytes to append after the header.

    Returns:
        ``str`` for text frames, ``bytes`` for binary frames.
    """
    envelope = {"event": event, "data": data}
    if body is None:
        return json.dumps(envelope, separators=(",", ":"))

    header = json.dumps(envelope, separators=(",", ":")).encode("utf-8")
    return b"".join((HEADER_LENGTH.pack(len(header)), header, body))


def _parse_envelope(raw: Union[str, bytes]) -> Tuple[str, Dict[str, Any]]:
    try:
        envelope = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise FrameError(f"Invalid JSON envelope: {e}") from e

    if not isinstance(envelope, dict):
        raise FrameError("Envelope must be a JSON object")

    event = envelope.get("event")
    if not isinstance(event, str) or not event:
        raise FrameError("Envelope is missing an event name")

    data = envelope.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise FrameError("Envelope data must be a JSON object")

    return event, data


def _split_binary(frame: bytes) -> Tuple[bytes, int]:
    if len(frame) < HEADER_LENGTH.size:
        raise FrameError("Binary frame shorter than its length prefix")
    (header_length,) = HEADER_LENGTH.unpack_from(frame)
    body_start = HEADER_LENGTH.size + header_length
    if body_start > len(frame):
        raise FrameError("Binary frame header exceeds frame length")
    return frame[HEADER_LENGTH.size:body_start], body_start


def decode_frame(frame: Frame) -> Envelope:
    """Decode a text or binary frame into an :class:`Envelope`.

    Raises:
        FrameError: If the frame is malformed.
    """
    if isinstance(frame, str):
        event, data = _parse_envelope(frame)
        return Envelope(event=event, data=data)

    header, body_start = _split_binary(frame)
    event, data = _parse_envelope(header)
    return Envelope(event=event, data=data, body=frame[body_start:])


def peek_route(frame: Frame) -> Tuple[str, Dict[str, Any]]:
    """Return ``(event, data)`` without copying the body of a binary frame.

    Raises:
        FrameError: If the frame is malformed.
    """
    if isinstance(frame, str):
        return _parse_envelope(frame)

    header, _ = _split_binary(frame)
    return _parse_envelope(header)
