"""Pydantic models for the file-share message catalogue.

Room events are produced by the relay itself; transfer events travel from
one peer to every other member of a room through the relay, which never
looks past ``event`` and ``roomId``.

Room events:
    - room:join / room:leave: client → relay
    - room:joined: relay → joining client
    - peer:joined / peer:left: relay → other room members

Transfer events (peer → peer):
    - file:meta: (re)initialises receiver state for a transfer
    - file:chunk: one slice of the payload, carried as raw bytes
    - file:complete: triggers assembly
    - file:error: aborts receiver state
"""
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from roomdrop.transfer.schemas import TransferMeta


class Event(str, Enum):
    """Event names used on the wire."""
    ROOM_JOIN = "room:join"
    ROOM_LEAVE = "room:leave"
    ROOM_JOINED = "room:joined"
    PEER_JOINED = "peer:joined"
    PEER_LEFT = "peer:left"
    FILE_META = "file:meta"
    FILE_CHUNK = "file:chunk"
    FILE_COMPLETE = "file:complete"
    FILE_ERROR = "file:error"


# Events the relay forwards verbatim to the other members of a room
TRANSFER_EVENTS = frozenset({
    Event.FILE_META.value,
    Event.FILE_CHUNK.value,
    Event.FILE_COMPLETE.value,
    Event.FILE_ERROR.value,
})

# Events the relay emits on its own behalf
ROOM_EVENTS = frozenset({
    Event.ROOM_JOINED.value,
    Event.PEER_JOINED.value,
    Event.PEER_LEFT.value,
})


class FileMetaMessage(TransferMeta):
    """``file:meta`` payload: transfer metadata scoped to a room."""
    event: Literal["file:meta"] = "file:meta"
    roomId: str = Field(..., description="Room the transfer is sent to")

    def to_data(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"event", "chunkSize"}, exclude_none=True)


class FileChunkMessage(BaseModel):
    """``file:chunk`` payload; ``chunk`` travels as the binary frame body."""
    event: Literal["file:chunk"] = "file:chunk"
    roomId: str
    transferId: str
    chunkIndex: int
    chunk: bytes = b""

    def to_data(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"event", "chunk"})


class FileCompleteMessage(BaseModel):
    """``file:complete`` payload."""
    event: Literal["file:complete"] = "file:complete"
    roomId: str
    transferId: str

    def to_data(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"event"})


class FileErrorMessage(BaseModel):
    """``file:error`` payload with an optional human-readable reason."""
    event: Literal["file:error"] = "file:error"
    roomId: str
    transferId: str
    message: Optional[str] = None

    def to_data(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"event"}, exclude_none=True)


PeerMessage = Annotated[
    Union[FileMetaMessage, FileChunkMessage, FileCompleteMessage, FileErrorMessage],
    Field(discriminator="event"),
]

_peer_message_adapter: TypeAdapter = TypeAdapter(PeerMessage)


def parse_peer_message(
    event: str, data: Dict[str, Any], chunk: Optional[bytes] = None
) -> PeerMessage:
    """Build the typed transfer message for an inbound frame.

    Args:
        event: Event name from the frame envelope.
        data: JSON object carried by the frame.
        chunk: Raw bytes of a binary frame, if any.

    Returns:
        One of the ``File*Message`` models.

    Raises:
        pydantic.ValidationError: If the event is not a transfer event or
            required fields are missing.
    """
    fields = dict(data)
    fields["event"] = event
    if chunk is not None:
        fields["chunk"] = chunk
    return _peer_message_adapter.validate_python(fields)
