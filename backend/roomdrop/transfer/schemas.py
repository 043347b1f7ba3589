"""Data models for chunked file transfers.

This module defines the state carried on both ends of a transfer:
- TransferMeta: what the sender announces before the first chunk
- OutgoingTransfer / IncomingTransfer: per-transfer state machines
- OutgoingSnapshot / TransferSnapshot: immutable views handed to subscribers

Field names on the pydantic models match the wire format (camelCase),
the mutable state objects are plain dataclasses owned by a single task.
"""
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from roomdrop.config import DEFAULT_CHUNK_SIZE


def compute_total_chunks(size: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """Number of chunks for a payload of *size* bytes.

    An empty payload still travels as one (empty) chunk.

    Examples:
        >>> compute_total_chunks(0)
        1
        >>> compute_total_chunks(512 * 1024 + 1)
        2
    """
    return max(1, math.ceil(size / chunk_size))


class OutgoingStatus(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    COMPLETE = "complete"
    ERROR = "error"


class IncomingStatus(str, Enum):
    PENDING = "pending"
    RECEIVING = "receiving"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({"complete", "error"})


class TransferMeta(BaseModel):
    """Metadata announced for one file before its chunks.

    Attributes:
        transferId: Unique id of the transfer (hex).
        name: File name without directories.
        size: Declared size in bytes.
        type: MIME type reported by the sender (may be empty).
        relativePath: ``/``-separated path inside a selected folder, if any.
        totalChunks: ``max(1, ceil(size / chunkSize))``.
        chunkSize: Chunk size the sender used (not sent on the wire).
    """
    transferId: str = Field(..., description="Unique transfer ID")
    name: str = Field(..., description="File name")
    size: int = Field(..., ge=0, description="Declared size in bytes")
    type: str = Field(default="", description="MIME type")
    relativePath: Optional[str] = Field(
        default=None,
        description="Folder-relative path, present only for folder selections"
    )
    totalChunks: int = Field(..., ge=1, description="Declared number of chunks")
    chunkSize: int = Field(default=DEFAULT_CHUNK_SIZE, gt=0, description="Chunk size in bytes")

    @model_validator(mode="after")
    def _chunks_fit_size(self) -> "TransferMeta":
        # Every chunk but an empty file's single chunk carries at least one byte
        if self.totalChunks > max(1, self.size):
            raise ValueError(
                f"totalChunks {self.totalChunks} is inconsistent with size {self.size}"
            )
        return self


@dataclass
class OutgoingTransfer:
    """Sender-side state of one file."""
    meta: TransferMeta
    sent_chunks: int = 0
    status: OutgoingStatus = OutgoingStatus.PENDING
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.value in TERMINAL_STATUSES

    def snapshot(self) -> "OutgoingSnapshot":
        return OutgoingSnapshot(
            transferId=self.meta.transferId,
            name=self.meta.name,
            relativePath=self.meta.relativePath,
            status=self.status,
            sentChunks=self.sent_chunks,
            totalChunks=self.meta.totalChunks,
            errorMessage=self.error_message,
        )


@dataclass
class IncomingTransfer:
    """Receiver-side state of one file.

    ``slots`` holds one entry per declared chunk while the transfer is open
    and is set to ``None`` once the transfer completes or fails. ``payload``
    is only populated on successful completion.
    """
    meta: TransferMeta
    received_bytes: int = 0
    received_chunks: int = 0
    status: IncomingStatus = IncomingStatus.PENDING
    error_message: Optional[str] = None
    slots: Optional[List[Optional[bytes]]] = None
    payload: Optional[bytes] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.slots is None and self.status.value not in TERMINAL_STATUSES:
            self.slots = [None] * self.meta.totalChunks

    @property
    def transfer_id(self) -> str:
        return self.meta.transferId

    @property
    def is_terminal(self) -> bool:
        return self.status.value in TERMINAL_STATUSES

    @property
    def buffered_bytes(self) -> int:
        """Bytes currently held in the slot buffer and assembled payload."""
        in_flight = sum(len(s) for s in self.slots if s is not None) if self.slots else 0
        return in_flight + (len(self.payload) if self.payload is not None else 0)

    def snapshot(self) -> "TransferSnapshot":
        return TransferSnapshot(
            transferId=self.meta.transferId,
            name=self.meta.name,
            relativePath=self.meta.relativePath,
            status=self.status,
            receivedBytes=self.received_bytes,
            receivedChunks=self.received_chunks,
            totalChunks=self.meta.totalChunks,
            size=self.meta.size,
            errorMessage=self.error_message,
        )


class OutgoingSnapshot(BaseModel):
    """Progress view of an outgoing transfer."""
    transferId: str
    name: str
    relativePath: Optional[str] = None
    status: OutgoingStatus
    sentChunks: int
    totalChunks: int
    errorMessage: Optional[str] = None


class TransferSnapshot(BaseModel):
    """Progress view of an incoming transfer, as handed to subscribers."""
    transferId: str
    name: str
    relativePath: Optional[str] = None
    status: IncomingStatus
    receivedBytes: int
    receivedChunks: int
    totalChunks: int
    size: int
    errorMessage: Optional[str] = None
