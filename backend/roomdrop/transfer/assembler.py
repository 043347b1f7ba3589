"""Receiver-side reassembly of chunked transfers.

One ReceptionAssembler serves one peer connection and is driven by that
connection's receive loop only. Every handler is synchronous and never
blocks.

State machine per transfer:
    pending → receiving → {complete | error}

Behaviour:
    - ``file:meta`` registers a fresh transfer with ``totalChunks`` empty
      slots, replacing any transfer with the same id.
    - ``file:chunk`` for an unknown or finished transfer is dropped.
      A repeated index overwrites its slot (last write wins) without being
      counted twice.
    - ``file:complete`` concatenates the slots in index order. In strict
      mode any missing slot, or a total that differs from the declared size,
      fails the transfer; in lenient mode the populated slots are joined and
      a shorter file is exposed.
    - ``file:error`` fails the transfer and drops its buffer.

Memory:
    Slot buffers and assembled payloads stay in memory until the transfer
    finishes or :meth:`discard` is called. Nothing caps the total; it grows
    with the number of open transfers.
"""
import logging
from typing import Callable, Dict, List, Optional

from roomdrop.protocol.messages import (
    FileChunkMessage,
    FileCompleteMessage,
    FileErrorMessage,
    FileMetaMessage,
    PeerMessage,
)
from roomdrop.transfer.schemas import (
    IncomingStatus,
    IncomingTransfer,
    TransferMeta,
    TransferSnapshot,
)

logger = logging.getLogger(__name__)

DEFAULT_RECEIVE_ERROR = "An error occurred while receiving the file."

Listener = Callable[[TransferSnapshot], None]


class ReceptionAssembler:
    """Tracks incoming transfers and rebuilds their payloads.

    Args:
        strict: Fail transfers with missing chunks instead of truncating.
    """

    def __init__(self, strict: bool = True) -> None:
        self.strict = strict

        # transfer_id -> IncomingTransfer, in arrival order of their meta
        self._transfers: Dict[str, IncomingTransfer] = {}

        self._listeners: List[Listener] = []

    # =========================================================================
    # Dispatch
    # =========================================================================

    def handle(self, message: PeerMessage) -> None:
        """Apply one inbound transfer message."""
        if isinstance(message, FileMetaMessage):
            self.on_meta(message)
        elif isinstance(message, FileChunkMessage):
            self.on_chunk(message.transferId, message.chunkIndex, message.chunk)
        elif isinstance(message, FileCompleteMessage):
            self.on_complete(message.transferId)
        elif isinstance(message, FileErrorMessage):
            self.on_error(message.transferId, message.message)
        else:
            raise TypeError(f"Unsupported message type: {type(message).__name__}")

    def on_meta(self, meta: TransferMeta) -> IncomingTransfer:
        """Register (or reset) a transfer from its metadata."""
        clean_meta = TransferMeta(**meta.model_dump(include=set(TransferMeta.model_fields)))
        transfer = IncomingTransfer(meta=clean_meta)

        # Re-insert so a reset transfer moves to the end, like a new arrival
        replaced = self._transfers.pop(clean_meta.transferId, None) is not None
        self._transfers[clean_meta.transferId] = transfer

        logger.info(
            f"[Assembler] {'Reset' if replaced else 'New'} transfer {clean_meta.transferId}: "
            f"{clean_meta.relativePath or clean_meta.name} "
            f"({clean_meta.size} bytes, {clean_meta.totalChunks} chunks)"
        )
        self._notify(transfer)
        return transfer

    def on_chunk(self, transfer_id: str, chunk_index: int, data: bytes) -> bool:
        """Store one chunk.

        Returns:
            True if the chunk was stored, False if it was dropped.
        """
        transfer = self._transfers.get(transfer_id)
        if transfer is None or transfer.slots is None:
            logger.debug(f"[Assembler] Dropping chunk {chunk_index} for unknown transfer {transfer_id}")
            return False

        if not 0 <= chunk_index < transfer.meta.totalChunks:
            logger.warning(
                f"[Assembler] Dropping chunk {chunk_index} for {transfer_id}: "
                f"outside 0..{transfer.meta.totalChunks - 1}"
            )
            return False

        previous = transfer.slots[chunk_index]
        transfer.slots[chunk_index] = data
        if previous is None:
            transfer.received_chunks += 1
            transfer.received_bytes += len(data)
        else:
            transfer.received_bytes += len(data) - len(previous)
            logger.debug(f"[Assembler] Chunk {chunk_index} of {transfer_id} delivered again")

        transfer.status = IncomingStatus.RECEIVING
        self._notify(transfer)
        return True

    def on_complete(self, transfer_id: str) -> Optional[IncomingTransfer]:
        """Assemble a transfer's payload from its slots."""
        transfer = self._transfers.get(transfer_id)
        if transfer is None or transfer.slots is None:
            logger.debug(f"[Assembler] Ignoring complete for unknown transfer {transfer_id}")
            return None

        slots = transfer.slots
        missing = sum(1 for s in slots if s is None)
        payload = b"".join(s for s in slots if s is not None)

        if self.strict and (missing or len(payload) != transfer.meta.size):
            if missing:
                reason = f"Missing {missing} of {transfer.meta.totalChunks} chunks"
            else:
                reason = f"Received {len(payload)} bytes, expected {transfer.meta.size}"
            self._fail(transfer, reason)
            return transfer

        if missing:
            logger.warning(
                f"[Assembler] {transfer_id} completed with {missing} missing chunk(s); "
                f"payload truncated to {len(payload)} of {transfer.meta.size} bytes"
            )

        transfer.payload = payload
        transfer.received_bytes = len(payload)
        transfer.received_chunks = transfer.meta.totalChunks - missing
        transfer.status = IncomingStatus.COMPLETE
        transfer.slots = None

        logger.info(f"[Assembler] {transfer_id} complete ({len(payload)} bytes)")
        self._notify(transfer)
        return transfer

    def on_error(self, transfer_id: str, message: Optional[str] = None) -> Optional[IncomingTransfer]:
        """Fail a transfer on behalf of the sender."""
        transfer = self._transfers.get(transfer_id)
        if transfer is None or transfer.is_terminal:
            return None

        self._fail(transfer, message or DEFAULT_RECEIVE_ERROR)
        return transfer

    def _fail(self, transfer: IncomingTransfer, message: str) -> None:
        transfer.status = IncomingStatus.ERROR
        transfer.error_message = message
        transfer.slots = None
        transfer.payload = None
        logger.warning(f"[Assembler] {transfer.transfer_id} failed: {message}")
        self._notify(transfer)

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, transfer_id: str) -> Optional[IncomingTransfer]:
        return self._transfers.get(transfer_id)

    @property
    def transfers(self) -> List[IncomingTransfer]:
        return list(self._transfers.values())

    def snapshots(self) -> List[TransferSnapshot]:
        """Polling view of every known transfer."""
        return [t.snapshot() for t in self._transfers.values()]

    def get_payload(self, transfer_id: str) -> Optional[bytes]:
        transfer = self._transfers.get(transfer_id)
        return transfer.payload if transfer is not None else None

    def buffered_bytes(self) -> int:
        """Bytes held in open slot buffers plus assembled payloads."""
        return sum(t.buffered_bytes for t in self._transfers.values())

    # =========================================================================
    # Housekeeping
    # =========================================================================

    def discard(self, transfer_id: str) -> bool:
        """Forget a transfer and release its memory."""
        transfer = self._transfers.pop(transfer_id, None)
        if transfer is None:
            return False
        transfer.slots = None
        transfer.payload = None
        return True

    def reset(self) -> None:
        """Drop every transfer (used when the peer reconnects)."""
        for transfer in self._transfers.values():
            transfer.slots = None
            transfer.payload = None
        self._transfers.clear()

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call *listener* with a snapshot after every state change.

        Returns:
            A function that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, transfer: IncomingTransfer) -> None:
        snapshot = transfer.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("[Assembler] Listener failed")
