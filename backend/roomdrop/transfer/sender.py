"""Chunked sender for queued files.

Each file is announced with ``file:meta``, streamed as ``file:chunk``
messages of at most ``chunk_size`` bytes, and finished with
``file:complete``. A failure while reading or emitting sends ``file:error``
for that file only; siblings in the same or later batches carry on.

Files are sent in batches of ``parallel_limit`` (default 3): every file in
a batch runs concurrently and the next batch starts once the whole batch has
finished, successfully or not. There is no retry; a failed file has to be
queued again by the caller.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from roomdrop.config import DEFAULT_CHUNK_SIZE, DEFAULT_PARALLEL_LIMIT
from roomdrop.protocol.messages import (
    FileChunkMessage,
    FileCompleteMessage,
    FileErrorMessage,
    FileMetaMessage,
)
from roomdrop.transfer.ids import generate_hex_id, generate_transfer_id
from roomdrop.transfer.schemas import (
    OutgoingSnapshot,
    OutgoingStatus,
    OutgoingTransfer,
    TransferMeta,
    compute_total_chunks,
)
from roomdrop.transfer.sources import SourceFile

logger = logging.getLogger(__name__)

DEFAULT_SEND_ERROR = "Unable to send file."


class Emitter(Protocol):
    """Anything that can put a protocol event on the wire."""

    async def emit(self, event: str, data: Dict[str, Any], chunk: Optional[bytes] = None) -> None:
        ...


@dataclass
class QueuedFile:
    """A file waiting in the send queue."""
    source: SourceFile
    id: str = field(default_factory=lambda: generate_hex_id(6))


class TransferSender:
    """Sends queued files to a room through an :class:`Emitter`.

    Every transfer's state is mutated only by the task sending it, so no
    locking is needed even though a batch runs concurrently.
    """

    def __init__(
        self,
        emitter: Emitter,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        parallel_limit: int = DEFAULT_PARALLEL_LIMIT,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if parallel_limit < 1:
            raise ValueError("parallel_limit must be at least 1")

        self.emitter = emitter
        self.chunk_size = chunk_size
        self.parallel_limit = parallel_limit

        self.queue: List[QueuedFile] = []

        # transfer_id -> OutgoingTransfer, in send order
        self.transfers: Dict[str, OutgoingTransfer] = {}

        self._subscribers: List[Callable[[OutgoingSnapshot], None]] = []

    # =========================================================================
    # Queue
    # =========================================================================

    def enqueue(self, files: Iterable[SourceFile]) -> List[QueuedFile]:
        """Append files to the send queue without sending anything."""
        queued = [QueuedFile(source=f) for f in files]
        self.queue.extend(queued)
        logger.debug(f"[Sender] Queued {len(queued)} file(s), {len(self.queue)} waiting")
        return queued

    def subscribe(self, callback: Callable[[OutgoingSnapshot], None]) -> Callable[[], None]:
        """Register a progress callback.

        Returns:
            A function that removes the callback again.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # =========================================================================
    # Sending
    # =========================================================================

    async def send_all(self, room_id: str) -> List[OutgoingTransfer]:
        """Drain the queue into *room_id*, ``parallel_limit`` files at a time.

        Returns:
            The transfers started by this call, in queue order.
        """
        pending = list(self.queue)
        if not pending:
            return []

        logger.info(
            f"[Sender] Sending {len(pending)} file(s) to room {room_id} "
            f"in batches of {self.parallel_limit}"
        )
        results: List[OutgoingTransfer] = []
        for start in range(0, len(pending), self.parallel_limit):
            batch = pending[start:start + self.parallel_limit]
            results.extend(await asyncio.gather(
                *[self._send_file(room_id, queued) for queued in batch]
            ))

        failed = sum(1 for t in results if t.status == OutgoingStatus.ERROR)
        logger.info(f"[Sender] Finished room {room_id}: {len(results) - failed} sent, {failed} failed")
        return results

    async def _send_file(self, room_id: str, queued: QueuedFile) -> OutgoingTransfer:
        source = queued.source
        meta = TransferMeta(
            transferId=generate_transfer_id(),
            name=source.name,
            size=source.size,
            type=source.mime_type,
            relativePath=source.relative_path,
            totalChunks=compute_total_chunks(source.size, self.chunk_size),
            chunkSize=self.chunk_size,
        )
        transfer = OutgoingTransfer(meta=meta)
        self.transfers[meta.transferId] = transfer
        self._notify(transfer)

        try:
            meta_message = FileMetaMessage(roomId=room_id, **meta.model_dump())
            await self.emitter.emit(meta_message.event, meta_message.to_data())
            transfer.status = OutgoingStatus.SENDING
            self._notify(transfer)

            for chunk_index in range(meta.totalChunks):
                start = chunk_index * self.chunk_size
                end = min(start + self.chunk_size, meta.size)
                data = await source.read(start, end)

                chunk_message = FileChunkMessage(
                    roomId=room_id,
                    transferId=meta.transferId,
                    chunkIndex=chunk_index,
                )
                await self.emitter.emit(chunk_message.event, chunk_message.to_data(), data)
                transfer.sent_chunks = chunk_index + 1
                self._notify(transfer)

            complete = FileCompleteMessage(roomId=room_id, transferId=meta.transferId)
            await self.emitter.emit(complete.event, complete.to_data())
            transfer.status = OutgoingStatus.COMPLETE
            logger.info(f"[Sender] {meta.name} ({meta.size} bytes, {meta.totalChunks} chunks) sent")
        except Exception as e:
            message = str(e) or DEFAULT_SEND_ERROR
            transfer.status = OutgoingStatus.ERROR
            transfer.error_message = message
            logger.warning(f"[Sender] Transfer {meta.transferId} ({meta.name}) failed: {message}")
            await self._emit_error(room_id, meta.transferId, message)
        finally:
            if queued in self.queue:
                self.queue.remove(queued)

        self._notify(transfer)
        return transfer

    async def _emit_error(self, room_id: str, transfer_id: str, message: str) -> None:
        error = FileErrorMessage(roomId=room_id, transferId=transfer_id, message=message)
        try:
            await self.emitter.emit(error.event, error.to_data())
        except Exception as e:
            # The transport is usually what failed; the receiver stays in receiving
            logger.debug(f"[Sender] Could not emit file:error for {transfer_id}: {e}")

    def _notify(self, transfer: OutgoingTransfer) -> None:
        snapshot = transfer.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("[Sender] Progress subscriber failed")

    def snapshots(self) -> List[OutgoingSnapshot]:
        return [t.snapshot() for t in self.transfers.values()]
