"""In-memory FIFO of signals awaiting processing.

One worker task drains the queue. A failed signal goes back to the tail
until it has failed ``max_attempts`` times, then it is marked rejected
and dropped. Queued entries are not persisted and are lost on restart.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from src.monitoring.models import utcnow
from src.signal_pipeline.models import SignalStatus
from src.signal_pipeline.processor import SignalProcessor
from src.store.base import DataStore

logger = logging.getLogger(__name__)


@dataclass
class QueuedSignal:
    signal_id: str
    queued_at: datetime = field(default_factory=utcnow)
    attempts: int = 0

    def to_dict(self) -> dict:
        return {
            "signal_id": self.signal_id,
            "queued_at": self.queued_at.isoformat(),
            "attempts": self.attempts,
        }


@dataclass
class QueueStatus:
    queue_length: int
    is_processing: bool
    signals: list[QueuedSignal] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "queue_length": self.queue_length,
            "is_processing": self.is_processing,
            "signals": [s.to_dict() for s in self.signals],
        }


class SignalPipelineQueue:
    """FIFO with a single draining worker and bounded tail retries.

    Example:
        queue = SignalPipelineQueue(processor, store)
        await queue.enqueue("sig_123")
        await queue.wait_idle()
    """

    def __init__(self, processor: SignalProcessor, store: DataStore, max_attempts: int = 3) -> None:
        self._processor = processor
        self._store = store
        self.max_attempts = max_attempts
        self._queue: deque[QueuedSignal] = deque()
        self._is_processing = False
        self._worker: Optional[asyncio.Task] = None

    async def enqueue(self, signal_id: str) -> QueuedSignal:
        """Append a signal and start the worker if none is draining; never waits for processing."""
        item = QueuedSignal(signal_id=signal_id)
        self._queue.append(item)
        logger.info("Signal %s queued (queue length %d)", signal_id, len(self._queue))
        if not self._is_processing:
            self._is_processing = True
            self._worker = asyncio.create_task(self._drain())
        return item

    def status(self) -> QueueStatus:
        return QueueStatus(
            queue_length=len(self._queue),
            is_processing=self._is_processing,
            signals=[
                QueuedSignal(signal_id=s.signal_id, queued_at=s.queued_at, attempts=s.attempts)
                for s in self._queue
            ],
        )

    def clear(self) -> None:
        """Drop everything queued and stop the worker."""
        self._queue.clear()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
        self._worker = None
        self._is_processing = False

    async def wait_idle(self) -> None:
        """Wait until the worker has drained the queue."""
        while self._worker is not None:
            worker = self._worker
            try:
                await worker
            except asyncio.CancelledError:
                pass
            if self._worker is worker:
                self._worker = None

    async def _drain(self) -> None:
        try:
            while self._queue:
                item = self._queue.popleft()
                try:
                    await self._processor.process(item.signal_id)
                except Exception as exc:
                    await self._handle_failure(item, exc)
        finally:
            if self._worker is None or self._worker is asyncio.current_task():
                self._is_processing = False

    async def _handle_failure(self, item: QueuedSignal, exc: Exception) -> None:
        item.attempts += 1
        if item.attempts < self.max_attempts:
            logger.warning("Signal %s failed (attempt %d/%d), requeued: %s",
                           item.signal_id, item.attempts, self.max_attempts, exc)
            self._queue.append(item)
            return

        logger.error("Signal %s failed %d times, rejecting: %s", item.signal_id, item.attempts, exc)
        try:
            await self._store.update_signal_status(item.signal_id, SignalStatus.REJECTED)
        except Exception as status_exc:
            logger.error("Could not mark signal %s rejected: %s", item.signal_id, status_exc)
