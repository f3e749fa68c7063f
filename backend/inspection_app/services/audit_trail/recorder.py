"""
Audit Trail Recorder

Buffered, append-only recorder for inspection lifecycle events.

Core Principles:
1. record() never touches storage on the caller's thread. It enqueues and returns.
2. One writer thread owns the batch. No shared list, no ad hoc locking.
3. The writer stamps timestamp and sequence in dequeue order, so retrieval
   order per inspection equals record order.
4. A batch is flushed when it reaches max_batch_size or when flush_interval
   seconds have passed since its first event, whichever comes first.
5. A failed flush retries the SAME batch after retry_backoff. Nothing is
   dropped or reordered while the process lives.
6. The queue is bounded by max_queue_size. When the writer falls that far
   behind, record() waits up to enqueue_timeout for space, then drops the
   event, counts it in lost_events and logs at ERROR. It never raises.

DURABILITY: events still buffered when the process dies are lost. close()
makes one last attempt and logs at ERROR how many events it could not write.
"""
import logging
import queue
import threading
import time
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from ...models.db_models import AuditAction, utcnow
from ...models.domain import AuditEvent
from ...settings import (
    AUDIT_MAX_BATCH_SIZE, AUDIT_FLUSH_INTERVAL_SECONDS, AUDIT_RETRY_BACKOFF_SECONDS,
    AUDIT_MAX_QUEUE_SIZE, AUDIT_ENQUEUE_TIMEOUT_SECONDS,
)
from .sinks import AuditSink

logger = logging.getLogger(__name__)


class _FlushRequest:
    """Queue marker asking the writer to flush now (and optionally stop)."""

    def __init__(self, stop: bool = False):
        self.stop = stop
        self.done = threading.Event()


class AuditTrailRecorder:
    """
    Single-writer audit recorder.

    Construct one per process (the FastAPI app holds it on app.state) and
    inject a sink. Tests pass a MemoryAuditSink or a failing fake.
    """

    def __init__(
        self,
        sink: AuditSink,
        max_batch_size: int = AUDIT_MAX_BATCH_SIZE,
        flush_interval: float = AUDIT_FLUSH_INTERVAL_SECONDS,
        retry_backoff: float = AUDIT_RETRY_BACKOFF_SECONDS,
        max_queue_size: int = AUDIT_MAX_QUEUE_SIZE,
        enqueue_timeout: float = AUDIT_ENQUEUE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utcnow,
        history_flush_timeout: Optional[float] = 10.0,
    ):
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")
        if max_queue_size < 1:
            raise ValueError("max_queue_size must be at least 1")
        self.sink = sink
        self.max_batch_size = max_batch_size
        self.flush_interval = flush_interval
        self.retry_backoff = retry_backoff
        self.max_queue_size = max_queue_size
        self.enqueue_timeout = enqueue_timeout
        self.clock = clock
        self.now = now
        self.history_flush_timeout = history_flush_timeout

        self._queue: "queue.Queue" = queue.Queue(maxsize=max_queue_size)
        self._thread: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()
        self._closing = threading.Event()
        self._closed = False

        # Writer-thread state
        self._sequence = 0
        self._last_timestamp: Optional[datetime] = None

        self.lost_events = 0
        self._lost_lock = threading.Lock()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Start the writer thread. Safe to call more than once."""
        with self._start_lock:
            if self._closed:
                raise RuntimeError("Audit recorder is closed")
            self._start_locked()

    def _start_locked(self) -> None:
        if self._thread is not None:
            return
        self._sequence = self.sink.last_sequence()
        self._thread = threading.Thread(
            target=self._run, name="audit-trail-writer", daemon=True,
        )
        self._thread.start()
        logger.info(
            f"Audit recorder started (batch={self.max_batch_size}, queue={self.max_queue_size}, "
            f"interval={self.flush_interval}s, last_sequence={self._sequence})"
        )

    def close(self, timeout: Optional[float] = None) -> int:
        """
        Flush what is buffered and stop the writer.

        Returns:
            Number of events that could not be written
        """
        with self._start_lock:
            if self._closed:
                return self.lost_events
            self._closed = True
            thread = self._thread

        if thread is None:
            self._count_lost(self._drain_unwritten())
        else:
            self._closing.set()
            if thread.is_alive():
                try:
                    self._queue.put(_FlushRequest(stop=True), timeout=timeout)
                except queue.Full:
                    logger.error("Audit queue still full at shutdown; could not ask the writer to stop")
            thread.join(timeout)
            if thread.is_alive():
                logger.error("Audit writer did not stop in time; buffered events may be lost")

        if self.lost_events:
            logger.error(f"Audit recorder closed with {self.lost_events} unwritten events")
        else:
            logger.info("Audit recorder closed, all events written")
        return self.lost_events

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _count_lost(self, count: int) -> None:
        if count:
            with self._lost_lock:
                self.lost_events += count

    # =========================================================================
    # PRODUCER SIDE
    # =========================================================================

    def record(
        self,
        inspection_id: str,
        action: AuditAction,
        performed_by: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        """
        Enqueue an audit event. Never blocks on storage and never raises.

        The returned event has no timestamp or sequence yet; the writer
        assigns both when it takes the event off the queue. An event that
        cannot be enqueued (recorder closed, writer failed to start, queue
        full past enqueue_timeout) is counted in lost_events.
        """
        event = AuditEvent(
            id=str(uuid4()),
            inspection_id=inspection_id,
            action=AuditAction(action),
            performed_by=performed_by,
            details=dict(details or {}),
        )
        # Held across the put so close() cannot slip in between the check and
        # the enqueue; an accepted event is always ahead of the stop request.
        with self._start_lock:
            if self._closed:
                self._lose(event, "recorded after close")
                return event
            try:
                self._start_locked()
            except Exception as e:
                self._lose(event, f"writer could not start: {e}")
                return event
            try:
                self._queue.put(event, timeout=self.enqueue_timeout)
            except queue.Full:
                self._lose(event, f"queue full ({self.max_queue_size} pending)")
        return event

    def _lose(self, event: AuditEvent, reason: str) -> None:
        self._count_lost(1)
        logger.error(
            f"Audit event {event.action.value} for {event.inspection_id} not written: {reason}"
        )

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Ask the writer to flush everything recorded so far and wait.

        Returns:
            True once written, False if the timeout expired first
        """
        with self._start_lock:
            if self._closed:
                return self._queue.empty()
            self._start_locked()
        request = _FlushRequest()
        try:
            self._queue.put(request, timeout=timeout)
        except queue.Full:
            return False
        return request.done.wait(timeout)

    def history(self, inspection_id: str) -> List[AuditEvent]:
        """Every event for an inspection, in the order it was recorded."""
        if not self.flush(self.history_flush_timeout):
            logger.warning(f"Audit flush timed out reading history for {inspection_id}; result may be partial")
        return self.sink.read(inspection_id)

    # =========================================================================
    # WRITER THREAD
    # =========================================================================

    def _stamp(self, event: AuditEvent) -> AuditEvent:
        timestamp = self.now()
        if self._last_timestamp is not None and timestamp < self._last_timestamp:
            # wall clock stepped back
            timestamp = self._last_timestamp
        self._last_timestamp = timestamp
        self._sequence += 1
        return replace(event, timestamp=timestamp, sequence=self._sequence)

    def _run(self) -> None:
        batch: List[AuditEvent] = []
        first_buffered_at: Optional[float] = None
        waiters: List[threading.Event] = []

        while True:
            timeout = None
            if batch:
                timeout = max(0.0, first_buffered_at + self.flush_interval - self.clock())

            try:
                item = self._queue.get(timeout=timeout)
            except queue.Empty:
                item = None

            force = False
            stop = False
            if isinstance(item, _FlushRequest):
                waiters.append(item.done)
                force = True
                stop = item.stop
            elif item is not None:
                if not batch:
                    first_buffered_at = self.clock()
                batch.append(self._stamp(item))

            due = bool(batch) and (
                len(batch) >= self.max_batch_size
                or self.clock() - first_buffered_at >= self.flush_interval
            )

            if force or due:
                if batch and not self._write(batch, final=stop):
                    self._count_lost(len(batch) + self._drain_unwritten())
                    for done in waiters:
                        done.set()
                    return
                batch = []
                first_buffered_at = None
                for done in waiters:
                    done.set()
                waiters = []

            if stop:
                self._count_lost(self._drain_unwritten())
                return

    def _write(self, batch: List[AuditEvent], final: bool = False) -> bool:
        """
        Write one batch, retrying the same batch until it succeeds.

        Once close() has been requested only one more attempt is made.

        Returns:
            True if written, False if given up at shutdown
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                self.sink.write_batch(batch)
                if attempt > 1:
                    logger.info(f"Audit batch of {len(batch)} written after {attempt} attempts")
                return True
            except Exception as e:
                logger.warning(f"Audit flush of {len(batch)} events failed (attempt {attempt}): {e}")
                if final or (self._closing.is_set() and attempt >= 2):
                    return False
                self._closing.wait(self.retry_backoff)

    def _drain_unwritten(self) -> int:
        """Count and discard events still queued when the writer has stopped."""
        count = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return count
            if isinstance(item, _FlushRequest):
                item.done.set()
            else:
                count += 1
