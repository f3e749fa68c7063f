"""
Test Suite for the Audit Trail Recorder

Key tests:
1. Flush by batch size
2. Flush by timer
3. Explicit flush and history
4. Failed flush retries the same batch, nothing lost or reordered
5. Ordering: timestamp + sequence follow record order
6. record() never waits on storage
7. close() reports events it could not write
8. Bounded queue: overflow is counted, never raised
9. record() racing close() never raises
10. DatabaseAuditSink round trip
"""
import threading
import time
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from inspection_app.errors import PersistenceError
from inspection_app.models.db_models import AuditAction
from inspection_app.models.domain import AuditEvent
from inspection_app.services.audit_trail import (
    AuditTrailRecorder, MemoryAuditSink, DatabaseAuditSink,
)


class FlakySink(MemoryAuditSink):
    """Fails the first `failures` writes, then behaves."""

    def __init__(self, failures):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def write_batch(self, events):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("database unavailable")
        super().write_batch(events)


class BrokenSink(MemoryAuditSink):
    def write_batch(self, events):
        raise ConnectionError("database unavailable")


class UnreachableSink(MemoryAuditSink):
    """Cannot even report its last sequence."""

    def last_sequence(self):
        raise PersistenceError("Failed to read last audit sequence")


class GatedSink(MemoryAuditSink):
    """Blocks every write until the gate opens."""

    def __init__(self):
        super().__init__()
        self.gate = threading.Event()
        self.writing = threading.Event()

    def write_batch(self, events):
        self.writing.set()
        self.gate.wait(5)
        super().write_batch(events)


@pytest.fixture
def make_recorder():
    created = []

    def factory(sink, **kwargs):
        kwargs.setdefault("flush_interval", 60)
        kwargs.setdefault("retry_backoff", 0.01)
        recorder = AuditTrailRecorder(sink, **kwargs)
        created.append(recorder)
        return recorder

    yield factory
    for recorder in created:
        recorder.close(timeout=5)


# =============================================================================
# TEST: FLUSH TRIGGERS
# =============================================================================

class TestFlushTriggers:

    def test_flush_when_batch_full(self, make_recorder, wait_for):
        sink = MemoryAuditSink()
        recorder = make_recorder(sink, max_batch_size=3)

        for _ in range(3):
            recorder.record("insp-1", AuditAction.PHOTO_ADDED, "officer-1")
        assert wait_for(lambda: sink.batches == [3])

        recorder.record("insp-1", AuditAction.PHOTO_ADDED, "officer-1")
        time.sleep(0.1)
        assert sink.batches == [3]

    def test_flush_when_timer_elapses(self, make_recorder, wait_for):
        sink = MemoryAuditSink()
        recorder = make_recorder(sink, max_batch_size=100, flush_interval=0.05)

        recorder.record("insp-1", AuditAction.CREATED, "officer-1")
        recorder.record("insp-1", AuditAction.RESPONSES_SUBMITTED, "officer-1")

        assert wait_for(lambda: len(sink.get_events()) == 2)
        assert sink.batches == [2]

    def test_explicit_flush(self, make_recorder):
        sink = MemoryAuditSink()
        recorder = make_recorder(sink)

        for _ in range(5):
            recorder.record("insp-1", AuditAction.SAMPLE_ADDED, "officer-1")

        assert recorder.flush(timeout=2) is True
        assert len(sink.get_events()) == 5

    def test_history_includes_unflushed_events(self, make_recorder):
        recorder = make_recorder(MemoryAuditSink())

        recorder.record("insp-1", AuditAction.CREATED, "officer-1")
        recorder.record("insp-2", AuditAction.CREATED, "officer-2")

        history = recorder.history("insp-1")
        assert [e.action for e in history] == [AuditAction.CREATED]
        assert history[0].performed_by == "officer-1"


# =============================================================================
# TEST: FAILURE HANDLING
# =============================================================================

class TestFlushFailures:

    def test_failed_flush_retries_same_batch(self, make_recorder):
        sink = FlakySink(failures=2)
        recorder = make_recorder(sink)

        recorded = [
            recorder.record("insp-1", action, "officer-1")
            for action in (AuditAction.CREATED, AuditAction.RESPONSES_SUBMITTED, AuditAction.SUBMITTED)
        ]

        assert recorder.flush(timeout=5) is True
        assert sink.attempts == 3
        stored = sink.read("insp-1")
        assert [e.id for e in stored] == [e.id for e in recorded]
        assert [e.sequence for e in stored] == [1, 2, 3]

    def test_close_reports_lost_events(self, make_recorder):
        recorder = make_recorder(BrokenSink())

        recorder.record("insp-1", AuditAction.CREATED, "officer-1")
        recorder.record("insp-1", AuditAction.PHOTO_ADDED, "officer-1")

        assert recorder.close(timeout=5) == 2
        assert recorder.running is False

    def test_close_flushes_buffer(self, make_recorder):
        sink = MemoryAuditSink()
        recorder = make_recorder(sink)
        recorder.record("insp-1", AuditAction.CREATED, "officer-1")

        assert recorder.close(timeout=5) == 0
        assert len(sink.get_events()) == 1

    def test_record_after_close_not_written(self, make_recorder):
        sink = MemoryAuditSink()
        recorder = make_recorder(sink)
        recorder.close(timeout=5)

        recorder.record("insp-1", AuditAction.CREATED, "officer-1")

        assert recorder.lost_events == 1
        assert sink.get_events() == []

    def test_full_queue_drops_and_counts(self, make_recorder):
        sink = GatedSink()
        recorder = make_recorder(sink, max_batch_size=1, max_queue_size=2, enqueue_timeout=0.05)

        recorder.record("insp-1", AuditAction.PHOTO_ADDED, "officer-1")
        assert sink.writing.wait(2)
        kept = [recorder.record("insp-1", AuditAction.PHOTO_ADDED, "officer-1") for _ in range(2)]

        started = time.monotonic()
        dropped = recorder.record("insp-1", AuditAction.SUBMITTED, "officer-1")
        assert time.monotonic() - started < 1.0

        assert recorder.lost_events == 1
        sink.gate.set()
        assert recorder.flush(timeout=5) is True
        stored = [e.id for e in sink.get_events()]
        assert len(stored) == 3
        assert all(e.id in stored for e in kept)
        assert dropped.id not in stored

    def test_record_never_raises_when_writer_cannot_start(self, make_recorder):
        recorder = make_recorder(UnreachableSink())

        event = recorder.record("insp-1", AuditAction.CREATED, "officer-1")

        assert event.inspection_id == "insp-1"
        assert recorder.lost_events == 1
        assert recorder.running is False

    def test_record_racing_close_never_raises(self, make_recorder):
        sink = MemoryAuditSink()
        recorder = make_recorder(sink, max_batch_size=5)
        errors = []
        ready = threading.Barrier(5)

        def produce():
            ready.wait()
            for _ in range(50):
                try:
                    recorder.record("insp-1", AuditAction.PHOTO_ADDED, "officer-1")
                except Exception as e:
                    errors.append(e)

        threads = [threading.Thread(target=produce) for _ in range(4)]
        for t in threads:
            t.start()
        ready.wait()
        recorder.close(timeout=5)
        for t in threads:
            t.join()

        assert errors == []
        assert len(sink.get_events()) + recorder.lost_events == 200


# =============================================================================
# TEST: ORDERING & NON-BLOCKING
# =============================================================================

class TestOrdering:

    def test_sequence_and_timestamp_follow_record_order(self, make_recorder):
        sink = MemoryAuditSink()
        recorder = make_recorder(sink, max_batch_size=4)

        ids = [recorder.record("insp-1", AuditAction.PHOTO_ADDED, "officer-1").id for _ in range(10)]
        history = recorder.history("insp-1")

        assert [e.id for e in history] == ids
        timestamps = [e.timestamp for e in history]
        assert timestamps == sorted(timestamps)
        sequences = [e.sequence for e in history]
        assert sequences == sorted(sequences) and len(set(sequences)) == 10

    def test_clock_stepping_back_keeps_order(self, make_recorder):
        base = datetime(2025, 1, 1, 12, 0, 0)
        times = iter([base, base - timedelta(seconds=30), base + timedelta(seconds=1)])
        recorder = make_recorder(MemoryAuditSink(), now=lambda: next(times))

        ids = [recorder.record("insp-1", AuditAction.SAMPLE_ADDED, "officer-1").id for _ in range(3)]
        history = recorder.history("insp-1")

        assert [e.id for e in history] == ids
        assert history[1].timestamp == base

    def test_concurrent_producers_lose_nothing(self, make_recorder):
        sink = MemoryAuditSink()
        recorder = make_recorder(sink, max_batch_size=7)

        def produce(inspection_id):
            for _ in range(50):
                recorder.record(inspection_id, AuditAction.PHOTO_ADDED, "officer-1")

        threads = [threading.Thread(target=produce, args=(f"insp-{n}",)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert recorder.flush(timeout=5) is True
        events = sink.get_events()
        assert len(events) == 200
        assert sorted(e.sequence for e in events) == list(range(1, 201))

    def test_sequence_continues_from_sink(self, make_recorder):
        sink = MemoryAuditSink()
        sink.write_batch([
            AuditEvent(id="old", inspection_id="insp-1", action=AuditAction.CREATED,
                       performed_by="officer-1", timestamp=datetime(2024, 1, 1), sequence=7),
        ])
        recorder = make_recorder(sink)

        recorder.record("insp-1", AuditAction.SUBMITTED, "officer-1")
        history = recorder.history("insp-1")

        assert [e.sequence for e in history] == [7, 8]

    def test_record_does_not_wait_for_storage(self, make_recorder):
        sink = GatedSink()
        recorder = make_recorder(sink, max_batch_size=1)

        started = time.monotonic()
        for _ in range(5):
            recorder.record("insp-1", AuditAction.PHOTO_ADDED, "officer-1")
        elapsed = time.monotonic() - started

        assert elapsed < 1.0
        assert sink.get_events() == []
        sink.gate.set()
        assert recorder.flush(timeout=5) is True
        assert len(sink.get_events()) == 5


# =============================================================================
# TEST: DATABASE SINK
# =============================================================================

class TestDatabaseAuditSink:

    def test_write_and_read_ordered(self, file_engine):
        sink = DatabaseAuditSink(sessionmaker(bind=file_engine))
        stamp = datetime(2025, 2, 1, 10, 0, 0)
        sink.write_batch([
            AuditEvent(id="e2", inspection_id="insp-1", action=AuditAction.SUBMITTED,
                       performed_by="o", details={"total_score": 18}, timestamp=stamp, sequence=2),
            AuditEvent(id="e1", inspection_id="insp-1", action=AuditAction.CREATED,
                       performed_by="o", timestamp=stamp, sequence=1),
            AuditEvent(id="e3", inspection_id="insp-2", action=AuditAction.CREATED,
                       performed_by="o", timestamp=stamp, sequence=3),
        ])

        events = sink.read("insp-1")

        assert [e.id for e in events] == ["e1", "e2"]
        assert events[1].details == {"total_score": 18}
        assert sink.last_sequence() == 3

    def test_recorder_over_database(self, file_engine):
        recorder = AuditTrailRecorder(DatabaseAuditSink(sessionmaker(bind=file_engine)), flush_interval=60)
        try:
            recorder.record("insp-9", AuditAction.CREATED, "officer-1", {"inspection_code": "INS1"})
            recorder.record("insp-9", AuditAction.SUBMITTED, "officer-1")
            history = recorder.history("insp-9")
        finally:
            recorder.close(timeout=5)

        assert [e.action for e in history] == [AuditAction.CREATED, AuditAction.SUBMITTED]
        assert history[0].details == {"inspection_code": "INS1"}

    def test_empty_table_sequence_zero(self, file_engine):
        assert DatabaseAuditSink(sessionmaker(bind=file_engine)).last_sequence() == 0

    def test_read_outage_is_persistence_error(self):
        session = MagicMock()
        session.query.side_effect = OperationalError("SELECT 1", {}, Exception("db down"))
        sink = DatabaseAuditSink(lambda: session)

        with pytest.raises(PersistenceError):
            sink.read("insp-1")
        session.close.assert_called_once()
