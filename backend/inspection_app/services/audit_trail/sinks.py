"""
Audit Trail Sinks

Durable destinations for audit batches. A sink only ever inserts; there is
no update or delete path.
"""
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...database import read_with_retry
from ...models.db_models import AuditEventDB, AuditAction
from ...models.domain import AuditEvent


def _order_key(event: AuditEvent):
    return (event.timestamp, event.sequence)


class AuditSink(ABC):
    """Base class for audit event storage."""

    @abstractmethod
    def write_batch(self, events: Sequence[AuditEvent]) -> None:
        """Persist the whole batch or raise. Partial writes must not survive."""
        pass

    @abstractmethod
    def read(self, inspection_id: str) -> List[AuditEvent]:
        """Events for one inspection ordered by (timestamp, sequence)."""
        pass

    @abstractmethod
    def last_sequence(self) -> int:
        """Highest sequence stored, 0 when empty."""
        pass


class DatabaseAuditSink(AuditSink):
    """
    Writes batches to inspection_audit_events.

    Uses its own session per call, since the recorder's writer thread must
    never share a request's session.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def write_batch(self, events: Sequence[AuditEvent]) -> None:
        db = self.session_factory()
        try:
            db.add_all([
                AuditEventDB(
                    id=e.id,
                    inspection_id=e.inspection_id,
                    action=e.action,
                    performed_by=e.performed_by,
                    details=e.details,
                    timestamp=e.timestamp,
                    sequence=e.sequence,
                )
                for e in events
            ])
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def read(self, inspection_id: str) -> List[AuditEvent]:
        db = self.session_factory()
        try:
            return read_with_retry(db, "read audit history", lambda: self._read_events(db, inspection_id))
        finally:
            db.close()

    @staticmethod
    def _read_events(db: Session, inspection_id: str) -> List[AuditEvent]:
        rows = db.query(AuditEventDB).filter(
            AuditEventDB.inspection_id == inspection_id
        ).order_by(AuditEventDB.timestamp, AuditEventDB.sequence).all()
        return [
            AuditEvent(
                id=r.id,
                inspection_id=r.inspection_id,
                action=AuditAction(r.action),
                performed_by=r.performed_by,
                details=r.details or {},
                timestamp=r.timestamp,
                sequence=r.sequence,
            )
            for r in rows
        ]

    def last_sequence(self) -> int:
        db = self.session_factory()
        try:
            return read_with_retry(
                db, "read last audit sequence",
                lambda: db.query(func.max(AuditEventDB.sequence)).scalar() or 0,
            )
        finally:
            db.close()


class MemoryAuditSink(AuditSink):
    """In-memory sink for tests and local development."""

    def __init__(self):
        self._events: List[AuditEvent] = []
        self._lock = threading.Lock()
        self.batches: List[int] = []

    def write_batch(self, events: Sequence[AuditEvent]) -> None:
        with self._lock:
            self._events.extend(events)
            self.batches.append(len(events))

    def read(self, inspection_id: str) -> List[AuditEvent]:
        with self._lock:
            matching = [e for e in self._events if e.inspection_id == inspection_id]
        return sorted(matching, key=_order_key)

    def last_sequence(self) -> int:
        with self._lock:
            return max((e.sequence for e in self._events), default=0)

    def get_events(self, action: Optional[AuditAction] = None) -> List[AuditEvent]:
        with self._lock:
            if action is None:
                return list(self._events)
            return [e for e in self._events if e.action == action]
