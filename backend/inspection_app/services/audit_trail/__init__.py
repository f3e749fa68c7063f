"""
Audit Trail

Append-only, buffered record of inspection lifecycle events.
"""
from .sinks import AuditSink, DatabaseAuditSink, MemoryAuditSink
from .recorder import AuditTrailRecorder

__all__ = ["AuditSink", "DatabaseAuditSink", "MemoryAuditSink", "AuditTrailRecorder"]
