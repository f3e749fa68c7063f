"""
Shared fixtures: in-memory SQLite schema, a three-indicator catalog and an
audit recorder backed by memory.
"""
import os

# Must be set before inspection_app.database builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from inspection_app.database import Base
from inspection_app.models import db_models  # noqa: F401
from inspection_app.models.db_models import RiskLevel
from inspection_app.services.audit_trail import AuditTrailRecorder, MemoryAuditSink
from inspection_app.services.catalog import CatalogService


@pytest.fixture
def wait_for():
    """Poll until predicate() is truthy or the timeout expires."""
    def poll(predicate, timeout=3.0, interval=0.01):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return bool(predicate())
    return poll


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite so several threads can hold their own connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'inspections.db'}",
        connect_args={"check_same_thread": False, "timeout": 15},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def recorder(audit_sink):
    recorder = AuditTrailRecorder(
        audit_sink, max_batch_size=100, flush_interval=0.05, retry_backoff=0.01,
    )
    yield recorder
    recorder.close(timeout=5)


def build_small_catalog(db):
    """
    Pillar "Storage" with A(weight 5, high), B(10, medium), C(3, low).
    Thresholds: low max 15, medium max 35, high-risk override at 5.
    """
    catalog = CatalogService(db)
    pillar = catalog.create_pillar("Storage", pillar_number=1)
    indicators = {
        "A": catalog.create_indicator(pillar.id, "Pest-free storage", 1, RiskLevel.HIGH, 5),
        "B": catalog.create_indicator(pillar.id, "Labeling & FIFO", 2, RiskLevel.MEDIUM, 10),
        "C": catalog.create_indicator(pillar.id, "Dry storage clean", 3, RiskLevel.LOW, 3),
    }
    catalog.set_config("low_risk_max_score", "15", "number")
    catalog.set_config("medium_risk_max_score", "35", "number")
    catalog.set_config("high_risk_indicator_threshold", "5", "number")
    return indicators


@pytest.fixture
def small_catalog(db):
    return build_small_catalog(db)


@pytest.fixture
def catalog_builder():
    return build_small_catalog
