"""
Institutional Inspections - Database Configuration
PostgreSQL connection using SQLAlchemy (SQLite accepted for local runs and tests)

Storage rules shared by every service:
- Reads retry on SQLAlchemyError up to PERSISTENCE_READ_RETRIES extra times,
  then raise PersistenceError.
- Every write runs in a single transaction and is rolled back on any error.
  Writes are never retried: a write that timed out may have committed.
"""
import logging
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker, declarative_base

from .errors import InspectionError, PersistenceError, DuplicateKeyError
from .settings import DATABASE_URL, DB_ECHO, DB_STATEMENT_TIMEOUT_MS, PERSISTENCE_READ_RETRIES

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        # Audit writer thread shares the engine with request threads
        return {"check_same_thread": False}
    if url.startswith("postgresql") and DB_STATEMENT_TIMEOUT_MS > 0:
        return {"options": f"-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}"}
    return {}


# Create engine
engine = create_engine(DATABASE_URL, echo=DB_ECHO, connect_args=_connect_args(DATABASE_URL))

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for ORM models
Base = declarative_base()


def get_db():
    """Dependency for FastAPI - yields database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Initialize database - create all tables."""
    # Register models on Base.metadata
    from .models import db_models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def read_with_retry(db: Session, description: str, query: Callable[[], T],
                    retries: int = PERSISTENCE_READ_RETRIES) -> T:
    """
    Run a read, retrying on storage errors.

    Args:
        db: Session the query runs on; rolled back before each retry
        description: What is being read, for logs and the error message
        query: Zero-argument callable doing the read
        retries: Extra attempts after the first

    Raises:
        PersistenceError: every attempt failed
    """
    attempts = max(0, retries) + 1
    for attempt in range(1, attempts + 1):
        try:
            return query()
        except SQLAlchemyError as e:
            db.rollback()
            if attempt == attempts:
                logger.error(f"Failed to {description} after {attempts} attempts: {e}")
                raise PersistenceError(
                    f"Failed to {description}", details={"attempts": attempts},
                ) from e
            logger.warning(f"Retrying {description} (attempt {attempt} failed): {e}")


@contextmanager
def write_transaction(db: Session, description: str) -> Iterator[Session]:
    """
    Commit on exit, roll back on any error.

    Raises:
        DuplicateKeyError: a unique constraint rejected the write
        PersistenceError: any other storage failure
    """
    try:
        yield db
        db.commit()
    except InspectionError:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        raise DuplicateKeyError(f"Failed to {description}: duplicate key") from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to {description}: {e}")
        raise PersistenceError(f"Failed to {description}") from e
