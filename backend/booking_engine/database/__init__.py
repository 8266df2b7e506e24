"""
Database engine, session factory, and metadata shared across the engine.
"""

from __future__ import annotations

from datetime import datetime
import logging
import random
import time
from typing import Any, Callable, Generator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

from booking_engine.core.config import settings
from booking_engine.core.exceptions import RepositoryException

logger = logging.getLogger(__name__)


def _build_engine_kwargs(db_url: str) -> dict[str, Any]:
    """Pool and driver arguments for the configured backend."""

    if db_url.startswith("sqlite"):
        # SQLite serializes writers; wait on the file lock instead of failing fast
        return {
            "connect_args": {"check_same_thread": False, "timeout": 30},
            "future": True,
        }

    return {
        "poolclass": QueuePool,
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        # Fail fast when pool exhausted instead of blocking request handlers
        "pool_timeout": settings.database_pool_timeout,
        "pool_recycle": 300,
        "pool_pre_ping": True,
        "pool_use_lifo": True,
        "future": True,
        "connect_args": {
            "connect_timeout": 5,
            # Abort runaway atomic units so they roll back instead of holding row locks
            "options": f"-c statement_timeout={settings.database_statement_timeout_ms}",
            "application_name": "booking_engine",
        },
    }


def build_engine(db_url: str) -> Engine:
    return create_engine(db_url, **_build_engine_kwargs(db_url))


engine: Engine = build_engine(settings.database_url)


# Log pool events for monitoring
@event.listens_for(engine, "connect")
def receive_connect(dbapi_connection: Any, connection_record: Any) -> None:
    connection_record.info["connect_time"] = datetime.now()
    logger.debug("Database connection established")


@event.listens_for(engine, "checkout")
def receive_checkout(dbapi_connection: Any, connection_record: Any, connection_proxy: Any) -> None:
    logger.debug("Connection checked out from pool")


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

Base: DeclarativeMeta = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Get database session with proper cleanup."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    """Create all engine tables (development and tests; production uses migrations)."""
    from booking_engine import models  # noqa: F401  registers mappers

    Base.metadata.create_all(bind=bind or engine)


T = TypeVar("T")
_RETRYABLE_ERROR_SNIPPETS = (
    "server closed the connection",
    "ssl connection has been closed unexpectedly",
)


def _is_retryable_db_error(exc: OperationalError) -> bool:
    message = str(exc).lower()
    return any(snippet in message for snippet in _RETRYABLE_ERROR_SNIPPETS)


def _retry_delay(attempt: int) -> float:
    base = 0.1 * (2 ** (attempt - 1))
    return base + random.uniform(0, 0.05 * attempt)


def with_db_retry(op_name: str, func: Callable[[], T], *, max_attempts: int = 3) -> T:
    """
    Execute a DB operation with retries for transient connection drops.

    ``func`` runs again on a fresh attempt, so it must leave the session usable
    (repositories roll back before raising).
    """

    attempt = 1
    while True:
        try:
            return func()
        except (OperationalError, RepositoryException) as exc:
            # Repositories chain the driver error as the cause
            cause = exc if isinstance(exc, OperationalError) else exc.__cause__
            if (
                attempt >= max_attempts
                or not isinstance(cause, OperationalError)
                or not _is_retryable_db_error(cause)
            ):
                raise

            delay = _retry_delay(attempt)
            logger.warning(
                "Transient DB failure detected, retrying",
                extra={
                    "event": "db_retry",
                    "op": op_name,
                    "attempt": attempt,
                    "delay": delay,
                    "error": str(exc),
                },
            )
            time.sleep(delay)
            attempt += 1


__all__ = [
    "Base",
    "SessionLocal",
    "build_engine",
    "engine",
    "get_db",
    "init_db",
    "with_db_retry",
]
