"""
Background job worker.

Drains the durable ``background_jobs`` queue: each due job is marked running,
dispatched through the event handlers to a notification sink, and marked
succeeded. Failures are retried with exponential backoff; after
``jobs_max_attempts`` the job is parked in the dead-letter state.

Run with ``booking-engine-worker`` (or ``python -m booking_engine.worker``).
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from types import FrameType
from typing import Callable, Optional

from sqlalchemy.orm import Session

from .core.config import settings
from .core.exceptions import RepositoryException
from .database import SessionLocal, with_db_retry
from .events.handlers import process_event
from .monitoring.prometheus_metrics import BACKGROUND_JOB_FAILURES_TOTAL, BACKGROUND_JOBS_FAILED
from .repositories.background_job_repository import BackgroundJobRepository
from .services.notification_sink import LoggingNotificationSink, NotificationSink

logger = logging.getLogger(__name__)


def process_due_jobs(
    db: Session,
    sink: Optional[NotificationSink] = None,
    *,
    limit: Optional[int] = None,
    shutdown_event: Optional[threading.Event] = None,
) -> int:
    """
    Run one batch of due jobs on ``db``.

    Returns:
        Number of jobs that succeeded
    """
    sink = sink or LoggingNotificationSink()
    job_repo = BackgroundJobRepository(db)
    jobs = with_db_retry(
        "fetch_due_jobs", lambda: job_repo.fetch_due(limit=limit or settings.jobs_batch)
    )
    if not jobs:
        db.commit()
        return 0

    succeeded = 0
    for job in jobs:
        if shutdown_event is not None and shutdown_event.is_set():
            break
        job_id = job.id
        job_type = job.type or "unknown"
        payload = dict(job.payload or {})
        try:
            job_repo.mark_running(job_id)
            db.flush()

            if not process_event(job_type, payload, db, sink):
                raise RepositoryException(f"Unknown background job type: {job_type}")

            job_repo.mark_succeeded(job_id)
            db.commit()
            succeeded += 1
        except Exception as exc:
            db.rollback()
            logger.exception(
                "Error processing background job",
                extra={"evt": "job_failed", "job_id": job_id, "type": job_type},
            )
            BACKGROUND_JOB_FAILURES_TOTAL.labels(type=job_type).inc()
            terminal = job_repo.mark_failed(job_id, error=str(exc))
            if terminal:
                logger.error(
                    "Background job moved to dead-letter queue",
                    extra={"evt": "job_dead_letter", "job_id": job_id, "type": job_type},
                )
            db.commit()
        BACKGROUND_JOBS_FAILED.set(job_repo.count_failed_jobs())

    return succeeded


def run_worker(
    shutdown_event: threading.Event,
    session_factory: Callable[[], Session] = SessionLocal,
    sink: Optional[NotificationSink] = None,
) -> None:
    """Poll for due jobs until ``shutdown_event`` is set."""

    poll_interval = max(1, int(settings.jobs_poll_interval))
    logger.info("Background job worker started (poll every %ss)", poll_interval)

    while not shutdown_event.is_set():
        try:
            db = session_factory()
            try:
                process_due_jobs(db, sink, shutdown_event=shutdown_event)
            finally:
                db.close()
        except Exception as exc:  # pragma: no cover - safety logging
            logger.exception("Background job worker loop error: %s", str(exc))
        shutdown_event.wait(poll_interval)

    logger.info("Background job worker stopped")


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    shutdown_event = threading.Event()

    def _request_shutdown(signum: int, frame: Optional[FrameType]) -> None:
        logger.info("Received signal %s, shutting down worker", signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, _request_shutdown)
    signal.signal(signal.SIGTERM, _request_shutdown)

    started = time.time()
    run_worker(shutdown_event)
    logger.info("Worker ran for %.1fs", time.time() - started)


if __name__ == "__main__":
    main()
