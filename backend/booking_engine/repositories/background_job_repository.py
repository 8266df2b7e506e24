"""Repository for persisted background jobs."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, List, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import ulid

from ..core.config import settings
from ..core.exceptions import RepositoryException
from ..models.background_job import BackgroundJob, JobStatus

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def backoff_seconds(attempts: int) -> int:
    """Delay before retry number ``attempts``: min(cap, base * 2^(attempts-1))."""
    return int(min(settings.jobs_backoff_cap, settings.jobs_backoff_base * (2 ** (attempts - 1))))


class BackgroundJobRepository:
    """Data access helpers for background_jobs table."""

    def __init__(self, db: Session):
        self.db = db
        self.logger = logger

    def enqueue(
        self,
        *,
        type: str,
        payload: dict[str, Any],
        available_at: datetime | None = None,
    ) -> str:
        """Persist a new job ready for processing."""

        try:
            job_id = str(ulid.ULID())
            job = BackgroundJob(
                id=job_id,
                type=type,
                payload=payload,
                status=JobStatus.QUEUED.value,
                attempts=0,
                available_at=available_at or _utcnow(),
            )
            self.db.add(job)
            self.db.flush()
            return job_id
        except SQLAlchemyError as exc:
            self.logger.error("Failed to enqueue job %s: %s", type, str(exc))
            self.db.rollback()
            raise RepositoryException("Failed to enqueue background job") from exc

    def fetch_due(self, *, limit: int = 50) -> List[BackgroundJob]:
        """Return queued jobs that are ready to run."""

        try:
            now = _utcnow()
            jobs = (
                self.db.query(BackgroundJob)
                .filter(
                    BackgroundJob.status == JobStatus.QUEUED.value,
                    BackgroundJob.available_at <= now,
                )
                .order_by(BackgroundJob.available_at.asc())
                .limit(limit)
                .all()
            )
            return cast(List[BackgroundJob], jobs)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to fetch due jobs: %s", str(exc))
            self.db.rollback()
            raise RepositoryException("Failed to fetch background jobs") from exc

    def mark_running(self, job_id: str) -> None:
        """Mark a job as running."""

        self._set_status(job_id, JobStatus.RUNNING)

    def mark_succeeded(self, job_id: str) -> None:
        """Mark a job as completed successfully."""

        self._set_status(job_id, JobStatus.SUCCEEDED)

    def _set_status(self, job_id: str, status: JobStatus) -> None:
        try:
            self.db.query(BackgroundJob).filter(BackgroundJob.id == job_id).update(
                {
                    BackgroundJob.status: status.value,
                    BackgroundJob.updated_at: _utcnow(),
                },
                synchronize_session="evaluate",
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to mark job %s %s: %s", job_id, status.value, str(exc))
            self.db.rollback()
            raise RepositoryException(f"Failed to mark job {status.value}") from exc

    def mark_failed(self, job_id: str, error: str) -> bool:
        """
        Record a failed attempt.

        The job is rescheduled with exponential backoff until it has used
        ``jobs_max_attempts`` attempts, then parked as ``failed`` (dead letter).

        Returns:
            True when the job moved to the dead-letter state
        """

        try:
            job = self.db.get(BackgroundJob, job_id)
            if job is None:
                self.logger.warning("Attempted to mark missing job %s failed", job_id)
                return False

            attempts = (job.attempts or 0) + 1
            job.attempts = attempts
            job.last_error = error
            job.updated_at = _utcnow()

            terminal = attempts >= settings.jobs_max_attempts
            if terminal:
                job.status = JobStatus.FAILED.value
            else:
                job.status = JobStatus.QUEUED.value
                job.available_at = _utcnow() + timedelta(seconds=backoff_seconds(attempts))

            self.db.flush()
            return terminal
        except SQLAlchemyError as exc:
            self.logger.error("Failed to reschedule job %s: %s", job_id, str(exc))
            self.db.rollback()
            raise RepositoryException("Failed to reschedule background job") from exc

    def count_failed_jobs(self) -> int:
        """Number of jobs currently parked in the dead-letter state."""

        try:
            return int(
                self.db.query(BackgroundJob)
                .filter(BackgroundJob.status == JobStatus.FAILED.value)
                .count()
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to count failed jobs: %s", str(exc))
            raise RepositoryException("Failed to count failed jobs") from exc

    def list_dead_letters(self, *, limit: int = 100) -> List[BackgroundJob]:
        try:
            return cast(
                List[BackgroundJob],
                self.db.query(BackgroundJob)
                .filter(BackgroundJob.status == JobStatus.FAILED.value)
                .order_by(BackgroundJob.updated_at.desc())
                .limit(limit)
                .all(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to list dead-letter jobs: %s", str(exc))
            raise RepositoryException("Failed to list dead-letter jobs") from exc

    def requeue(self, job_id: str) -> bool:
        """Give a dead-lettered job a fresh attempt budget; False if it is not dead."""

        try:
            job = self.db.get(BackgroundJob, job_id)
            if job is None or job.status != JobStatus.FAILED.value:
                return False
            job.status = JobStatus.QUEUED.value
            job.attempts = 0
            job.available_at = _utcnow()
            job.updated_at = _utcnow()
            self.db.flush()
            return True
        except SQLAlchemyError as exc:
            self.logger.error("Failed to requeue job %s: %s", job_id, str(exc))
            self.db.rollback()
            raise RepositoryException("Failed to requeue background job") from exc
