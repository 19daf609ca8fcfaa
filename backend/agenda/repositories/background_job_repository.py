"""Queue operations over the background_jobs table."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, List, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import ulid

from ..core.config import settings
from ..core.exceptions import RepositoryException
from ..models.background_job import (
    JOB_FAILED,
    JOB_QUEUED,
    JOB_RUNNING,
    JOB_SKIPPED,
    JOB_SUCCEEDED,
    BackgroundJob,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def retry_delay(attempts: int) -> timedelta:
    """Backoff after ``attempts`` failures: base * 2^(n-1), capped."""
    seconds = settings.jobs_backoff_base * (2 ** (attempts - 1))
    return timedelta(seconds=min(settings.jobs_backoff_cap, seconds))


class BackgroundJobRepository:
    """
    Enqueue, claim and settle background jobs.

    Status flow: queued -> running -> succeeded | skipped, or back to queued
    with a later ``available_at`` on failure until ``jobs_max_attempts``,
    after which the job is parked as failed.
    """

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
        job = BackgroundJob(
            id=str(ulid.ULID()),
            type=type,
            payload=payload,
            status=JOB_QUEUED,
            attempts=0,
            available_at=available_at or _utcnow(),
        )
        try:
            self.db.add(job)
            self.db.flush()
        except SQLAlchemyError as exc:
            self.logger.error("Could not enqueue %s job: %s", type, exc)
            raise RepositoryException(f"Failed to enqueue {type} job") from exc
        return cast(str, job.id)

    def fetch_due(self, *, limit: int = 50, now: datetime | None = None) -> List[BackgroundJob]:
        """Queued jobs whose ``available_at`` has passed, oldest first."""
        cutoff = now or _utcnow()
        try:
            query = (
                self.db.query(BackgroundJob)
                .filter(BackgroundJob.status == JOB_QUEUED, BackgroundJob.available_at <= cutoff)
                .order_by(BackgroundJob.available_at.asc(), BackgroundJob.id.asc())
                .limit(limit)
            )
            return cast(List[BackgroundJob], query.all())
        except SQLAlchemyError as exc:
            self.logger.error("Could not load due jobs: %s", exc)
            raise RepositoryException("Failed to fetch background jobs") from exc

    def _settle(self, job_id: str, status: str) -> None:
        try:
            self.db.query(BackgroundJob).filter(BackgroundJob.id == job_id).update(
                {BackgroundJob.status: status, BackgroundJob.updated_at: _utcnow()}
            )
        except SQLAlchemyError as exc:
            self.logger.error("Could not move job %s to %s: %s", job_id, status, exc)
            raise RepositoryException(f"Failed to mark job {status}") from exc

    def mark_running(self, job_id: str) -> None:
        self._settle(job_id, JOB_RUNNING)

    def mark_succeeded(self, job_id: str) -> None:
        self._settle(job_id, JOB_SUCCEEDED)

    def mark_skipped(self, job_id: str) -> None:
        """The job no longer applies, e.g. a reminder for a cancelled appointment."""
        self._settle(job_id, JOB_SKIPPED)

    def mark_failed(self, job_id: str, error: str) -> str:
        """Count a failed attempt and return the job's new status."""
        try:
            job = self.db.get(BackgroundJob, job_id)
            if job is None:
                self.logger.warning("Job %s vanished before it could be rescheduled", job_id)
                return JOB_FAILED

            job.attempts = (job.attempts or 0) + 1
            job.last_error = error[:2000]
            job.updated_at = _utcnow()
            if job.attempts >= settings.jobs_max_attempts:
                job.status = JOB_FAILED
                self.logger.error(
                    "Job %s (%s) gave up after %s attempts: %s",
                    job_id,
                    job.type,
                    job.attempts,
                    error,
                )
            else:
                job.status = JOB_QUEUED
                job.available_at = _utcnow() + retry_delay(job.attempts)
            self.db.flush()
            return cast(str, job.status)
        except SQLAlchemyError as exc:
            self.logger.error("Could not reschedule job %s: %s", job_id, exc)
            raise RepositoryException("Failed to reschedule background job") from exc

    def list_by_type(self, job_type: str) -> List[BackgroundJob]:
        try:
            query = (
                self.db.query(BackgroundJob)
                .filter(BackgroundJob.type == job_type)
                .order_by(BackgroundJob.available_at.asc())
            )
            return cast(List[BackgroundJob], query.all())
        except SQLAlchemyError as exc:
            raise RepositoryException("Failed to list background jobs") from exc
