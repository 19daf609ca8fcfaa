"""Persisted queue entries drained by the jobs.dispatch_due Celery task."""

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from ..database import Base

JOB_QUEUED = "queued"
JOB_RUNNING = "running"
JOB_SUCCEEDED = "succeeded"
JOB_SKIPPED = "skipped"
JOB_FAILED = "failed"


class BackgroundJob(Base):
    """
    One unit of deferred work: a message to send or a reminder to compose.

    ``available_at`` is the earliest instant the dispatcher may pick it up;
    retries push it forward with exponential backoff.
    """

    __tablename__ = "background_jobs"

    id = Column(String(26), primary_key=True)
    type = Column(String(64), nullable=False)
    payload = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=False,
    )
    status = Column(String(20), nullable=False, default=JOB_QUEUED)
    attempts = Column(Integer, nullable=False, default=0)
    available_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (Index("ix_background_jobs_due", "status", "available_at"),)

    def __repr__(self) -> str:
        return f"<BackgroundJob {self.id} {self.type} {self.status} attempts={self.attempts}>"
