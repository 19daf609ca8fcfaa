"""Event publisher - queues events for background processing."""
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, Optional, Protocol

from agenda.repositories.background_job_repository import BackgroundJobRepository


class Event(Protocol):
    """Protocol for event types."""

    job_type: ClassVar[str]

    def to_dict(self) -> Dict[str, Any]:
        ...


class EventPublisher:
    """Publishes domain events to the job queue for async processing."""

    def __init__(self, job_repository: BackgroundJobRepository):
        self.job_repo = job_repository

    def publish(self, event: Event, *, not_before: Optional[datetime] = None) -> str:
        """
        Queue an event; the dispatcher picks it up once ``not_before`` has passed.

        Returns the job id.
        """
        payload = event.to_dict()

        # Convert datetime objects to ISO strings for JSON serialization
        for key, value in payload.items():
            if isinstance(value, datetime):
                payload[key] = value.isoformat()

        available_at = not_before.astimezone(timezone.utc) if not_before else None
        return self.job_repo.enqueue(type=event.job_type, payload=payload, available_at=available_at)
