"""Data access layer. Repositories flush but never commit."""

from .appointment_repository import AppointmentRepository
from .background_job_repository import BackgroundJobRepository
from .base_repository import BaseRepository
from .blocked_date_repository import BlockedDateRepository
from .factory import RepositoryFactory
from .schedule_repository import ScheduleRepository

__all__ = [
    "AppointmentRepository",
    "BackgroundJobRepository",
    "BaseRepository",
    "BlockedDateRepository",
    "RepositoryFactory",
    "ScheduleRepository",
]
