# backend/agenda/repositories/factory.py
"""
Repository Factory for the Agenda platform.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .appointment_repository import AppointmentRepository
    from .background_job_repository import BackgroundJobRepository
    from .blocked_date_repository import BlockedDateRepository
    from .schedule_repository import ScheduleRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_schedule_repository(db: Session) -> "ScheduleRepository":
        """Create repository for weekly schedules, legacy rules and overrides."""
        from .schedule_repository import ScheduleRepository

        return ScheduleRepository(db)

    @staticmethod
    def create_blocked_date_repository(db: Session) -> "BlockedDateRepository":
        from .blocked_date_repository import BlockedDateRepository

        return BlockedDateRepository(db)

    @staticmethod
    def create_appointment_repository(db: Session) -> "AppointmentRepository":
        """Create repository for appointment reads, guarded inserts and the event ledger."""
        from .appointment_repository import AppointmentRepository

        return AppointmentRepository(db)

    @staticmethod
    def create_background_job_repository(db: Session) -> "BackgroundJobRepository":
        from .background_job_repository import BackgroundJobRepository

        return BackgroundJobRepository(db)
