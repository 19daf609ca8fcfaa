# backend/agenda/services/__init__.py
"""
Service layer for the Agenda platform.

Services own business rules and transaction boundaries; repositories only
flush.
"""

from .availability_service import AvailabilityService
from .base import BaseService
from .booking_service import BookingService
from .conflict_checker import ConflictChecker, ValidationResult
from .notification_service import NotificationService
from .schedule_admin_service import ScheduleAdminService

__all__ = [
    "AvailabilityService",
    "BaseService",
    "BookingService",
    "ConflictChecker",
    "NotificationService",
    "ScheduleAdminService",
    "ValidationResult",
]
