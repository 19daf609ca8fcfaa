"""
Database models for the Agenda platform.

The models are organized by functionality:
- Availability management (weekly schedule, legacy rules, blocked dates, overrides)
- Appointments with their payment breakdown and event ledger
- Persisted background jobs
"""

from .appointment import (
    Appointment,
    AppointmentEvent,
    AppointmentEventType,
    AppointmentPayment,
    AppointmentStatus,
)
from .availability import (
    AvailabilitySchedule,
    AvailabilityTimeWindow,
    BlockedDate,
    DateOverride,
    DateOverrideWindow,
    LegacyAvailabilityRule,
)
from .background_job import BackgroundJob

__all__ = [
    "Appointment",
    "AppointmentEvent",
    "AppointmentEventType",
    "AppointmentPayment",
    "AppointmentStatus",
    "AvailabilitySchedule",
    "AvailabilityTimeWindow",
    "BackgroundJob",
    "BlockedDate",
    "DateOverride",
    "DateOverrideWindow",
    "LegacyAvailabilityRule",
]
