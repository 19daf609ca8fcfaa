from .booking_events import (
    APPOINTMENT_REMINDER_JOB,
    SEND_MESSAGE_JOB,
    AppointmentReminderDue,
    SendMessage,
)
from .publisher import EventPublisher

__all__ = [
    "APPOINTMENT_REMINDER_JOB",
    "SEND_MESSAGE_JOB",
    "AppointmentReminderDue",
    "EventPublisher",
    "SendMessage",
]
