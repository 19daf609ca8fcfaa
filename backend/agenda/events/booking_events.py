"""Appointment jobs published to the persisted queue."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, ClassVar, Dict, Optional

SEND_MESSAGE_JOB = "send-message"
APPOINTMENT_REMINDER_JOB = "appointment-reminder"


@dataclass
class SendMessage:
    """Deliver a text message; record ``event_type`` on the appointment when it lands."""

    job_type: ClassVar[str] = SEND_MESSAGE_JOB

    phone: str
    message: str
    appointment_id: Optional[str] = None
    event_type: Optional[str] = None
    location: Optional[Dict[str, Any]] = None
    attachment: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class AppointmentReminderDue:
    """
    Fired at start_at minus the reminder lead time.

    ``start_at`` is the start the reminder was scheduled for; a job whose
    appointment has since moved is skipped.
    """

    job_type: ClassVar[str] = APPOINTMENT_REMINDER_JOB

    appointment_id: str
    start_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}
