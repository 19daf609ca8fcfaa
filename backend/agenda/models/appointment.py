# backend/agenda/models/appointment.py
"""
Appointment model for the Agenda platform.

An appointment occupies the single shared calendar for
[start_at, end_at) in UTC. Service details are snapshotted at booking time
so later catalog edits never rewrite history.

Status lifecycle:
    BOOKED -> CANCELLED | DONE      (staff)
    CANCELLED | DONE -> BOOKED      (staff revert)

Staff may also move or delete an appointment; neither is a status change.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
import logging
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base

logger = logging.getLogger(__name__)


class AppointmentStatus(str, Enum):
    """Appointment lifecycle statuses."""

    BOOKED = "BOOKED"
    CANCELLED = "CANCELLED"
    DONE = "DONE"


class AppointmentEventType(str, Enum):
    """Audit entries; notification types double as idempotency keys."""

    CONFIRMATION_SENT = "CONFIRMATION_SENT"
    REMINDER_SENT = "REMINDER_SENT"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    REVERTED = "REVERTED"
    RESCHEDULED = "RESCHEDULED"


ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.BOOKED: frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.DONE}),
    AppointmentStatus.CANCELLED: frozenset({AppointmentStatus.BOOKED}),
    AppointmentStatus.DONE: frozenset({AppointmentStatus.BOOKED}),
}


class Appointment(Base):
    """Single-resource calendar booking."""

    __tablename__ = "appointments"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    # Service snapshot
    service_id = Column(String(64), nullable=False)
    service_name = Column(String(255), nullable=False)
    service_duration_min = Column(Integer, nullable=False)
    service_price = Column(Numeric(10, 2), nullable=False, default=0)

    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default=AppointmentStatus.BOOKED.value, index=True)

    # Customer snapshot
    customer_name = Column(String(255), nullable=False)
    customer_phone = Column(String(32), nullable=False, index=True)
    customer_ref = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)

    # Appointments created together by a multi-service request
    batch_id = Column(String(26), nullable=True, index=True)

    received_amount = Column(Numeric(10, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    payments = relationship(
        "AppointmentPayment",
        back_populates="appointment",
        cascade="all, delete-orphan",
    )
    events = relationship(
        "AppointmentEvent",
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="AppointmentEvent.created_at",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('BOOKED', 'CANCELLED', 'DONE')",
            name="ck_appointments_status",
        ),
        CheckConstraint("service_duration_min > 0", name="check_duration_positive"),
        CheckConstraint("service_price >= 0", name="check_price_non_negative"),
        CheckConstraint("start_at < end_at", name="check_time_order"),
        Index("ix_appointments_status_start_end", "status", "start_at", "end_at"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not self.status:
            self.status = AppointmentStatus.BOOKED.value

    def __repr__(self) -> str:
        return (
            f"<Appointment {self.id}: service={self.service_id}, "
            f"start={self.start_at}, end={self.end_at}, status={self.status}>"
        )

    def can_transition_to(self, target: AppointmentStatus) -> bool:
        return target in ALLOWED_TRANSITIONS.get(AppointmentStatus(self.status), frozenset())

    def cancel(self) -> None:
        """Cancel this appointment."""
        self.status = AppointmentStatus.CANCELLED.value
        self.cancelled_at = datetime.now(timezone.utc)
        logger.info(f"Appointment {self.id} cancelled")

    def complete(self, received_amount: Decimal) -> None:
        """Mark appointment as done with the amount received."""
        self.status = AppointmentStatus.DONE.value
        self.received_amount = received_amount
        self.completed_at = datetime.now(timezone.utc)
        logger.info(f"Appointment {self.id} marked as done")

    def reopen(self) -> None:
        """Return a cancelled or done appointment to BOOKED."""
        self.status = AppointmentStatus.BOOKED.value
        self.cancelled_at = None
        self.completed_at = None
        self.received_amount = None
        logger.info(f"Appointment {self.id} reverted to booked")

    @property
    def is_booked(self) -> bool:
        return self.status == AppointmentStatus.BOOKED.value


class AppointmentPayment(Base):
    """One part of the payment breakdown recorded when an appointment is done."""

    __tablename__ = "appointment_payments"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    appointment_id = Column(
        String(26),
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    method = Column(String(32), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    appointment = relationship("Appointment", back_populates="payments")

    __table_args__ = (CheckConstraint("amount >= 0", name="check_payment_non_negative"),)


class AppointmentEvent(Base):
    __tablename__ = "appointment_events"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    appointment_id = Column(
        String(26),
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type = Column(String(32), nullable=False)
    detail = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    appointment = relationship("Appointment", back_populates="events")

    __table_args__ = (Index("ix_appointment_events_appt_type", "appointment_id", "type"),)

    def __repr__(self) -> str:
        return f"<AppointmentEvent {self.appointment_id} {self.type}>"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored datetimes come back naive from SQLite; normalize to aware UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
