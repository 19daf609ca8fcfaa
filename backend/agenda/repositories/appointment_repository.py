# backend/agenda/repositories/appointment_repository.py
"""
Appointment Repository for the Agenda platform.

Owns every query against the appointments table, including the write-time
overlap re-check that backs the "BOOKED intervals never overlap" rule.
"""

from datetime import date, datetime
from decimal import Decimal
import logging
from typing import Any, Iterable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..core.exceptions import IntegrityViolationException, RepositoryException
from ..database.session_utils import take_day_advisory_lock
from ..domain.slots import Interval
from ..models.appointment import (
    Appointment,
    AppointmentEvent,
    AppointmentPayment,
    AppointmentStatus,
    as_utc,
)
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

_DEADLOCK_MARKERS = ("deadlock detected", "could not serialize access", "database is locked")


class AppointmentRepository(BaseRepository[Appointment]):
    def __init__(self, db: Session):
        super().__init__(db, Appointment)
        self.logger = logging.getLogger(__name__)

    # Read side

    def get_booked_intervals(self, window_start: datetime, window_end: datetime) -> List[Interval]:
        """BOOKED intervals overlapping [window_start, window_end)."""
        try:
            rows = (
                self.db.query(Appointment.start_at, Appointment.end_at)
                .filter(
                    Appointment.status == AppointmentStatus.BOOKED.value,
                    Appointment.start_at < window_end,
                    Appointment.end_at > window_start,
                )
                .order_by(Appointment.start_at)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading booked intervals: {str(e)}")
            raise RepositoryException(f"Failed to load booked intervals: {str(e)}")
        return [Interval(as_utc(start), as_utc(end)) for start, end in rows]

    def find_overlapping(
        self, start_at: datetime, end_at: datetime, exclude_id: Optional[str] = None
    ) -> Optional[Appointment]:
        """First BOOKED appointment overlapping [start_at, end_at), half-open."""
        try:
            query = self.db.query(Appointment).filter(
                Appointment.status == AppointmentStatus.BOOKED.value,
                Appointment.start_at < end_at,
                Appointment.end_at > start_at,
            )
            if exclude_id:
                query = query.filter(Appointment.id != exclude_id)
            return query.order_by(Appointment.start_at).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking overlap: {str(e)}")
            raise RepositoryException(f"Failed to check overlap: {str(e)}")

    def get_detailed(self, appointment_id: str) -> Optional[Appointment]:
        try:
            return (
                self.db.query(Appointment)
                .options(selectinload(Appointment.payments), selectinload(Appointment.events))
                .filter(Appointment.id == appointment_id)
                .first()
            )
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to load appointment: {str(e)}")

    def list_in_range(
        self,
        window_start: datetime,
        window_end: datetime,
        statuses: Optional[Sequence[AppointmentStatus]] = None,
    ) -> List[Appointment]:
        query = (
            self._build_query()
            .options(selectinload(Appointment.payments))
            .filter(Appointment.start_at < window_end, Appointment.end_at > window_start)
        )
        if statuses:
            query = query.filter(Appointment.status.in_([s.value for s in statuses]))
        return self._execute_query(query.order_by(Appointment.start_at))

    # Write side

    def lock_days(self, days: Iterable[date]) -> None:
        """Transaction-scoped advisory locks (PostgreSQL only), in date order."""
        for day in sorted(set(days)):
            take_day_advisory_lock(self.db, day)

    def insert_booked(self, **fields: Any) -> Appointment:
        """
        Insert a BOOKED appointment after re-checking overlap in this transaction.

        Raises IntegrityViolationException when another BOOKED row already
        occupies part of the interval, or when the database reports a
        constraint or serialization failure for the insert.
        """
        start_at: datetime = fields["start_at"]
        end_at: datetime = fields["end_at"]
        clash = self.find_overlapping(start_at, end_at)
        if clash is not None:
            self.logger.warning(
                "Write-time overlap detected",
                extra={"start_at": start_at.isoformat(), "clashing_id": clash.id},
            )
            raise IntegrityViolationException(details={"clashing_id": clash.id})
        try:
            appointment = Appointment(status=AppointmentStatus.BOOKED.value, **fields)
            self.db.add(appointment)
            self.db.flush()
            return appointment
        except IntegrityError as exc:
            self.logger.warning("Integrity error inserting appointment: %s", exc)
            raise IntegrityViolationException(str(exc.orig)) from exc
        except OperationalError as exc:
            if any(marker in str(exc).lower() for marker in _DEADLOCK_MARKERS):
                raise IntegrityViolationException(str(exc.orig)) from exc
            self.logger.error(f"Error inserting appointment: {str(exc)}")
            raise RepositoryException(f"Failed to insert appointment: {str(exc)}")

    def replace_payments(
        self, appointment: Appointment, parts: Sequence[tuple[str, Decimal]]
    ) -> None:
        appointment.payments = [
            AppointmentPayment(method=method, amount=amount) for method, amount in parts
        ]
        self.db.flush()

    # Event ledger

    def add_event(
        self, appointment_id: str, event_type: str, detail: Optional[str] = None
    ) -> AppointmentEvent:
        try:
            event = AppointmentEvent(appointment_id=appointment_id, type=event_type, detail=detail)
            self.db.add(event)
            self.db.flush()
            return event
        except SQLAlchemyError as e:
            self.logger.error(f"Error recording appointment event: {str(e)}")
            raise RepositoryException(f"Failed to record appointment event: {str(e)}")

    def has_event(self, appointment_id: str, event_type: str) -> bool:
        try:
            return (
                self.db.query(AppointmentEvent.id)
                .filter(
                    AppointmentEvent.appointment_id == appointment_id,
                    AppointmentEvent.type == event_type,
                )
                .first()
                is not None
            )
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to check appointment event: {str(e)}")
