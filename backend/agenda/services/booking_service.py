# backend/agenda/services/booking_service.py
"""
Booking Service for the Agenda platform

Handles all appointment writes including:
- Committing single and chained (batch) bookings
- Staff transitions: cancel, complete, revert
- Staff bookings on a customer's behalf, reschedules and deletes
- Post-commit side effects (customer sync, loyalty, notifications)

Validation and the insert run as one unit under the per-day booking lock.
The repository re-checks overlap right before the insert; when that check
trips, the whole unit is retried against fresh data a bounded number of
times before the request is rejected.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
import logging
from typing import Any, Callable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session
import ulid

from ..core.booking_lock import day_lock
from ..core.config import settings
from ..core.exceptions import (
    SLOT_UNAVAILABLE,
    BookingConflictException,
    ForbiddenException,
    IntegrityViolationException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from ..core.timezone_utils import civil_days_spanned, civil_midnight_utc, ensure_utc
from ..integrations.catalog_client import CatalogProvider
from ..integrations.customer_client import CustomerStore, normalize_phone
from ..models.appointment import (
    Appointment,
    AppointmentEventType,
    AppointmentStatus,
    as_utc,
)
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.catalog import CatalogService, CustomerRecord
from .base import BaseService
from .conflict_checker import ConflictChecker, ValidationResult
from .notification_service import NotificationService

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("PIX", "DINHEIRO", "CARTAO")


class BookingService(BaseService):
    """
    Service layer for appointment operations.

    Centralizes the booking business logic and coordinates the
    checker, repositories and external collaborators.
    """

    def __init__(
        self,
        db: Session,
        catalog: CatalogProvider,
        customers: Optional[CustomerStore] = None,
        notification_service: Optional[NotificationService] = None,
        conflict_checker: Optional[ConflictChecker] = None,
    ):
        super().__init__(db)
        self.catalog = catalog
        self.customers = customers
        self.notification_service = notification_service or NotificationService(db, catalog)
        self.conflict_checker = conflict_checker or ConflictChecker(db, catalog)
        self.repository = RepositoryFactory.create_appointment_repository(db)
        self.tz_name = self.conflict_checker.availability_service.tz_name

    # Commit

    def _effective_prices(
        self, services: Sequence[CatalogService], at: datetime
    ) -> List[Decimal]:
        """Catalog price, or the active promotional price when there is one."""
        prices: List[Decimal] = []
        for service in services:
            promo = self.catalog.get_active_promotional_price(service.id, at=at)
            prices.append(promo if promo is not None else service.price)
        return prices

    def _write_rows(
        self,
        result: ValidationResult,
        customer_name: str,
        customer_phone: str,
        notes: Optional[str],
    ) -> List[Appointment]:
        batch_id = str(ulid.ULID()) if len(result.segments) > 1 else None
        appointments: List[Appointment] = []
        for segment in result.segments:
            appointments.append(
                self.repository.insert_booked(
                    service_id=segment.service.id,
                    service_name=segment.service.name,
                    service_duration_min=segment.service.duration_minutes,
                    service_price=segment.price,
                    start_at=segment.start_at,
                    end_at=segment.end_at,
                    customer_name=customer_name,
                    customer_phone=normalize_phone(customer_phone),
                    notes=notes,
                    batch_id=batch_id,
                )
            )
        return appointments

    @BaseService.measure_operation("commit_booking")
    def commit(
        self,
        service_ids: Sequence[str],
        start_at: datetime,
        *,
        customer_name: str,
        customer_phone: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[Appointment]:
        """
        Validate and persist a booking, chaining services in caller order.

        Returns the created appointments (one per service).

        Raises:
            ValidationException: bad input, start not in the future
            BookingConflictException: the slot cannot be taken
            ExternalDependencyException: catalog unreachable
        """
        kind = "batch" if len(service_ids) > 1 else "single"
        self.log_operation("commit_booking", kind=kind, service_ids=list(service_ids))

        start_utc = ensure_utc(start_at)
        services = self.conflict_checker.resolve_services(service_ids)
        prices = self._effective_prices(services, start_utc)
        total_minutes = sum(s.duration_minutes for s in services)
        end_utc = self.conflict_checker.chain_segments(services, start_utc)[-1].end_at
        days = civil_days_spanned(start_utc, end_utc, self.tz_name)

        max_attempts = max(1, settings.booking_commit_max_attempts)
        last_error: Optional[IntegrityViolationException] = None
        appointments: List[Appointment] = []
        for attempt in range(1, max_attempts + 1):
            try:
                with day_lock(days):
                    with self.transaction():
                        self.repository.lock_days(days)
                        result = self.conflict_checker.validate(
                            service_ids, start_utc, now=now, services=services, prices=prices
                        )
                        appointments = self._write_rows(result, customer_name, customer_phone, notes)
                break
            except IntegrityViolationException as exc:
                last_error = exc
                prometheus_metrics.record_booking_retry()
                self.logger.warning(
                    "booking_commit_retry",
                    extra={
                        "attempt": attempt,
                        "max_attempts": max_attempts,
                        "start_at": start_utc.isoformat(),
                        "total_minutes": total_minutes,
                    },
                )
            except BookingConflictException:
                prometheus_metrics.record_booking_commit(kind, "conflict")
                raise
        else:
            prometheus_metrics.record_booking_commit(kind, "conflict")
            self.logger.error(
                f"Booking at {start_utc.isoformat()} still conflicting after {max_attempts} attempts"
            )
            raise BookingConflictException(
                reason=SLOT_UNAVAILABLE,
                details={"start_at": start_utc.isoformat(), "attempts": max_attempts},
            ) from last_error

        prometheus_metrics.record_booking_commit(kind, "success")
        self.logger.info(
            f"Booked {len(appointments)} appointment(s) starting {start_utc.isoformat()}"
        )
        self._handle_post_booking_tasks(appointments, customer_name, customer_phone)
        return appointments

    def create_booking(
        self,
        service_id: str,
        start_at: datetime,
        *,
        customer_name: str,
        customer_phone: str,
        notes: Optional[str] = None,
    ) -> Appointment:
        return self.commit(
            [service_id],
            start_at,
            customer_name=customer_name,
            customer_phone=customer_phone,
            notes=notes,
        )[0]

    def create_batch_booking(
        self,
        service_ids: Sequence[str],
        start_at: datetime,
        *,
        customer_name: str,
        customer_phone: str,
        notes: Optional[str] = None,
    ) -> List[Appointment]:
        return self.commit(
            service_ids,
            start_at,
            customer_name=customer_name,
            customer_phone=customer_phone,
            notes=notes,
        )

    # Post-commit side effects

    def _best_effort(self, name: str, func: Callable[[], Any]) -> Any:
        """Run a side effect; failures are logged and never undo the booking."""
        try:
            return func()
        except Exception as exc:
            self.db.rollback()
            self.logger.error(
                f"Post-booking task '{name}' failed: {str(exc)}",
                extra={"side_effect": name, "error_type": type(exc).__name__},
            )
            return None

    def _sync_customer(
        self, appointments: Sequence[Appointment], customer_name: str, customer_phone: str
    ) -> Optional[CustomerRecord]:
        if self.customers is None:
            return None
        record = self.customers.find_by_phone(customer_phone)
        if record is None:
            record = self.customers.create(name=customer_name, phone=customer_phone)
        with self.transaction():
            for appointment in appointments:
                appointment.customer_ref = record.ref
        return record

    def _handle_post_booking_tasks(
        self,
        appointments: Sequence[Appointment],
        customer_name: str,
        customer_phone: str,
        *,
        notify: bool = True,
    ) -> None:
        if not appointments:
            return
        customer = self._best_effort(
            "customer_sync",
            lambda: self._sync_customer(appointments, customer_name, customer_phone),
        )
        if customer is not None and self.customers is not None:
            customers = self.customers
            self._best_effort(
                "loyalty_award",
                lambda: customers.adjust_loyalty(customer.ref, delta=len(appointments)),
            )
        if not notify:
            return
        self._best_effort(
            "confirmation", lambda: self.notification_service.queue_confirmation(appointments)
        )
        self._best_effort(
            "reminder", lambda: self.notification_service.schedule_reminder(appointments[0])
        )

    def _adjust_loyalty_for(self, appointment: Appointment, delta: int) -> None:
        self._adjust_loyalty(
            appointment.id, appointment.customer_ref, appointment.customer_phone, delta
        )

    def _adjust_loyalty(
        self, appointment_id: str, customer_ref: Optional[str], customer_phone: str, delta: int
    ) -> None:
        if self.customers is None:
            return
        customers = self.customers

        def _apply() -> None:
            ref = customer_ref
            if not ref:
                record = customers.find_by_phone(customer_phone)
                if record is None:
                    self.logger.info(
                        f"No customer record for appointment {appointment_id}, loyalty unchanged"
                    )
                    return
                ref = record.ref
            customers.adjust_loyalty(ref, delta=delta)

        self._best_effort("loyalty_adjust", _apply)

    # Staff transitions

    @staticmethod
    def _require_staff(performed_by: Optional[str]) -> None:
        if not performed_by:
            raise ForbiddenException("Staff access required", code="STAFF_ONLY")

    def _get_or_404(self, appointment_id: str) -> Appointment:
        appointment = self.repository.get_detailed(appointment_id)
        if appointment is None:
            raise NotFoundException(
                f"Appointment {appointment_id} not found", code="APPOINTMENT_NOT_FOUND"
            )
        return appointment

    def _days_of(self, appointment: Appointment) -> List[date]:
        return civil_days_spanned(
            as_utc(appointment.start_at), as_utc(appointment.end_at), self.tz_name
        )

    @BaseService.measure_operation("cancel_appointment")
    def cancel(self, appointment_id: str, *, performed_by: Optional[str]) -> Appointment:
        """BOOKED -> CANCELLED. Cancelling a cancelled appointment is a no-op."""
        self._require_staff(performed_by)
        appointment = self._get_or_404(appointment_id)
        if appointment.status == AppointmentStatus.CANCELLED.value:
            return appointment
        if not appointment.can_transition_to(AppointmentStatus.CANCELLED):
            raise InvalidTransitionException(appointment.status, AppointmentStatus.CANCELLED.value)

        with self.transaction():
            appointment.cancel()
            self.repository.add_event(
                appointment.id, AppointmentEventType.CANCELLED.value, detail=performed_by
            )
        self.log_operation("cancel_appointment", appointment_id=appointment.id, by=performed_by)
        self._adjust_loyalty_for(appointment, -1)
        return appointment

    @BaseService.measure_operation("complete_appointment")
    def complete(
        self,
        appointment_id: str,
        *,
        received_amount: Decimal,
        payments: Sequence[Tuple[str, Decimal]],
        performed_by: Optional[str],
    ) -> Appointment:
        """BOOKED -> DONE with a payment breakdown that adds up to ``received_amount``."""
        self._require_staff(performed_by)
        if not payments:
            raise ValidationException("At least one payment part is required")
        for method, amount in payments:
            if method not in PAYMENT_METHODS:
                raise ValidationException(
                    f"Unknown payment method {method}", details={"allowed": list(PAYMENT_METHODS)}
                )
            if amount < 0:
                raise ValidationException("Payment amounts cannot be negative")
        total = sum((amount for _, amount in payments), Decimal("0"))
        if total != received_amount:
            raise ValidationException(
                "Payment parts must add up to the received amount",
                code="PAYMENT_MISMATCH",
                details={"received_amount": str(received_amount), "parts_total": str(total)},
            )

        appointment = self._get_or_404(appointment_id)
        if not appointment.can_transition_to(AppointmentStatus.DONE):
            raise InvalidTransitionException(appointment.status, AppointmentStatus.DONE.value)

        with self.transaction():
            self.repository.replace_payments(appointment, list(payments))
            appointment.complete(received_amount)
            self.repository.add_event(
                appointment.id, AppointmentEventType.COMPLETED.value, detail=performed_by
            )
        self.log_operation("complete_appointment", appointment_id=appointment.id, by=performed_by)
        return appointment

    @BaseService.measure_operation("revert_appointment")
    def revert(self, appointment_id: str, *, performed_by: Optional[str]) -> Appointment:
        """
        DONE | CANCELLED -> BOOKED.

        The interval is checked again under the day lock; if another booking
        took the time in the meantime the revert is refused.
        """
        self._require_staff(performed_by)
        appointment = self._get_or_404(appointment_id)
        previous = appointment.status
        if not appointment.can_transition_to(AppointmentStatus.BOOKED):
            raise InvalidTransitionException(previous, AppointmentStatus.BOOKED.value)

        days = self._days_of(appointment)
        with day_lock(days):
            with self.transaction():
                self.repository.lock_days(days)
                self.conflict_checker.check_interval_free(
                    as_utc(appointment.start_at), as_utc(appointment.end_at), exclude_id=appointment.id
                )
                if previous == AppointmentStatus.DONE.value:
                    self.repository.replace_payments(appointment, [])
                appointment.reopen()
                self.repository.add_event(
                    appointment.id,
                    AppointmentEventType.REVERTED.value,
                    detail=f"from {previous}",
                )

        self.log_operation(
            "revert_appointment", appointment_id=appointment.id, previous=previous, by=performed_by
        )
        if previous == AppointmentStatus.CANCELLED.value:
            self._adjust_loyalty_for(appointment, 1)
        return appointment

    # Staff bookings, reschedules and deletes

    @BaseService.measure_operation("staff_create_appointment")
    def staff_create(
        self,
        service_id: str,
        start_at: datetime,
        *,
        customer_name: str,
        customer_phone: str,
        notes: Optional[str] = None,
        duration_minutes: Optional[int] = None,
        performed_by: Optional[str],
    ) -> Appointment:
        """
        Book on a customer's behalf.

        Staff are not bound to the slot grid, blocked dates or a future
        start; only the no-overlap rule applies. ``duration_minutes``
        replaces the catalog duration when given. The customer is synced and
        earns a loyalty point; no messages are queued.
        """
        self._require_staff(performed_by)
        service = self.catalog.get_service(service_id)
        minutes = duration_minutes if duration_minutes is not None else service.duration_minutes
        if minutes <= 0:
            raise ValidationException(
                "Service duration is required",
                code="INVALID_SERVICE_DEFINITION",
                details={"service_id": service_id},
            )
        start_utc = ensure_utc(start_at)
        end_utc = start_utc + timedelta(minutes=minutes)
        (price,) = self._effective_prices([service], start_utc)
        days = civil_days_spanned(start_utc, end_utc, self.tz_name)

        try:
            with day_lock(days):
                with self.transaction():
                    self.repository.lock_days(days)
                    self.conflict_checker.check_interval_free(start_utc, end_utc)
                    try:
                        appointment = self.repository.insert_booked(
                            service_id=service.id,
                            service_name=service.name,
                            service_duration_min=minutes,
                            service_price=price,
                            start_at=start_utc,
                            end_at=end_utc,
                            customer_name=customer_name,
                            customer_phone=normalize_phone(customer_phone),
                            notes=notes,
                            batch_id=None,
                        )
                    except IntegrityViolationException as exc:
                        raise BookingConflictException(
                            reason=SLOT_UNAVAILABLE, details={"start_at": start_utc.isoformat()}
                        ) from exc
        except BookingConflictException:
            prometheus_metrics.record_booking_commit("staff", "conflict")
            raise

        prometheus_metrics.record_booking_commit("staff", "success")
        self.log_operation(
            "staff_create_appointment",
            appointment_id=appointment.id,
            duration_minutes=minutes,
            by=performed_by,
        )
        self._handle_post_booking_tasks([appointment], customer_name, customer_phone, notify=False)
        return appointment

    @BaseService.measure_operation("reschedule_appointment")
    def reschedule(
        self,
        appointment_id: str,
        *,
        start_at: Optional[datetime] = None,
        end_at: Optional[datetime] = None,
        notes: Optional[str] = None,
        performed_by: Optional[str],
    ) -> Appointment:
        """
        Move an appointment or change its length.

        With only ``start_at`` the current duration is kept. The new interval
        is checked against every other BOOKED appointment under the day locks
        of both the old and the new interval. A moved BOOKED appointment gets
        a fresh reminder; the one queued for the old start is skipped on
        delivery.
        """
        self._require_staff(performed_by)
        appointment = self._get_or_404(appointment_id)
        if appointment.status == AppointmentStatus.CANCELLED.value:
            raise ValidationException(
                "Cannot update a cancelled appointment", code="APPOINTMENT_CANCELLED"
            )

        old_start = as_utc(appointment.start_at)
        old_end = as_utc(appointment.end_at)
        new_start = ensure_utc(start_at) if start_at is not None else old_start
        if end_at is not None:
            new_end = ensure_utc(end_at)
        elif start_at is not None:
            new_end = new_start + (old_end - old_start)
        else:
            new_end = old_end
        minutes = round((new_end - new_start).total_seconds() / 60)
        if new_end <= new_start or minutes < 1:
            raise ValidationException(
                "End time must be after start time",
                code="INVALID_TIME_RANGE",
                details={"start_at": new_start.isoformat(), "end_at": new_end.isoformat()},
            )

        days = sorted(
            set(self._days_of(appointment))
            | set(civil_days_spanned(new_start, new_end, self.tz_name))
        )
        with day_lock(days):
            with self.transaction():
                self.repository.lock_days(days)
                self.conflict_checker.check_interval_free(
                    new_start, new_end, exclude_id=appointment.id
                )
                appointment.start_at = new_start
                appointment.end_at = new_end
                appointment.service_duration_min = minutes
                if notes is not None:
                    appointment.notes = notes
                self.repository.add_event(
                    appointment.id,
                    AppointmentEventType.RESCHEDULED.value,
                    detail=f"from {old_start.isoformat()}",
                )

        self.log_operation(
            "reschedule_appointment",
            appointment_id=appointment.id,
            start_at=new_start.isoformat(),
            by=performed_by,
        )
        if appointment.is_booked and new_start != old_start:
            self._best_effort(
                "reminder", lambda: self.notification_service.schedule_reminder(appointment)
            )
        return appointment

    @BaseService.measure_operation("delete_appointment")
    def delete(self, appointment_id: str, *, performed_by: Optional[str]) -> None:
        """Delete an appointment with its history; a BOOKED one gives back its loyalty point."""
        self._require_staff(performed_by)
        appointment = self._get_or_404(appointment_id)
        was_booked = appointment.is_booked
        customer_ref = appointment.customer_ref
        customer_phone = appointment.customer_phone

        with self.transaction():
            self.repository.delete(appointment_id)

        self.log_operation(
            "delete_appointment", appointment_id=appointment_id, booked=was_booked, by=performed_by
        )
        if was_booked:
            self._adjust_loyalty(appointment_id, customer_ref, customer_phone, -1)

    # Staff reads and loyalty

    @BaseService.measure_operation("get_agenda")
    def get_agenda(
        self,
        start_date: date,
        end_date: date,
        statuses: Optional[Sequence[AppointmentStatus]] = None,
    ) -> List[Appointment]:
        """Appointments touching the civil dates [start_date, end_date]."""
        if end_date < start_date:
            raise ValidationException("'to' must not be before 'from'")
        span = (end_date - start_date).days + 1
        if span > settings.max_range_days:
            raise ValidationException(
                f"Range too large: {span} days (max {settings.max_range_days})"
            )
        window_start = civil_midnight_utc(start_date, self.tz_name)
        window_end = civil_midnight_utc(end_date + timedelta(days=1), self.tz_name)
        return self.repository.list_in_range(window_start, window_end, statuses)

    @BaseService.measure_operation("set_loyalty_points")
    def set_loyalty_points(
        self, customer_phone: str, points: int, *, performed_by: Optional[str]
    ) -> CustomerRecord:
        """Set a customer's points to an absolute value (staff correction)."""
        self._require_staff(performed_by)
        if self.customers is None:
            raise ValidationException("Customer store is not configured")
        record = self.customers.find_by_phone(customer_phone)
        if record is None:
            raise NotFoundException(
                f"No customer with phone {normalize_phone(customer_phone)}",
                code="CUSTOMER_NOT_FOUND",
            )
        updated = self.customers.adjust_loyalty(record.ref, absolute=points)
        self.log_operation("set_loyalty_points", customer_ref=record.ref, points=points)
        return updated
