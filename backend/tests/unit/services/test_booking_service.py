# backend/tests/unit/services/test_booking_service.py
"""
Tests for BookingService.

Coverage:
1) Single and chained commits, price snapshots, promotions
2) Retry on write-time overlap and the final conflict
3) Concurrent commits for the same slot
4) Staff transitions (cancel, complete, revert) and loyalty adjustments
5) Staff bookings, reschedules and deletes
6) Post-commit side effects never undo a booking
7) Agenda listing and loyalty corrections
"""

from datetime import timedelta
from decimal import Decimal
import threading
from unittest.mock import Mock

import pytest
from sqlalchemy.orm import Session

from agenda.core.config import settings
from agenda.core.exceptions import (
    SLOT_UNAVAILABLE,
    BookingConflictException,
    ForbiddenException,
    IntegrityViolationException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from agenda.events import APPOINTMENT_REMINDER_JOB, SEND_MESSAGE_JOB
from agenda.models.appointment import Appointment, AppointmentStatus, as_utc
from agenda.repositories.background_job_repository import BackgroundJobRepository
from agenda.repositories.blocked_date_repository import BlockedDateRepository
from agenda.services.booking_service import BookingService
from helpers.calendar_helpers import TUESDAY, WEDNESDAY, insert_appointment, local
from helpers.database import build_sqlite_engine

PHONE = "+55 (11) 99999-0000"
STAFF = "staff"


def _book(service, service_ids, start, **kwargs):
    kwargs.setdefault("customer_name", "Ana")
    kwargs.setdefault("customer_phone", PHONE)
    return service.commit(service_ids, start, **kwargs)


class TestCommit:
    def test_single_booking_snapshots_the_service(self, booking_service):
        (appointment,) = _book(booking_service, ["cut"], local(TUESDAY, 9), notes="primeira vez")

        assert appointment.status == AppointmentStatus.BOOKED.value
        assert appointment.service_name == "Corte"
        assert appointment.service_duration_min == 30
        assert appointment.service_price == Decimal("50.00")
        assert as_utc(appointment.end_at) == local(TUESDAY, 9, 30)
        assert appointment.customer_phone == "5511999990000"
        assert appointment.notes == "primeira vez"
        assert appointment.batch_id is None

    def test_batch_chains_services_with_a_shared_batch_id(self, db, booking_service):
        first, second = _book(booking_service, ["cut", "beard"], local(TUESDAY, 14))

        assert (as_utc(first.start_at), as_utc(first.end_at)) == (
            local(TUESDAY, 14),
            local(TUESDAY, 14, 30),
        )
        assert (as_utc(second.start_at), as_utc(second.end_at)) == (
            local(TUESDAY, 14, 30),
            local(TUESDAY, 15, 15),
        )
        assert first.batch_id is not None
        assert first.batch_id == second.batch_id
        assert db.query(Appointment).count() == 2

    def test_batch_is_rejected_as_a_whole(self, db, booking_service):
        insert_appointment(db, local(TUESDAY, 15), 30)

        with pytest.raises(BookingConflictException):
            _book(booking_service, ["cut", "beard"], local(TUESDAY, 14))
        assert db.query(Appointment).count() == 1

    def test_promotional_price_is_snapshotted(self, catalog, booking_service):
        catalog.promotions["cut"] = Decimal("40.00")

        (appointment,) = _book(booking_service, ["cut"], local(TUESDAY, 9))

        assert appointment.service_price == Decimal("40.00")

    def test_conflicting_slot_is_rejected(self, booking_service):
        _book(booking_service, ["cut"], local(TUESDAY, 9))

        with pytest.raises(BookingConflictException) as exc_info:
            _book(booking_service, ["cut"], local(TUESDAY, 9), customer_phone="5511888880000")
        assert exc_info.value.reason == "slot unavailable"

    def test_past_start_is_rejected(self, booking_service):
        start = local(TUESDAY, 9)
        with pytest.raises(ValidationException):
            _book(booking_service, ["cut"], start, now=start + timedelta(minutes=1))


class TestRetry:
    def test_write_time_overlap_is_retried(self, booking_service, monkeypatch):
        real_insert = booking_service.repository.insert_booked
        calls = []

        def flaky_insert(**fields):
            calls.append(fields["start_at"])
            if len(calls) == 1:
                raise IntegrityViolationException()
            return real_insert(**fields)

        monkeypatch.setattr(booking_service.repository, "insert_booked", flaky_insert)

        (appointment,) = _book(booking_service, ["cut"], local(TUESDAY, 9))

        assert len(calls) == 2
        assert appointment.id is not None

    def test_gives_up_after_max_attempts(self, db, booking_service, monkeypatch):
        insert = Mock(side_effect=IntegrityViolationException())
        monkeypatch.setattr(booking_service.repository, "insert_booked", insert)

        with pytest.raises(BookingConflictException) as exc_info:
            _book(booking_service, ["cut"], local(TUESDAY, 9))

        assert insert.call_count == settings.booking_commit_max_attempts
        assert exc_info.value.details["attempts"] == settings.booking_commit_max_attempts
        assert db.query(Appointment).count() == 0


class TestConcurrentCommits:
    def test_only_one_of_many_concurrent_requests_wins(self, tmp_path, catalog):
        engine = build_sqlite_engine(f"sqlite+pysqlite:///{tmp_path / 'agenda.db'}")
        barrier = threading.Barrier(5)
        outcomes = []
        outcomes_lock = threading.Lock()

        def attempt(index):
            session = Session(bind=engine, expire_on_commit=False)
            service = BookingService(session, catalog, notification_service=Mock())
            barrier.wait()
            try:
                _book(service, ["cut"], local(TUESDAY, 9), customer_phone=f"55119999900{index:02d}")
                result = "booked"
            except BookingConflictException:
                result = "conflict"
            finally:
                session.close()
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        try:
            assert sorted(outcomes) == ["booked"] + ["conflict"] * 4
            with engine.connect() as conn:
                booked = conn.exec_driver_sql(
                    "SELECT COUNT(*) FROM appointments WHERE status = 'BOOKED'"
                ).scalar()
            assert booked == 1
        finally:
            engine.dispose()


class TestTransitions:
    @pytest.fixture
    def booked(self, customers, booking_service):
        customers.seed(name="Ana", phone=PHONE, points=3)
        (appointment,) = _book(booking_service, ["cut"], local(TUESDAY, 10))
        return appointment

    def test_booking_awards_one_point_per_service(self, customers, booking_service):
        customers.seed(name="Ana", phone=PHONE, points=0)
        _book(booking_service, ["cut", "beard"], local(TUESDAY, 14))
        assert customers.points_for(PHONE) == 2

    def test_cancel_is_idempotent_and_removes_a_point(self, customers, booking_service, booked):
        assert customers.points_for(PHONE) == 4

        cancelled = booking_service.cancel(booked.id, performed_by=STAFF)
        again = booking_service.cancel(booked.id, performed_by=STAFF)

        assert cancelled.status == AppointmentStatus.CANCELLED.value
        assert cancelled.cancelled_at is not None
        assert again.status == AppointmentStatus.CANCELLED.value
        assert customers.points_for(PHONE) == 3

    def test_cancel_frees_the_slot(self, booking_service, booked):
        booking_service.cancel(booked.id, performed_by=STAFF)

        (rebooked,) = _book(booking_service, ["cut"], local(TUESDAY, 10), customer_name="Bia")

        assert rebooked.id != booked.id

    def test_complete_records_payments(self, db, booking_service, booked):
        done = booking_service.complete(
            booked.id,
            received_amount=Decimal("50.00"),
            payments=[("PIX", Decimal("30.00")), ("DINHEIRO", Decimal("20.00"))],
            performed_by=STAFF,
        )

        assert done.status == AppointmentStatus.DONE.value
        assert done.received_amount == Decimal("50.00")
        assert sorted(p.method for p in done.payments) == ["DINHEIRO", "PIX"]

    def test_complete_rejects_mismatched_payments(self, booking_service, booked):
        with pytest.raises(ValidationException) as exc_info:
            booking_service.complete(
                booked.id,
                received_amount=Decimal("50.00"),
                payments=[("PIX", Decimal("30.00"))],
                performed_by=STAFF,
            )
        assert exc_info.value.code == "PAYMENT_MISMATCH"

    def test_complete_rejects_unknown_method(self, booking_service, booked):
        with pytest.raises(ValidationException):
            booking_service.complete(
                booked.id,
                received_amount=Decimal("50.00"),
                payments=[("BOLETO", Decimal("50.00"))],
                performed_by=STAFF,
            )

    def test_revert_from_done_clears_payments(self, db, booking_service, booked):
        booking_service.complete(
            booked.id,
            received_amount=Decimal("50.00"),
            payments=[("CARTAO", Decimal("50.00"))],
            performed_by=STAFF,
        )

        reverted = booking_service.revert(booked.id, performed_by=STAFF)

        db.refresh(reverted)
        assert reverted.status == AppointmentStatus.BOOKED.value
        assert reverted.received_amount is None
        assert reverted.payments == []

    def test_revert_from_cancelled_restores_the_point(self, customers, booking_service, booked):
        booking_service.cancel(booked.id, performed_by=STAFF)
        booking_service.revert(booked.id, performed_by=STAFF)
        assert customers.points_for(PHONE) == 4

    def test_revert_is_refused_when_the_time_was_taken(self, booking_service, booked):
        booking_service.cancel(booked.id, performed_by=STAFF)
        _book(booking_service, ["cut"], local(TUESDAY, 10), customer_name="Bia")

        with pytest.raises(BookingConflictException):
            booking_service.revert(booked.id, performed_by=STAFF)

    def test_transitions_require_staff(self, booking_service, booked):
        with pytest.raises(ForbiddenException):
            booking_service.cancel(booked.id, performed_by=None)
        with pytest.raises(ForbiddenException):
            booking_service.revert(booked.id, performed_by="")

    def test_invalid_transitions(self, booking_service, booked):
        with pytest.raises(InvalidTransitionException):
            booking_service.revert(booked.id, performed_by=STAFF)

        booking_service.cancel(booked.id, performed_by=STAFF)
        with pytest.raises(InvalidTransitionException):
            booking_service.complete(
                booked.id,
                received_amount=Decimal("50.00"),
                payments=[("PIX", Decimal("50.00"))],
                performed_by=STAFF,
            )

    def test_unknown_appointment(self, booking_service):
        with pytest.raises(NotFoundException):
            booking_service.cancel("01HZZZZZZZZZZZZZZZZZZZZZZZ", performed_by=STAFF)

    def test_transitions_are_recorded_as_events(self, db, booking_service, booked):
        booking_service.cancel(booked.id, performed_by=STAFF)
        booking_service.revert(booked.id, performed_by=STAFF)

        db.expire_all()
        detailed = booking_service.repository.get_detailed(booked.id)
        assert [e.type for e in detailed.events] == ["CANCELLED", "REVERTED"]


class TestStaffBookings:
    @pytest.fixture
    def booked(self, customers, booking_service):
        customers.seed(name="Ana", phone=PHONE, points=3)
        (appointment,) = _book(booking_service, ["cut"], local(TUESDAY, 10))
        return appointment

    def _staff_book(self, booking_service, start, **kwargs):
        kwargs.setdefault("customer_name", "Ana")
        kwargs.setdefault("customer_phone", PHONE)
        kwargs.setdefault("performed_by", STAFF)
        return booking_service.staff_create("cut", start, **kwargs)

    def test_staff_booking_with_duration_override(self, db, customers, booking_service):
        customers.seed(name="Ana", phone=PHONE, points=0)

        appointment = self._staff_book(
            booking_service, local(TUESDAY, 9, 10), duration_minutes=50, notes="encaixe"
        )

        assert appointment.service_duration_min == 50
        assert as_utc(appointment.end_at) == local(TUESDAY, 10)
        assert appointment.service_price == Decimal("50.00")
        assert appointment.customer_phone == "5511999990000"
        assert appointment.notes == "encaixe"
        assert customers.points_for(PHONE) == 1
        assert BackgroundJobRepository(db).list_by_type(SEND_MESSAGE_JOB) == []
        assert BackgroundJobRepository(db).list_by_type(APPOINTMENT_REMINDER_JOB) == []

    def test_staff_booking_defaults_to_catalog_duration(self, booking_service):
        appointment = self._staff_book(booking_service, local(TUESDAY, 9))
        assert as_utc(appointment.end_at) == local(TUESDAY, 9, 30)

    def test_staff_booking_ignores_blocked_dates(self, db, booking_service):
        BlockedDateRepository(db).add(TUESDAY, "Feriado")
        db.commit()

        appointment = self._staff_book(booking_service, local(TUESDAY, 9))

        assert appointment.status == AppointmentStatus.BOOKED.value

    def test_staff_booking_cannot_overlap(self, db, booking_service):
        insert_appointment(db, local(TUESDAY, 9), 30)

        with pytest.raises(BookingConflictException) as exc_info:
            self._staff_book(booking_service, local(TUESDAY, 9, 15))
        assert exc_info.value.reason == SLOT_UNAVAILABLE
        assert db.query(Appointment).count() == 1

    def test_staff_booking_requires_staff(self, booking_service):
        with pytest.raises(ForbiddenException):
            self._staff_book(booking_service, local(TUESDAY, 9), performed_by=None)

    def test_reschedule_keeps_the_duration(self, db, booking_service, booked):
        moved = booking_service.reschedule(
            booked.id, start_at=local(TUESDAY, 11), performed_by=STAFF
        )

        assert (as_utc(moved.start_at), as_utc(moved.end_at)) == (
            local(TUESDAY, 11),
            local(TUESDAY, 11, 30),
        )
        assert moved.service_duration_min == 30
        db.expire_all()
        detailed = booking_service.repository.get_detailed(booked.id)
        assert [e.type for e in detailed.events] == ["RESCHEDULED"]

    def test_reschedule_onto_an_occupied_slot_is_refused(self, db, booking_service, booked):
        insert_appointment(db, local(TUESDAY, 11), 30)

        with pytest.raises(BookingConflictException):
            booking_service.reschedule(
                booked.id, start_at=local(TUESDAY, 10, 45), performed_by=STAFF
            )

        db.expire_all()
        assert as_utc(db.get(Appointment, booked.id).start_at) == local(TUESDAY, 10)

    def test_reschedule_may_overlap_its_own_old_interval(self, booking_service, booked):
        moved = booking_service.reschedule(
            booked.id, start_at=local(TUESDAY, 10, 15), performed_by=STAFF
        )
        assert as_utc(moved.start_at) == local(TUESDAY, 10, 15)

    def test_reschedule_next_to_another_booking(self, db, booking_service, booked):
        insert_appointment(db, local(TUESDAY, 11), 30)

        moved = booking_service.reschedule(
            booked.id, start_at=local(TUESDAY, 10, 30), performed_by=STAFF
        )

        assert as_utc(moved.end_at) == local(TUESDAY, 11)

    def test_reschedule_end_only_changes_the_duration(self, booking_service, booked):
        longer = booking_service.reschedule(
            booked.id, end_at=local(TUESDAY, 11), notes="com barba", performed_by=STAFF
        )

        assert longer.service_duration_min == 60
        assert longer.notes == "com barba"

    def test_reschedule_rejects_an_empty_interval(self, booking_service, booked):
        with pytest.raises(ValidationException) as exc_info:
            booking_service.reschedule(
                booked.id,
                start_at=local(TUESDAY, 11),
                end_at=local(TUESDAY, 11),
                performed_by=STAFF,
            )
        assert exc_info.value.code == "INVALID_TIME_RANGE"

    def test_cancelled_appointment_cannot_be_rescheduled(self, booking_service, booked):
        booking_service.cancel(booked.id, performed_by=STAFF)

        with pytest.raises(ValidationException) as exc_info:
            booking_service.reschedule(
                booked.id, start_at=local(TUESDAY, 11), performed_by=STAFF
            )
        assert exc_info.value.code == "APPOINTMENT_CANCELLED"

    def test_reschedule_queues_a_reminder_for_the_new_start(self, db, booking_service, booked):
        booking_service.reschedule(booked.id, start_at=local(TUESDAY, 11), performed_by=STAFF)

        reminders = BackgroundJobRepository(db).list_by_type(APPOINTMENT_REMINDER_JOB)
        assert [job.payload["start_at"] for job in reminders] == [
            as_utc(local(TUESDAY, 10)).isoformat(),
            as_utc(local(TUESDAY, 11)).isoformat(),
        ]

    def test_reschedule_requires_staff(self, booking_service, booked):
        with pytest.raises(ForbiddenException):
            booking_service.reschedule(booked.id, start_at=local(TUESDAY, 11), performed_by="")

    def test_delete_gives_back_the_loyalty_point(self, db, customers, booking_service, booked):
        assert customers.points_for(PHONE) == 4

        booking_service.delete(booked.id, performed_by=STAFF)

        db.expire_all()
        assert db.get(Appointment, booked.id) is None
        assert customers.points_for(PHONE) == 3

    def test_deleting_a_cancelled_appointment_keeps_points(
        self, db, customers, booking_service, booked
    ):
        booking_service.cancel(booked.id, performed_by=STAFF)

        booking_service.delete(booked.id, performed_by=STAFF)

        db.expire_all()
        assert db.get(Appointment, booked.id) is None
        assert customers.points_for(PHONE) == 3

    def test_delete_frees_the_slot(self, booking_service, booked):
        booking_service.delete(booked.id, performed_by=STAFF)

        (rebooked,) = _book(booking_service, ["cut"], local(TUESDAY, 10), customer_name="Bia")

        assert rebooked.id != booked.id

    def test_delete_unknown_appointment(self, booking_service):
        with pytest.raises(NotFoundException):
            booking_service.delete("01HZZZZZZZZZZZZZZZZZZZZZZZ", performed_by=STAFF)

    def test_delete_requires_staff(self, booking_service, booked):
        with pytest.raises(ForbiddenException):
            booking_service.delete(booked.id, performed_by=None)


class TestSideEffects:
    def test_customer_store_outage_does_not_undo_the_booking(self, db, customers, booking_service):
        customers.fail = True

        (appointment,) = _book(booking_service, ["cut"], local(TUESDAY, 9))

        stored = db.get(Appointment, appointment.id)
        assert stored is not None
        assert stored.customer_ref is None

    def test_customer_is_created_and_linked(self, db, customers, booking_service):
        (appointment,) = _book(booking_service, ["cut"], local(TUESDAY, 9))

        assert customers.points_for(PHONE) == 1
        assert db.get(Appointment, appointment.id).customer_ref == "doc-1"

    def test_confirmation_and_reminder_are_queued(self, db, catalog, booking_service):
        catalog.set_templates(
            confirmation="Olá {{name}}, {{services}} em {{date}} às {{time}}",
            reminder="Lembrete: {{services}} amanhã às {{time}}",
        )

        first, _ = _book(booking_service, ["cut", "beard"], local(TUESDAY, 14))

        jobs = BackgroundJobRepository(db)
        (confirmation,) = jobs.list_by_type(SEND_MESSAGE_JOB)
        assert confirmation.payload["message"] == "Olá Ana, Corte, Barba em 08/01/2030 às 14:00"
        assert confirmation.payload["appointment_id"] == first.id
        assert confirmation.payload["event_type"] == "CONFIRMATION_SENT"

        (reminder,) = jobs.list_by_type(APPOINTMENT_REMINDER_JOB)
        assert reminder.payload == {
            "appointment_id": first.id,
            "start_at": as_utc(local(TUESDAY, 14)).isoformat(),
        }
        assert as_utc(reminder.available_at) == local(TUESDAY, 14) - timedelta(
            hours=settings.reminder_lead_hours
        )

    def test_no_confirmation_without_template(self, db, booking_service):
        _book(booking_service, ["cut"], local(TUESDAY, 9))
        assert BackgroundJobRepository(db).list_by_type(SEND_MESSAGE_JOB) == []

    def test_notification_failure_does_not_undo_the_booking(self, db, catalog, customers):
        notifications = Mock()
        notifications.queue_confirmation.side_effect = RuntimeError("queue down")
        service = BookingService(db, catalog, customers=customers, notification_service=notifications)

        (appointment,) = _book(service, ["cut"], local(TUESDAY, 9))

        assert db.get(Appointment, appointment.id) is not None
        notifications.schedule_reminder.assert_called_once()


class TestAgendaAndLoyalty:
    def test_agenda_lists_the_requested_days(self, db, booking_service):
        tuesday = insert_appointment(db, local(TUESDAY, 9), 30)
        insert_appointment(db, local(TUESDAY, 11), 30, status="CANCELLED")
        insert_appointment(db, local(WEDNESDAY, 9), 30)

        all_tuesday = booking_service.get_agenda(TUESDAY, TUESDAY)
        booked_only = booking_service.get_agenda(
            TUESDAY, TUESDAY, statuses=[AppointmentStatus.BOOKED]
        )

        assert len(all_tuesday) == 2
        assert [a.id for a in booked_only] == [tuesday.id]

    def test_agenda_range_is_validated(self, booking_service):
        with pytest.raises(ValidationException):
            booking_service.get_agenda(WEDNESDAY, TUESDAY)

    def test_set_loyalty_points(self, customers, booking_service):
        customers.seed(name="Ana", phone=PHONE, points=7)

        updated = booking_service.set_loyalty_points(PHONE, 2, performed_by=STAFF)

        assert updated.loyalty_points == 2
        assert customers.loyalty_calls[-1]["absolute"] == 2

    def test_set_loyalty_points_unknown_customer(self, booking_service):
        with pytest.raises(NotFoundException):
            booking_service.set_loyalty_points("5511000000000", 2, performed_by=STAFF)
