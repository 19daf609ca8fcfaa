# backend/tests/unit/services/test_conflict_checker.py
"""
Tests for ConflictChecker.

The checker runs its checks in a fixed order (future start, services,
overlap, blocked date, grid alignment) and the first failure wins.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from agenda.core.exceptions import (
    DATE_BLOCKED,
    SLOT_NOT_ALIGNED,
    SLOT_UNAVAILABLE,
    BookingConflictException,
    NotFoundException,
    ValidationException,
)
from agenda.repositories.blocked_date_repository import BlockedDateRepository
from agenda.services.conflict_checker import ConflictChecker
from helpers.calendar_helpers import TUESDAY, insert_appointment, local, save_week


@pytest.fixture
def checker(db, catalog):
    return ConflictChecker(db, catalog)


@pytest.fixture
def morning(db):
    """Tuesday 09:00-12:00 on a 30 minute grid."""
    return save_week(db, {2: [(540, 720)]})


def _block(db, day, reason="Feriado"):
    BlockedDateRepository(db).add(day, reason)
    db.commit()


class TestFutureStart:
    def test_start_equal_to_now_is_rejected(self, checker, morning):
        start = local(TUESDAY, 9)
        with pytest.raises(ValidationException) as exc_info:
            checker.validate(["cut"], start, now=start)
        assert exc_info.value.code == "START_NOT_IN_FUTURE"

    def test_start_one_second_after_now_passes(self, checker, morning):
        start = local(TUESDAY, 9)
        result = checker.validate(["cut"], start, now=start - timedelta(seconds=1))
        assert result.start_at == start

    def test_future_check_runs_before_service_lookup(self, checker):
        start = local(TUESDAY, 9)
        with pytest.raises(ValidationException):
            checker.validate(["missing"], start, now=start + timedelta(hours=1))


class TestServiceResolution:
    def test_unknown_service(self, checker):
        with pytest.raises(NotFoundException):
            checker.validate(["missing"], local(TUESDAY, 9))

    def test_empty_request(self, checker):
        with pytest.raises(ValidationException):
            checker.resolve_services([])


class TestConflicts:
    def test_overlap_is_slot_unavailable(self, db, checker, morning):
        insert_appointment(db, local(TUESDAY, 10), 30)

        with pytest.raises(BookingConflictException) as exc_info:
            checker.validate(["color"], local(TUESDAY, 9, 30))
        assert exc_info.value.reason == SLOT_UNAVAILABLE

    def test_adjacent_booking_is_fine(self, db, checker, morning):
        insert_appointment(db, local(TUESDAY, 10), 30)
        result = checker.validate(["cut"], local(TUESDAY, 10, 30))
        assert result.total_minutes == 30

    def test_blocked_date(self, db, checker, morning):
        _block(db, TUESDAY, "Feriado")

        with pytest.raises(BookingConflictException) as exc_info:
            checker.validate(["cut"], local(TUESDAY, 9))
        assert exc_info.value.reason == DATE_BLOCKED
        assert exc_info.value.details["blocked_reason"] == "Feriado"

    def test_overlap_is_reported_before_blocked_date(self, db, checker, morning):
        insert_appointment(db, local(TUESDAY, 9), 30)
        _block(db, TUESDAY)

        with pytest.raises(BookingConflictException) as exc_info:
            checker.validate(["cut"], local(TUESDAY, 9))
        assert exc_info.value.reason == SLOT_UNAVAILABLE

    def test_off_grid_start_is_not_aligned(self, checker, morning):
        with pytest.raises(BookingConflictException) as exc_info:
            checker.validate(["cut"], local(TUESDAY, 9, 15))
        assert exc_info.value.reason == SLOT_NOT_ALIGNED

    def test_start_that_would_run_past_closing_is_not_aligned(self, checker, morning):
        with pytest.raises(BookingConflictException) as exc_info:
            checker.validate(["color"], local(TUESDAY, 11, 30))
        assert exc_info.value.reason == SLOT_NOT_ALIGNED


class TestBatchValidation:
    def test_services_are_chained_in_caller_order(self, checker):
        # Default hours: Tuesday 09:00-19:00
        result = checker.validate(["cut", "beard"], local(TUESDAY, 14))

        assert [(s.service.id, s.start_at, s.end_at) for s in result.segments] == [
            ("cut", local(TUESDAY, 14), local(TUESDAY, 14, 30)),
            ("beard", local(TUESDAY, 14, 30), local(TUESDAY, 15, 15)),
        ]
        assert result.end_at == local(TUESDAY, 15, 15)
        assert result.total_minutes == 75

    def test_combined_interval_must_be_free(self, db, checker):
        # First service alone would fit; the second runs into the booking
        insert_appointment(db, local(TUESDAY, 14, 45), 30)

        with pytest.raises(BookingConflictException) as exc_info:
            checker.validate(["cut", "beard"], local(TUESDAY, 14))
        assert exc_info.value.reason == SLOT_UNAVAILABLE

    def test_combined_duration_must_fit_the_window(self, checker, morning):
        with pytest.raises(BookingConflictException) as exc_info:
            checker.validate(["cut", "color"], local(TUESDAY, 11))
        assert exc_info.value.reason == SLOT_NOT_ALIGNED

    def test_prefetched_services_total_their_catalog_durations(self, checker, catalog):
        start = local(TUESDAY, 14)
        services = [catalog.get_service("cut"), catalog.get_service("beard")]

        result = checker.validate(
            ["cut", "beard"], start, now=start - timedelta(days=2), services=services
        )

        assert result.total_minutes == 75
        assert [(s.start_at, s.end_at) for s in result.segments] == [
            (local(TUESDAY, 14), local(TUESDAY, 14, 30)),
            (local(TUESDAY, 14, 30), local(TUESDAY, 15, 15)),
        ]

    def test_prices_default_to_catalog(self, checker):
        result = checker.validate(["cut", "beard"], local(TUESDAY, 14))
        assert [s.price for s in result.segments] == [Decimal("50.00"), Decimal("35.00")]


class TestIntervalFree:
    def test_excluded_appointment_does_not_clash_with_itself(self, db, checker):
        appointment = insert_appointment(db, local(TUESDAY, 10), 30)

        checker.check_interval_free(
            local(TUESDAY, 10), local(TUESDAY, 10, 30), exclude_id=appointment.id
        )

        with pytest.raises(BookingConflictException):
            checker.check_interval_free(local(TUESDAY, 10), local(TUESDAY, 10, 30))
