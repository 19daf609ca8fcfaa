# backend/tests/unit/services/test_availability_service.py
"""
Tests for AvailabilityService against an in-memory database.

Covers source precedence (override > weekly > legacy > default hours),
blocked-date dominance, booked intervals and range queries.
"""

from datetime import datetime, timedelta, timezone

import pytest

from agenda.core.exceptions import NotFoundException, ValidationException
from agenda.domain.schedule import LegacyRule, TimeWindow
from agenda.repositories.blocked_date_repository import BlockedDateRepository
from agenda.repositories.schedule_repository import ScheduleRepository
from agenda.services.availability_service import (
    SOURCE_DEFAULT,
    SOURCE_LEGACY,
    SOURCE_OVERRIDE,
    SOURCE_WEEKLY,
    AvailabilityService,
)
from helpers.calendar_helpers import (
    SUNDAY,
    TUESDAY,
    WEDNESDAY,
    insert_appointment,
    local,
    save_week,
)

NOW = datetime(2029, 12, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def service(db, catalog):
    return AvailabilityService(db, catalog)


def _labels(day):
    return [slot.label for slot in day.slots]


def _block(db, day, reason="Feriado"):
    BlockedDateRepository(db).add(day, reason)
    db.commit()


class TestSourcePrecedence:
    def test_default_business_hours_when_nothing_is_configured(self, service):
        day = service.get_slots_for_date(TUESDAY, "cut", now=NOW)

        assert _labels(day)[0] == "09:00"
        assert _labels(day)[-1] == "18:30"
        assert len(day.slots) == 20
        assert service.resolve_source(TUESDAY)[1] == SOURCE_DEFAULT

    def test_default_hours_are_closed_on_sunday(self, service):
        day = service.get_slots_for_date(SUNDAY, "cut", now=NOW)
        assert day.slots == []
        assert day.blocked is False

    def test_weekly_schedule_replaces_default_hours(self, db, service):
        save_week(db, {2: [(600, 720)]})

        day = service.get_slots_for_date(TUESDAY, "color", now=NOW)

        assert _labels(day) == ["10:00", "10:30", "11:00"]
        assert service.resolve_source(TUESDAY)[1] == SOURCE_WEEKLY

    def test_service_schedule_wins_over_global(self, db, service):
        save_week(db, {2: [(540, 1140)]})
        save_week(db, {2: [(840, 900)]}, service_id="beard")

        beard = service.get_slots_for_date(TUESDAY, "beard", now=NOW)
        cut = service.get_slots_for_date(TUESDAY, "cut", now=NOW)

        assert _labels(beard) == ["14:00"]
        assert len(cut.slots) == 20

    def test_closed_service_schedule_falls_back_to_global(self, db, service):
        save_week(db, {2: [(540, 600)]})
        save_week(db, {}, service_id="beard")

        day = service.get_slots_for_date(TUESDAY, "beard", duration_override=30, now=NOW)

        assert _labels(day) == ["09:00", "09:30"]

    def test_legacy_rules_when_no_weekly_schedule(self, db, service):
        ScheduleRepository(db).replace_legacy_rules(
            [LegacyRule(weekday=2, start_minute=540, end_minute=600, slot_interval_minutes=20)]
        )
        db.commit()

        day = service.get_slots_for_date(TUESDAY, "x", duration_override=20, now=NOW)

        assert _labels(day) == ["09:00", "09:20", "09:40"]
        assert service.resolve_source(TUESDAY)[1] == SOURCE_LEGACY

    def test_override_wins_over_weekly_schedule(self, db, service):
        save_week(db, {2: [(540, 1140)]})
        ScheduleRepository(db).upsert_override(TUESDAY, [TimeWindow(780, 840)], "Evento")
        db.commit()

        day = service.get_slots_for_date(TUESDAY, "cut", now=NOW)

        assert _labels(day) == ["13:00", "13:30"]
        assert service.resolve_source(TUESDAY)[1] == SOURCE_OVERRIDE

    def test_override_without_windows_closes_the_day(self, db, service):
        ScheduleRepository(db).upsert_override(TUESDAY, [], "Fechado")
        db.commit()

        assert service.get_slots_for_date(TUESDAY, "cut", now=NOW).slots == []


class TestBlockedDates:
    def test_blocked_date_has_no_slots_and_a_reason(self, db, service):
        _block(db, TUESDAY, "Feriado")

        day = service.get_slots_for_date(TUESDAY, "cut", now=NOW)

        assert day.blocked is True
        assert day.blocked_reason == "Feriado"
        assert day.slots == []

    def test_blocked_date_beats_override(self, db, service):
        ScheduleRepository(db).upsert_override(TUESDAY, [TimeWindow(540, 600)])
        db.commit()
        _block(db, TUESDAY)

        assert service.get_slots_for_date(TUESDAY, "cut", now=NOW).slots == []


class TestBookedIntervals:
    def test_booked_appointment_removes_overlapping_slots(self, db, service):
        save_week(db, {2: [(540, 720)]})
        insert_appointment(db, local(TUESDAY, 10), 30)

        day = service.get_slots_for_date(TUESDAY, "x", duration_override=60, now=NOW)

        assert _labels(day) == ["09:00", "10:30", "11:00"]

    def test_cancelled_appointment_frees_its_time(self, db, service):
        save_week(db, {2: [(540, 720)]})
        insert_appointment(db, local(TUESDAY, 10), 30, status="CANCELLED")

        day = service.get_slots_for_date(TUESDAY, "x", duration_override=60, now=NOW)

        assert "09:30" in _labels(day)
        assert "10:00" in _labels(day)

    def test_past_slots_are_not_offered(self, db, service):
        save_week(db, {2: [(540, 720)]})

        day = service.get_slots_for_date(TUESDAY, "cut", now=local(TUESDAY, 10))

        assert _labels(day) == ["10:30", "11:00", "11:30"]


class TestDurations:
    def test_catalog_duration_is_used(self, db, service):
        save_week(db, {2: [(540, 660)]})
        day = service.get_slots_for_date(TUESDAY, "beard", now=NOW)
        # 45 minutes on a 30 minute grid inside 09:00-11:00
        assert _labels(day) == ["09:00", "09:30", "10:00"]

    def test_unknown_service_without_override(self, service):
        with pytest.raises(NotFoundException):
            service.get_slots_for_date(TUESDAY, "missing", now=NOW)

    def test_non_positive_override_is_rejected(self, service):
        with pytest.raises(ValidationException):
            service.get_slots_for_date(TUESDAY, "cut", duration_override=0, now=NOW)

    def test_slot_end_matches_duration(self, service):
        day = service.get_slots_for_date(TUESDAY, "beard", now=NOW)
        assert all(s.end_at - s.start_at == timedelta(minutes=45) for s in day.slots)


class TestRange:
    def test_range_lists_every_day(self, db, service):
        _block(db, WEDNESDAY, "Feriado")

        result = service.get_slots_for_range(SUNDAY, WEDNESDAY, "cut", now=NOW)

        assert [d.date for d in result.days] == [SUNDAY + timedelta(days=i) for i in range(4)]
        assert result.duration_minutes == 30
        assert result.days[0].slots == []
        assert len(result.days[2].slots) == 20
        assert result.days[3].blocked is True
        assert [b.date for b in result.blocked_dates] == [WEDNESDAY]

    def test_range_matches_single_day_queries(self, db, service):
        save_week(db, {2: [(540, 720)], 3: [(600, 660)]})
        insert_appointment(db, local(TUESDAY, 10), 30)
        ScheduleRepository(db).upsert_override(WEDNESDAY, [TimeWindow(840, 900)])
        db.commit()

        result = service.get_slots_for_range(TUESDAY, WEDNESDAY, "cut", now=NOW)

        for day in result.days:
            single = service.get_slots_for_date(day.date, "cut", now=NOW)
            assert day.slots == single.slots

    def test_reversed_range_is_rejected(self, service):
        with pytest.raises(ValidationException):
            service.get_slots_for_range(WEDNESDAY, TUESDAY, "cut", now=NOW)

    def test_range_too_large_is_rejected(self, service):
        with pytest.raises(ValidationException):
            service.get_slots_for_range(TUESDAY, TUESDAY + timedelta(days=90), "cut", now=NOW)
