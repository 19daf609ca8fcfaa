# backend/agenda/services/availability_service.py
"""
Availability Service for the Agenda platform.

Read side of the calendar: works out which schedule applies on a civil date
and lists the bookable slots for a service duration. The conflict checker
resolves sources through this service so the slots a customer sees are the
slots a booking is validated against.

Source precedence for a date:
    date override > weekly schedule > legacy rules > default business hours
Blocked dates always win and short-circuit to an empty day.
"""

from datetime import date, datetime, timedelta
import logging
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import ValidationException
from ..core.timezone_utils import civil_midnight_utc, format_local_time, utc_now
from ..domain.schedule import (
    AvailabilitySource,
    LegacyRuleSource,
    OverrideSource,
    TimeWindow,
    WeeklyScheduleSource,
    WeekSchedule,
    default_week_schedule,
    merge_schedule,
)
from ..domain.slots import Interval, Slot, generate_slots
from ..integrations.catalog_client import CatalogProvider
from ..models.availability import BlockedDate, DateOverride
from ..repositories.factory import RepositoryFactory
from ..schemas.availability import BlockedDay, DayAvailability, RangeAvailability, SlotResponse
from .base import BaseService

logger = logging.getLogger(__name__)

SOURCE_WEEKLY = "weekly"
SOURCE_LEGACY = "legacy"
SOURCE_DEFAULT = "default"
SOURCE_OVERRIDE = "override"


class AvailabilityService(BaseService):
    """Slot listing and source resolution for the single shared calendar."""

    def __init__(
        self,
        db: Session,
        catalog: Optional[CatalogProvider] = None,
        tz_name: Optional[str] = None,
    ):
        super().__init__(db)
        self.catalog = catalog
        self.tz_name = tz_name or settings.timezone
        self.schedule_repository = RepositoryFactory.create_schedule_repository(db)
        self.blocked_date_repository = RepositoryFactory.create_blocked_date_repository(db)
        self.appointment_repository = RepositoryFactory.create_appointment_repository(db)

    # Source resolution

    def resolve_base_source(self, service_id: Optional[str] = None) -> tuple[AvailabilitySource, str]:
        """
        Date-independent source: weekly schedule, legacy rules or default hours.

        A service-specific weekly schedule wins over the global one when it has
        any open window.
        """
        global_schedule = self.schedule_repository.get_week_schedule(None)
        service_schedule = (
            self.schedule_repository.get_week_schedule(service_id) if service_id else None
        )
        if global_schedule is not None or service_schedule is not None:
            schedule = merge_schedule(service_schedule, global_schedule or WeekSchedule.closed())
            return WeeklyScheduleSource(schedule, settings.slot_interval_minutes), SOURCE_WEEKLY

        legacy_rules = self.schedule_repository.get_active_legacy_rules()
        if legacy_rules:
            return LegacyRuleSource(legacy_rules), SOURCE_LEGACY

        return (
            WeeklyScheduleSource(self.default_schedule(), settings.slot_interval_minutes),
            SOURCE_DEFAULT,
        )

    @staticmethod
    def default_schedule() -> WeekSchedule:
        return default_week_schedule(settings.business_start_min, settings.business_end_min)

    @staticmethod
    def _override_source(override: DateOverride) -> OverrideSource:
        return OverrideSource(
            override.date,
            [TimeWindow(w.start_minute, w.end_minute) for w in override.time_windows],
            settings.slot_interval_minutes,
        )

    def resolve_source(
        self, target_date: date, service_id: Optional[str] = None
    ) -> tuple[AvailabilitySource, str]:
        """The source that governs ``target_date`` plus its name."""
        override = self.schedule_repository.get_override_for_date(target_date)
        if override is not None:
            return self._override_source(override), SOURCE_OVERRIDE
        return self.resolve_base_source(service_id)

    # Slot generation

    def _duration_for(self, service_id: str, duration_override: Optional[int]) -> int:
        if duration_override is not None:
            if duration_override <= 0:
                raise ValidationException("duration must be a positive number of minutes")
            return duration_override
        if self.catalog is None:
            raise ValidationException("duration is required when no catalog is configured")
        return self.catalog.get_service(service_id).duration_minutes

    def _day_bounds(self, start_date: date, end_date: date) -> tuple[datetime, datetime]:
        return (
            civil_midnight_utc(start_date, self.tz_name),
            civil_midnight_utc(end_date + timedelta(days=1), self.tz_name),
        )

    def build_slots(
        self,
        target_date: date,
        source: AvailabilitySource,
        duration_minutes: int,
        booked: Sequence[Interval] = (),
    ) -> List[Slot]:
        """generate_slots with input errors surfaced as ValidationException."""
        try:
            return generate_slots(target_date, self.tz_name, source, duration_minutes, booked)
        except ValueError as exc:
            raise ValidationException(str(exc), code="INVALID_SLOT_PARAMETERS")

    def _to_day(
        self,
        target_date: date,
        slots: Sequence[Slot],
        blocked: Optional[BlockedDate],
        now: datetime,
    ) -> DayAvailability:
        if blocked is not None:
            return DayAvailability(date=target_date, blocked=True, blocked_reason=blocked.reason)
        return DayAvailability(
            date=target_date,
            slots=[
                SlotResponse(
                    start_at=slot.start,
                    end_at=slot.end,
                    label=format_local_time(slot.start, self.tz_name),
                )
                for slot in slots
                # Slots at or before now would be rejected by the checker
                if slot.start > now
            ],
        )

    @BaseService.measure_operation("get_slots_for_date")
    def get_slots_for_date(
        self,
        target_date: date,
        service_id: str,
        duration_override: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> DayAvailability:
        """Bookable slots on one civil date for ``service_id``."""
        now = now or utc_now()
        blocked = self.blocked_date_repository.get_for_date(target_date)
        if blocked is not None:
            return self._to_day(target_date, [], blocked, now)

        duration = self._duration_for(service_id, duration_override)
        source, source_name = self.resolve_source(target_date, service_id)
        window_start, window_end = self._day_bounds(target_date, target_date)
        booked = self.appointment_repository.get_booked_intervals(window_start, window_end)
        slots = self.build_slots(target_date, source, duration, booked)

        self.logger.debug(
            "Generated %d slots for %s from %s source", len(slots), target_date, source_name
        )
        return self._to_day(target_date, slots, None, now)

    @BaseService.measure_operation("get_slots_for_range")
    def get_slots_for_range(
        self,
        start_date: date,
        end_date: date,
        service_id: str,
        duration_override: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> RangeAvailability:
        """
        Slots for every civil date in [start_date, end_date].

        Loads blocked dates, overrides and booked intervals once for the whole
        range instead of per day.
        """
        if end_date < start_date:
            raise ValidationException("'to' must not be before 'from'")
        span = (end_date - start_date).days + 1
        if span > settings.max_range_days:
            raise ValidationException(
                f"Range too large: {span} days (max {settings.max_range_days})",
                details={"max_range_days": settings.max_range_days},
            )

        now = now or utc_now()
        duration = self._duration_for(service_id, duration_override)
        blocked_by_date: Dict[date, BlockedDate] = self.blocked_date_repository.get_in_range(
            start_date, end_date
        )
        overrides = self.schedule_repository.get_overrides_in_range(start_date, end_date)
        base_source, _ = self.resolve_base_source(service_id)
        window_start, window_end = self._day_bounds(start_date, end_date)
        booked = self.appointment_repository.get_booked_intervals(window_start, window_end)

        days: List[DayAvailability] = []
        current = start_date
        while current <= end_date:
            blocked = blocked_by_date.get(current)
            if blocked is not None:
                days.append(self._to_day(current, [], blocked, now))
            else:
                override = overrides.get(current)
                source = self._override_source(override) if override is not None else base_source
                slots = self.build_slots(current, source, duration, booked)
                days.append(self._to_day(current, slots, None, now))
            current += timedelta(days=1)

        return RangeAvailability(
            service_id=service_id,
            duration_minutes=duration,
            days=days,
            blocked_dates=[
                BlockedDay(date=row.date, reason=row.reason)
                for _, row in sorted(blocked_by_date.items())
            ],
        )
