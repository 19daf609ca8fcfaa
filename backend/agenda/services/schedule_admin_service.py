# backend/agenda/services/schedule_admin_service.py
"""
Schedule administration for the Agenda platform.

Owns every write to the schedule tables: the weekly schedule (global or per
service), the legacy flat rules, blocked dates and per-date overrides.
"""

from datetime import date
import logging
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from ..core.exceptions import (
    BlockedDateExistsException,
    NotFoundException,
    RepositoryException,
    ValidationException,
)
from ..domain.schedule import (
    DaySchedule,
    LegacyRule,
    TimeWindow,
    WeekSchedule,
    validate_day_windows,
)
from ..models.availability import BlockedDate, DateOverride, LegacyAvailabilityRule
from ..repositories.factory import RepositoryFactory
from ..schemas.schedule import MigrationResult
from .availability_service import (
    SOURCE_DEFAULT,
    SOURCE_LEGACY,
    SOURCE_WEEKLY,
    AvailabilityService,
)
from .base import BaseService

logger = logging.getLogger(__name__)


def legacy_rules_to_week(rules: Sequence[LegacyRule]) -> WeekSchedule:
    """
    Weekly schedule from legacy rules, keeping the first active rule per weekday.

    Rules are expected in (weekday, start_minute) order.
    """
    first_by_weekday: dict[int, LegacyRule] = {}
    for rule in rules:
        if rule.is_active and rule.weekday not in first_by_weekday:
            first_by_weekday[rule.weekday] = rule
    return WeekSchedule.from_days(
        DaySchedule(
            weekday=weekday,
            is_available=True,
            time_windows=(TimeWindow(rule.start_minute, rule.end_minute),),
        )
        for weekday, rule in first_by_weekday.items()
    )


class ScheduleAdminService(BaseService):
    """Staff-facing schedule management."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.schedule_repository = RepositoryFactory.create_schedule_repository(db)
        self.blocked_date_repository = RepositoryFactory.create_blocked_date_repository(db)

    # Weekly schedule

    @BaseService.measure_operation("get_week_schedule")
    def get_week_schedule(self, service_id: Optional[str] = None) -> tuple[WeekSchedule, str]:
        """
        The weekly schedule in effect plus where it came from.

        Falls back to legacy rules and then to default business hours when no
        weekly schedule has been saved. Missing weekdays read as unavailable.
        """
        stored = self.schedule_repository.get_week_schedule(service_id)
        if stored is not None:
            return stored, SOURCE_WEEKLY
        if service_id is not None:
            stored = self.schedule_repository.get_week_schedule(None)
            if stored is not None:
                return stored, SOURCE_WEEKLY
        legacy = self.schedule_repository.get_active_legacy_rules()
        if legacy:
            return legacy_rules_to_week(legacy), SOURCE_LEGACY
        return AvailabilityService.default_schedule(), SOURCE_DEFAULT

    @BaseService.measure_operation("replace_week_schedule")
    def replace_week_schedule(
        self, schedule: WeekSchedule, service_id: Optional[str] = None
    ) -> WeekSchedule:
        """Replace all seven days in one transaction."""
        for day in schedule.days:
            if not day.is_available and day.time_windows:
                raise ValidationException(f"Weekday {day.weekday} is unavailable but has windows")
            try:
                validate_day_windows(day.time_windows)
            except ValueError as exc:
                raise ValidationException(str(exc), details={"weekday": day.weekday})

        with self.transaction():
            self.schedule_repository.replace_week_schedule(schedule, service_id)
        self.log_operation("replace_week_schedule", service_id=service_id)
        return schedule

    # Legacy rules

    def get_legacy_rules(self, service_id: Optional[str] = None) -> List[LegacyAvailabilityRule]:
        return self.schedule_repository.get_legacy_rule_rows(service_id)

    @BaseService.measure_operation("replace_legacy_rules")
    def replace_legacy_rules(
        self, rules: Sequence[LegacyRule], service_id: Optional[str] = None
    ) -> List[LegacyAvailabilityRule]:
        for rule in rules:
            if rule.slot_interval_minutes <= 0:
                raise ValidationException("slot_interval_minutes must be positive")
            if not (0 <= rule.start_minute < rule.end_minute <= 1440):
                raise ValidationException(
                    f"Invalid rule window {rule.start_minute}-{rule.end_minute}",
                    details={"weekday": rule.weekday},
                )
        with self.transaction():
            rows = self.schedule_repository.replace_legacy_rules(rules, service_id)
        self.log_operation("replace_legacy_rules", service_id=service_id, count=len(rows))
        return rows

    @BaseService.measure_operation("migrate_legacy_rules")
    def migrate_legacy_rules(self) -> MigrationResult:
        """
        One-off move from legacy rules to the weekly schedule.

        Does nothing when a global weekly schedule exists. Otherwise the first
        active rule per weekday becomes that day's window; with no rules at all
        the default Monday-Saturday business hours are written.
        """
        if self.schedule_repository.has_week_schedule(None):
            return MigrationResult(
                migrated=False,
                source=SOURCE_WEEKLY,
                message="Weekly schedule already exists, nothing to migrate",
            )

        legacy = self.schedule_repository.get_active_legacy_rules()
        if legacy:
            schedule, source = legacy_rules_to_week(legacy), SOURCE_LEGACY
        else:
            schedule, source = AvailabilityService.default_schedule(), SOURCE_DEFAULT

        with self.transaction():
            self.schedule_repository.replace_week_schedule(schedule, None)
        self.logger.info(f"Migrated availability to weekly schedule from {source}")
        return MigrationResult(
            migrated=True,
            source=source,
            message=f"Weekly schedule created from {source} availability",
        )

    # Blocked dates

    def list_blocked_dates(
        self, from_date: Optional[date] = None, to_date: Optional[date] = None
    ) -> List[BlockedDate]:
        return self.blocked_date_repository.list_dates(from_date, to_date)

    @BaseService.measure_operation("add_blocked_date")
    def add_blocked_date(self, target_date: date, reason: Optional[str] = None) -> BlockedDate:
        """Block one date; a date that is already blocked is a conflict."""
        if self.blocked_date_repository.is_blocked(target_date):
            raise BlockedDateExistsException(target_date.isoformat())
        try:
            with self.transaction():
                row = self.blocked_date_repository.add(target_date, reason)
        except RepositoryException as exc:
            raise BlockedDateExistsException(target_date.isoformat()) from exc
        self.log_operation("add_blocked_date", date=target_date.isoformat())
        return row

    @BaseService.measure_operation("add_blocked_dates")
    def add_blocked_dates(
        self, dates: Sequence[date], reason: Optional[str] = None
    ) -> List[BlockedDate]:
        """Block several dates, skipping those already blocked. Returns the new rows."""
        wanted = sorted(set(dates))
        if not wanted:
            return []
        existing = self.blocked_date_repository.get_in_range(wanted[0], wanted[-1])
        created: List[BlockedDate] = []
        with self.transaction():
            for target_date in wanted:
                if target_date in existing:
                    continue
                try:
                    created.append(self.blocked_date_repository.add(target_date, reason))
                except RepositoryException:
                    # Inserted concurrently between the read and this write
                    self.logger.info(f"Blocked date {target_date} already present, skipping")
        self.log_operation("add_blocked_dates", requested=len(wanted), created_count=len(created))
        return created

    @BaseService.measure_operation("remove_blocked_date")
    def remove_blocked_date(self, blocked_date_id: str) -> None:
        with self.transaction():
            deleted = self.blocked_date_repository.delete(blocked_date_id)
        if not deleted:
            raise NotFoundException(
                f"Blocked date {blocked_date_id} not found", code="BLOCKED_DATE_NOT_FOUND"
            )

    @BaseService.measure_operation("remove_blocked_dates")
    def remove_blocked_dates(self, ids: Sequence[str]) -> int:
        with self.transaction():
            return self.blocked_date_repository.delete_many(list(ids))

    # Date overrides

    def list_date_overrides(self, from_date: Optional[date] = None) -> List[DateOverride]:
        return self.schedule_repository.list_overrides(from_date)

    @BaseService.measure_operation("set_date_override")
    def set_date_override(
        self,
        target_date: date,
        windows: Sequence[TimeWindow],
        note: Optional[str] = None,
    ) -> DateOverride:
        """Create or replace the override for ``target_date``. No windows closes the day."""
        try:
            ordered = validate_day_windows(windows)
        except ValueError as exc:
            raise ValidationException(str(exc), details={"date": target_date.isoformat()})
        with self.transaction():
            override = self.schedule_repository.upsert_override(target_date, ordered, note)
        self.log_operation("set_date_override", date=target_date.isoformat(), windows=len(ordered))
        return override

    @BaseService.measure_operation("remove_date_override")
    def remove_date_override(self, override_id: str) -> None:
        with self.transaction():
            deleted = self.schedule_repository.delete_override(override_id)
        if not deleted:
            raise NotFoundException(
                f"Date override {override_id} not found", code="DATE_OVERRIDE_NOT_FOUND"
            )
