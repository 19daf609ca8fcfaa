# backend/agenda/repositories/schedule_repository.py
"""
Schedule Repository for the Agenda platform.

Reads and replaces the weekly schedule (global or per service), the legacy
flat rules and per-date overrides. Everything returned to services is
converted to the immutable domain types in ``agenda.domain.schedule``.
"""

from datetime import date
import logging
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..core.exceptions import RepositoryException
from ..domain.schedule import (
    DaySchedule,
    LegacyRule,
    TimeWindow,
    WeekSchedule,
)
from ..models.availability import (
    AvailabilitySchedule,
    AvailabilityTimeWindow,
    DateOverride,
    DateOverrideWindow,
    LegacyAvailabilityRule,
)
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


def _scope_filter(column, service_id: Optional[str]):
    return column.is_(None) if service_id is None else column == service_id


class ScheduleRepository(BaseRepository[AvailabilitySchedule]):
    """Data access for weekly schedules, legacy rules and date overrides."""

    def __init__(self, db: Session):
        super().__init__(db, AvailabilitySchedule)
        self.logger = logging.getLogger(__name__)

    # Weekly schedule

    def get_week_schedule(self, service_id: Optional[str] = None) -> Optional[WeekSchedule]:
        """
        Weekly schedule for the scope, or None when no rows exist.

        Missing weekdays are treated as closed.
        """
        try:
            rows = (
                self.db.query(AvailabilitySchedule)
                .options(selectinload(AvailabilitySchedule.time_windows))
                .filter(_scope_filter(AvailabilitySchedule.service_id, service_id))
                .order_by(AvailabilitySchedule.weekday)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading week schedule: {str(e)}")
            raise RepositoryException(f"Failed to load week schedule: {str(e)}")

        if not rows:
            return None
        days = [
            DaySchedule(
                weekday=row.weekday,
                is_available=bool(row.is_available),
                time_windows=tuple(
                    TimeWindow(w.start_minute, w.end_minute) for w in row.time_windows
                )
                if row.is_available
                else (),
            )
            for row in rows
        ]
        return WeekSchedule.from_days(days)

    def has_week_schedule(self, service_id: Optional[str] = None) -> bool:
        try:
            return (
                self.db.query(AvailabilitySchedule.id)
                .filter(_scope_filter(AvailabilitySchedule.service_id, service_id))
                .first()
                is not None
            )
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to check week schedule: {str(e)}")

    def replace_week_schedule(
        self, schedule: WeekSchedule, service_id: Optional[str] = None
    ) -> None:
        """Delete the scope's rows and insert the new week. Caller commits."""
        try:
            existing = (
                self.db.query(AvailabilitySchedule)
                .filter(_scope_filter(AvailabilitySchedule.service_id, service_id))
                .all()
            )
            for row in existing:
                self.db.delete(row)
            self.db.flush()

            for day in schedule.days:
                row = AvailabilitySchedule(
                    service_id=service_id,
                    weekday=day.weekday,
                    is_available=day.is_available,
                )
                row.time_windows = [
                    AvailabilityTimeWindow(start_minute=w.start_minute, end_minute=w.end_minute)
                    for w in day.time_windows
                ]
                self.db.add(row)
            self.db.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Error replacing week schedule: {str(e)}")
            raise RepositoryException(f"Failed to replace week schedule: {str(e)}")

    # Legacy rules

    def get_legacy_rule_rows(
        self, service_id: Optional[str] = None, *, active_only: bool = False
    ) -> List[LegacyAvailabilityRule]:
        try:
            query = self.db.query(LegacyAvailabilityRule)
            if service_id is not None:
                query = query.filter(LegacyAvailabilityRule.service_id == service_id)
            if active_only:
                query = query.filter(LegacyAvailabilityRule.is_active.is_(True))
            return query.order_by(
                LegacyAvailabilityRule.weekday, LegacyAvailabilityRule.start_minute
            ).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading legacy rules: {str(e)}")
            raise RepositoryException(f"Failed to load legacy rules: {str(e)}")

    def get_active_legacy_rules(self) -> List[LegacyRule]:
        return [
            LegacyRule(
                weekday=row.weekday,
                start_minute=row.start_minute,
                end_minute=row.end_minute,
                slot_interval_minutes=row.slot_interval_minutes,
                is_active=True,
            )
            for row in self.get_legacy_rule_rows(active_only=True)
        ]

    def replace_legacy_rules(
        self, rules: Sequence[LegacyRule], service_id: Optional[str] = None
    ) -> List[LegacyAvailabilityRule]:
        try:
            self.db.query(LegacyAvailabilityRule).filter(
                _scope_filter(LegacyAvailabilityRule.service_id, service_id)
            ).delete(synchronize_session=False)
            rows = [
                LegacyAvailabilityRule(
                    service_id=service_id,
                    weekday=rule.weekday,
                    start_minute=rule.start_minute,
                    end_minute=rule.end_minute,
                    slot_interval_minutes=rule.slot_interval_minutes,
                    is_active=rule.is_active,
                )
                for rule in rules
            ]
            self.db.add_all(rows)
            self.db.flush()
            return rows
        except SQLAlchemyError as e:
            self.logger.error(f"Error replacing legacy rules: {str(e)}")
            raise RepositoryException(f"Failed to replace legacy rules: {str(e)}")

    # Date overrides

    def get_override_for_date(self, target_date: date) -> Optional[DateOverride]:
        try:
            return (
                self.db.query(DateOverride)
                .options(selectinload(DateOverride.time_windows))
                .filter(DateOverride.date == target_date)
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading date override: {str(e)}")
            raise RepositoryException(f"Failed to load date override: {str(e)}")

    def get_overrides_in_range(self, start_date: date, end_date: date) -> Dict[date, DateOverride]:
        try:
            rows = (
                self.db.query(DateOverride)
                .options(selectinload(DateOverride.time_windows))
                .filter(DateOverride.date >= start_date, DateOverride.date <= end_date)
                .all()
            )
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to load date overrides: {str(e)}")
        return {row.date: row for row in rows}

    def list_overrides(self, from_date: Optional[date] = None) -> List[DateOverride]:
        try:
            query = self.db.query(DateOverride).options(selectinload(DateOverride.time_windows))
            if from_date is not None:
                query = query.filter(DateOverride.date >= from_date)
            return query.order_by(DateOverride.date).all()
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to list date overrides: {str(e)}")

    def upsert_override(
        self, target_date: date, windows: Sequence[TimeWindow], note: Optional[str] = None
    ) -> DateOverride:
        try:
            override = self.get_override_for_date(target_date)
            if override is None:
                override = DateOverride(date=target_date)
                self.db.add(override)
            override.note = note
            override.time_windows = [
                DateOverrideWindow(start_minute=w.start_minute, end_minute=w.end_minute)
                for w in windows
            ]
            self.db.flush()
            return override
        except SQLAlchemyError as e:
            self.logger.error(f"Error saving date override: {str(e)}")
            raise RepositoryException(f"Failed to save date override: {str(e)}")

    def delete_override(self, override_id: str) -> bool:
        try:
            override = self.db.get(DateOverride, override_id)
            if override is None:
                return False
            self.db.delete(override)
            self.db.flush()
            return True
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to delete date override: {str(e)}")
