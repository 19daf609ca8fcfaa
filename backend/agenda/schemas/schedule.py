# backend/agenda/schemas/schedule.py
"""
Schedule administration schemas.

Window validation mirrors the domain rules so bad input is rejected at the
API boundary with a 422 before it ever reaches the service layer.
"""

import datetime
from typing import List, Optional

from pydantic import Field, field_validator, model_validator

from ..domain.schedule import (
    DaySchedule,
    LegacyRule,
    TimeWindow,
    WeekSchedule,
    validate_day_windows,
)
from ._strict_base import StandardizedModel, StrictRequestModel

DateType = datetime.date
DateTimeType = datetime.datetime


class TimeWindowSchema(StrictRequestModel):
    start_minute: int = Field(..., ge=0, lt=1440)
    end_minute: int = Field(..., gt=0, le=1440)

    @model_validator(mode="after")
    def _check_order(self) -> "TimeWindowSchema":
        if self.start_minute >= self.end_minute:
            raise ValueError("end_minute must be after start_minute")
        return self

    def to_domain(self) -> TimeWindow:
        return TimeWindow(self.start_minute, self.end_minute)


def _check_windows(windows: List[TimeWindowSchema]) -> List[TimeWindowSchema]:
    validate_day_windows(w.to_domain() for w in windows)
    return sorted(windows, key=lambda w: w.start_minute)


class DayScheduleSchema(StrictRequestModel):
    weekday: int = Field(..., ge=0, le=6, description="0 = Sunday")
    is_available: bool
    time_windows: List[TimeWindowSchema] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_windows(self) -> "DayScheduleSchema":
        if not self.is_available and self.time_windows:
            raise ValueError("An unavailable day cannot have time windows")
        _check_windows(self.time_windows)
        return self

    def to_domain(self) -> DaySchedule:
        return DaySchedule(
            weekday=self.weekday,
            is_available=self.is_available,
            time_windows=tuple(w.to_domain() for w in self.time_windows),
        )


class WeekScheduleUpdate(StrictRequestModel):
    """Wholesale replacement of the weekly schedule."""

    service_id: Optional[str] = Field(
        None, description="Scope to one catalog service; omit for the global schedule"
    )
    days: List[DayScheduleSchema] = Field(..., min_length=7, max_length=7)

    @field_validator("days")
    @classmethod
    def _one_per_weekday(cls, days: List[DayScheduleSchema]) -> List[DayScheduleSchema]:
        if sorted(d.weekday for d in days) != list(range(7)):
            raise ValueError("days must contain each weekday 0..6 exactly once")
        return sorted(days, key=lambda d: d.weekday)

    def to_domain(self) -> WeekSchedule:
        return WeekSchedule(tuple(d.to_domain() for d in self.days))


class TimeWindowResponse(StandardizedModel):
    start_minute: int
    end_minute: int


class DayScheduleResponse(StandardizedModel):
    weekday: int
    is_available: bool
    time_windows: List[TimeWindowResponse] = Field(default_factory=list)


class WeekScheduleResponse(StandardizedModel):
    service_id: Optional[str] = None
    source: str = Field(..., description="weekly | legacy | default")
    days: List[DayScheduleResponse]

    @classmethod
    def from_domain(
        cls, schedule: WeekSchedule, *, source: str, service_id: Optional[str] = None
    ) -> "WeekScheduleResponse":
        return cls(
            service_id=service_id,
            source=source,
            days=[
                DayScheduleResponse(
                    weekday=day.weekday,
                    is_available=day.is_available,
                    time_windows=[
                        TimeWindowResponse(start_minute=w.start_minute, end_minute=w.end_minute)
                        for w in day.time_windows
                    ],
                )
                for day in schedule.days
            ],
        )


class LegacyRuleSchema(StrictRequestModel):
    weekday: int = Field(..., ge=0, le=6)
    start_minute: int = Field(..., ge=0, lt=1440)
    end_minute: int = Field(..., gt=0, le=1440)
    slot_interval_minutes: int = Field(30, gt=0, le=1440)
    is_active: bool = True

    @model_validator(mode="after")
    def _check_order(self) -> "LegacyRuleSchema":
        if self.start_minute >= self.end_minute:
            raise ValueError("end_minute must be after start_minute")
        return self

    def to_domain(self) -> LegacyRule:
        return LegacyRule(
            weekday=self.weekday,
            start_minute=self.start_minute,
            end_minute=self.end_minute,
            slot_interval_minutes=self.slot_interval_minutes,
            is_active=self.is_active,
        )


class LegacyRulesUpdate(StrictRequestModel):
    service_id: Optional[str] = None
    rules: List[LegacyRuleSchema] = Field(default_factory=list)


class LegacyRuleResponse(StandardizedModel):
    id: str
    service_id: Optional[str] = None
    weekday: int
    start_minute: int
    end_minute: int
    slot_interval_minutes: int
    is_active: bool


class MigrationResult(StandardizedModel):
    migrated: bool
    source: str
    message: str


class BlockedDateCreate(StrictRequestModel):
    """Schema for blocking a single civil date."""

    date: DateType
    reason: Optional[str] = Field(None, max_length=255)


class BlockedDateBatchCreate(StrictRequestModel):
    dates: List[DateType] = Field(..., min_length=1, max_length=366)
    reason: Optional[str] = Field(None, max_length=255)

    @field_validator("dates")
    @classmethod
    def _dedupe(cls, dates: List[DateType]) -> List[DateType]:
        return sorted(set(dates))


class BlockedDateBatchDelete(StrictRequestModel):
    ids: List[str] = Field(..., min_length=1, max_length=366)


class BlockedDateBatchDeleteResponse(StandardizedModel):
    deleted: int


class BlockedDateResponse(StandardizedModel):
    id: str
    date: DateType
    reason: Optional[str] = None
    created_at: Optional[DateTimeType] = None


class DateOverrideUpsert(StrictRequestModel):
    """Replace the weekly schedule for one date. An empty window list closes the day."""

    date: DateType
    time_windows: List[TimeWindowSchema] = Field(default_factory=list)
    note: Optional[str] = Field(None, max_length=255)

    @field_validator("time_windows")
    @classmethod
    def _validate_windows(cls, windows: List[TimeWindowSchema]) -> List[TimeWindowSchema]:
        return _check_windows(windows)


class DateOverrideResponse(StandardizedModel):
    id: str
    date: DateType
    note: Optional[str] = None
    time_windows: List[TimeWindowResponse] = Field(default_factory=list)
