# backend/agenda/schemas/availability.py
"""Public availability responses."""

import datetime
from typing import List, Optional

from pydantic import Field

from ._strict_base import StandardizedModel

DateType = datetime.date
DateTimeType = datetime.datetime


class SlotResponse(StandardizedModel):
    start_at: DateTimeType
    end_at: DateTimeType
    label: str = Field(..., description="HH:MM in the business timezone")


class DayAvailability(StandardizedModel):
    date: DateType
    slots: List[SlotResponse] = Field(default_factory=list)
    blocked: bool = False
    blocked_reason: Optional[str] = None


class BlockedDay(StandardizedModel):
    date: DateType
    reason: Optional[str] = None


class RangeAvailability(StandardizedModel):
    service_id: str
    duration_minutes: int
    days: List[DayAvailability]
    blocked_dates: List[BlockedDay] = Field(default_factory=list)
