# backend/agenda/models/availability.py
"""
Availability models for the Agenda platform.

The business calendar is described by three layers, all expressed in local
civil minutes (0-1440) of the configured timezone:

Classes:
    AvailabilitySchedule: one row per weekday (global, or scoped to a service)
    AvailabilityTimeWindow: open intervals inside a weekday
    LegacyAvailabilityRule: flat per-weekday rule with its own slot interval
    BlockedDate: civil date with no availability at all
    DateOverride / DateOverrideWindow: replaces the weekly schedule for one date
"""

import logging

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base

logger = logging.getLogger(__name__)


class AvailabilitySchedule(Base):
    """Weekly schedule entry for one weekday (0 = Sunday)."""

    __tablename__ = "availability_schedules"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    # NULL means the global schedule; otherwise a catalog service id
    service_id = Column(String(64), nullable=True, index=True)
    weekday = Column(Integer, nullable=False)
    is_available = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    time_windows = relationship(
        "AvailabilityTimeWindow",
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="AvailabilityTimeWindow.start_minute",
    )

    __table_args__ = (
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="ck_schedule_weekday"),
        Index("idx_availability_schedules_scope_weekday", "service_id", "weekday"),
    )

    def __repr__(self) -> str:
        scope = self.service_id or "global"
        return f"<AvailabilitySchedule {scope} weekday={self.weekday} available={self.is_available}>"


class AvailabilityTimeWindow(Base):
    """Open interval [start_minute, end_minute) inside a weekday."""

    __tablename__ = "availability_time_windows"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    schedule_id = Column(
        String(26),
        ForeignKey("availability_schedules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_minute = Column(Integer, nullable=False)
    end_minute = Column(Integer, nullable=False)

    schedule = relationship("AvailabilitySchedule", back_populates="time_windows")

    __table_args__ = (
        CheckConstraint(
            "start_minute >= 0 AND end_minute <= 1440 AND start_minute < end_minute",
            name="ck_time_window_bounds",
        ),
    )


class LegacyAvailabilityRule(Base):
    """
    Flat availability rule kept for calendars configured before weekly schedules.

    Unlike the weekly schedule, each rule carries its own slot interval.
    """

    __tablename__ = "availability_rules"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    service_id = Column(String(64), nullable=True, index=True)
    weekday = Column(Integer, nullable=False)
    start_minute = Column(Integer, nullable=False)
    end_minute = Column(Integer, nullable=False)
    slot_interval_minutes = Column(Integer, nullable=False, default=30)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="ck_rule_weekday"),
        CheckConstraint("slot_interval_minutes > 0", name="ck_rule_interval_positive"),
        CheckConstraint(
            "start_minute >= 0 AND end_minute <= 1440 AND start_minute < end_minute",
            name="ck_rule_bounds",
        ),
    )


class BlockedDate(Base):
    """Civil date on which no slots are offered."""

    __tablename__ = "blocked_dates"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    date = Column(Date, nullable=False)
    reason = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint("date", name="unique_blocked_date"),)

    def __repr__(self) -> str:
        return f"<BlockedDate {self.date} - {self.reason or 'No reason'}>"


class DateOverride(Base):
    """Replaces the weekly schedule for a single civil date. No windows means closed."""

    __tablename__ = "date_overrides"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    date = Column(Date, nullable=False)
    note = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    time_windows = relationship(
        "DateOverrideWindow",
        back_populates="override",
        cascade="all, delete-orphan",
        order_by="DateOverrideWindow.start_minute",
    )

    __table_args__ = (UniqueConstraint("date", name="unique_date_override"),)

    def __repr__(self) -> str:
        return f"<DateOverride {self.date} windows={len(self.time_windows or [])}>"


class DateOverrideWindow(Base):
    __tablename__ = "date_override_windows"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    override_id = Column(
        String(26),
        ForeignKey("date_overrides.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_minute = Column(Integer, nullable=False)
    end_minute = Column(Integer, nullable=False)

    override = relationship("DateOverride", back_populates="time_windows")

    __table_args__ = (
        CheckConstraint(
            "start_minute >= 0 AND end_minute <= 1440 AND start_minute < end_minute",
            name="ck_override_window_bounds",
        ),
    )
