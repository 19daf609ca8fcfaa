# backend/agenda/schemas/booking.py
"""
Appointment request and response schemas.

Requests are strict (unknown fields rejected). Start instants must carry a
timezone offset; naive datetimes are ambiguous against the business calendar.
"""

import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import Field, field_validator, model_validator

from ._strict_base import StandardizedModel, StrictRequestModel

DateTimeType = datetime.datetime


class PaymentMethod(str, Enum):
    PIX = "PIX"
    DINHEIRO = "DINHEIRO"
    CARTAO = "CARTAO"


def _require_aware(value: DateTimeType) -> DateTimeType:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("start_at must include a timezone offset")
    return value


class _CustomerFields(StrictRequestModel):
    customer_name: str = Field(..., min_length=2, max_length=255)
    customer_phone: str = Field(..., min_length=8, max_length=32)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("customer_phone")
    @classmethod
    def _phone_has_digits(cls, value: str) -> str:
        if sum(ch.isdigit() for ch in value) < 8:
            raise ValueError("customer_phone must contain at least 8 digits")
        return value


class AppointmentCreate(_CustomerFields):
    """Book one service starting at ``start_at``."""

    service_id: str = Field(..., min_length=1, max_length=64)
    start_at: DateTimeType

    @field_validator("start_at")
    @classmethod
    def _aware(cls, value: DateTimeType) -> DateTimeType:
        return _require_aware(value)


class BatchAppointmentCreate(_CustomerFields):
    """Book several services back-to-back starting at ``start_at``, in the given order."""

    service_ids: List[str] = Field(..., min_length=1, max_length=10)
    start_at: DateTimeType

    @field_validator("start_at")
    @classmethod
    def _aware(cls, value: DateTimeType) -> DateTimeType:
        return _require_aware(value)

    @field_validator("service_ids")
    @classmethod
    def _non_blank(cls, ids: List[str]) -> List[str]:
        cleaned = [service_id.strip() for service_id in ids]
        if any(not service_id for service_id in cleaned):
            raise ValueError("service_ids cannot contain blank entries")
        return cleaned


class StaffAppointmentCreate(AppointmentCreate):
    """Staff booking on a customer's behalf; ``duration_minutes`` overrides the catalog."""

    duration_minutes: Optional[int] = Field(None, ge=1, le=720)


class AppointmentReschedule(StrictRequestModel):
    """Move an appointment; with only ``start_at`` the duration is kept."""

    start_at: Optional[DateTimeType] = None
    end_at: Optional[DateTimeType] = None
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("start_at", "end_at")
    @classmethod
    def _aware(cls, value: Optional[DateTimeType]) -> Optional[DateTimeType]:
        if value is None:
            return value
        if value.tzinfo is None or value.utcoffset() is None:
            raise ValueError("datetimes must include a timezone offset")
        return value

    @model_validator(mode="after")
    def _something_to_change(self) -> "AppointmentReschedule":
        if self.start_at is None and self.end_at is None and self.notes is None:
            raise ValueError("provide start_at, end_at or notes")
        return self


class PaymentPart(StrictRequestModel):
    method: PaymentMethod
    amount: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)


class CompleteAppointmentRequest(StrictRequestModel):
    received_amount: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    payments: List[PaymentPart] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _parts_sum_to_total(self) -> "CompleteAppointmentRequest":
        total = sum((part.amount for part in self.payments), Decimal("0"))
        if total != self.received_amount:
            raise ValueError(
                f"payment parts add up to {total}, expected {self.received_amount}"
            )
        return self


class LoyaltyAdjustRequest(StrictRequestModel):
    """Set a customer's loyalty points to an absolute value."""

    customer_phone: str = Field(..., min_length=8, max_length=32)
    points: int = Field(..., ge=0)


class LoyaltyAdjustResponse(StandardizedModel):
    customer_ref: str
    customer_phone: str
    loyalty_points: int


class PaymentResponse(StandardizedModel):
    method: str
    amount: Decimal


class AppointmentResponse(StandardizedModel):
    id: str
    service_id: str
    service_name: str
    service_duration_min: int
    service_price: Decimal
    start_at: DateTimeType
    end_at: DateTimeType
    status: str
    customer_name: str
    customer_phone: str
    customer_ref: Optional[str] = None
    notes: Optional[str] = None
    batch_id: Optional[str] = None
    received_amount: Optional[Decimal] = None
    payments: List[PaymentResponse] = Field(default_factory=list)

    @field_validator("start_at", "end_at")
    @classmethod
    def _as_utc(cls, value: DateTimeType) -> DateTimeType:
        # SQLite hands back naive values; everything is stored in UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=datetime.timezone.utc)
        return value.astimezone(datetime.timezone.utc)


class BatchAppointmentResponse(StandardizedModel):
    batch_id: Optional[str] = None
    appointments: List[AppointmentResponse]
    total_duration_min: int
    total_price: Decimal
