# backend/agenda/schemas/catalog.py
"""
Boundary schemas for catalog (CMS) payloads.

The CMS answers either in the nested shape (``{"id": 1, "attributes": {...}}``)
or flat (``{"id": 1, "name": ...}``). Both are accepted, but required fields
must actually be present: a service without a positive duration is a parse
error, never a silent zero.
"""

import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


def _unwrap_attributes(value: Any) -> Any:
    if isinstance(value, dict) and isinstance(value.get("attributes"), dict):
        flattened = dict(value["attributes"])
        for key in ("id", "documentId"):
            if key in value and key not in flattened:
                flattened[key] = value[key]
        return flattened
    return value


class _CatalogModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _flatten(cls, value: Any) -> Any:
        return _unwrap_attributes(value)


class CatalogService(_CatalogModel):
    """Catalog service as snapshotted onto appointments."""

    id: str
    name: str = Field(..., min_length=1, validation_alias=AliasChoices("name", "title"))
    duration_minutes: int = Field(
        ..., gt=0, validation_alias=AliasChoices("durationMinutes", "duration", "duration_minutes")
    )
    price: Decimal = Field(..., ge=0)
    cost_basis: Optional[Decimal] = Field(
        None, ge=0, validation_alias=AliasChoices("costBasis", "cost_basis")
    )

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        if value is None or value == "":
            raise ValueError("service id is required")
        return str(value)


class CatalogPromotion(_CatalogModel):
    id: Optional[str] = None
    service_id: Optional[str] = None
    start_date: datetime.datetime = Field(..., validation_alias=AliasChoices("startDate", "start_date"))
    end_date: datetime.datetime = Field(..., validation_alias=AliasChoices("endDate", "end_date"))
    promotional_price: Decimal = Field(
        ..., ge=0, validation_alias=AliasChoices("promotionalPrice", "promotional_price")
    )

    @model_validator(mode="before")
    @classmethod
    def _extract_service(cls, value: Any) -> Any:
        value = _unwrap_attributes(value)
        if isinstance(value, dict) and "service_id" not in value:
            service = value.get("service")
            if isinstance(service, dict):
                service = service.get("data", service)
            if isinstance(service, dict) and service.get("id") is not None:
                value = {**value, "service_id": str(service["id"])}
        if isinstance(value, dict) and value.get("id") is not None:
            value = {**value, "id": str(value["id"])}
        return value

    def is_active_at(self, instant: datetime.datetime) -> bool:
        start = self.start_date
        end = self.end_date
        if start.tzinfo is None:
            start = start.replace(tzinfo=datetime.timezone.utc)
        if end.tzinfo is None:
            end = end.replace(tzinfo=datetime.timezone.utc)
        return start <= instant <= end


class NotificationSettings(_CatalogModel):
    confirmation_message_template: str = Field(
        "",
        validation_alias=AliasChoices("confirmationMessageTemplate", "confirmation_message_template"),
    )
    reminder_message_template: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("reminderMessageTemplate", "reminder_message_template"),
    )
    business_name: str = Field("", validation_alias=AliasChoices("businessName", "business_name"))

    @field_validator("confirmation_message_template", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("reminder_message_template", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class CustomerRecord(_CatalogModel):
    id: str
    document_id: Optional[str] = Field(None, validation_alias=AliasChoices("documentId", "document_id"))
    name: str = ""
    phone: str
    loyalty_points: int = Field(0, ge=0, validation_alias=AliasChoices("loyaltyPoints", "loyalty_points"))

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        if value is None or value == "":
            raise ValueError("customer id is required")
        return str(value)

    @field_validator("loyalty_points", mode="before")
    @classmethod
    def _null_points(cls, value: Any) -> Any:
        return 0 if value is None else value

    @property
    def ref(self) -> str:
        """Identifier the CMS expects on item URLs."""
        return self.document_id or self.id


class CatalogList(BaseModel):
    """``{"data": [...]}`` envelope."""

    model_config = ConfigDict(extra="ignore")

    data: List[Any] = Field(default_factory=list)
