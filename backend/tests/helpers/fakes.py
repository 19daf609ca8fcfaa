"""
In-memory stand-ins for the external collaborators.

Each fake implements the same protocol the services depend on
(CatalogProvider, CustomerStore, MessageSender) and records what it was asked
to do so tests can assert on it.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from agenda.core.exceptions import ExternalDependencyException, NotFoundException
from agenda.integrations.customer_client import normalize_phone
from agenda.integrations.message_gateway import MessageGatewayTemporaryError, MessageSendResult
from agenda.schemas.catalog import CatalogService, CustomerRecord, NotificationSettings


class FakeCatalog:
    def __init__(self) -> None:
        self.services: Dict[str, CatalogService] = {}
        self.promotions: Dict[str, Decimal] = {}
        self.notification_settings: Optional[NotificationSettings] = None
        self.settings_calls = 0
        self.promotion_calls = 0
        self.fail_with: Optional[Exception] = None

    def add_service(
        self, service_id: str, name: str, duration_minutes: int, price: Decimal
    ) -> CatalogService:
        service = CatalogService(
            id=service_id, name=name, duration_minutes=duration_minutes, price=price
        )
        self.services[service_id] = service
        return service

    def set_templates(self, confirmation: str = "", reminder: Optional[str] = None) -> None:
        self.notification_settings = NotificationSettings(
            confirmation_message_template=confirmation,
            reminder_message_template=reminder,
        )

    def get_service(self, service_id: str) -> CatalogService:
        if self.fail_with is not None:
            raise self.fail_with
        try:
            return self.services[service_id]
        except KeyError:
            raise NotFoundException(f"Service {service_id} not found", code="SERVICE_NOT_FOUND")

    def get_active_promotional_price(
        self, service_id: str, at: Optional[datetime] = None
    ) -> Optional[Decimal]:
        self.promotion_calls += 1
        return self.promotions.get(service_id)

    def get_notification_settings(self) -> Optional[NotificationSettings]:
        self.settings_calls += 1
        return self.notification_settings


class FakeCustomerStore:
    def __init__(self) -> None:
        self.records: Dict[str, CustomerRecord] = {}
        self.fail = False
        self.loyalty_calls: List[Dict[str, Any]] = []
        self._next_id = 1

    def _check(self) -> None:
        if self.fail:
            raise ExternalDependencyException("customer_store", "customer store unreachable")

    def seed(self, *, name: str, phone: str, points: int = 0) -> CustomerRecord:
        record = CustomerRecord(
            id=str(self._next_id),
            document_id=f"doc-{self._next_id}",
            name=name,
            phone=normalize_phone(phone),
            loyalty_points=points,
        )
        self._next_id += 1
        self.records[record.phone] = record
        return record

    def points_for(self, phone: str) -> Optional[int]:
        record = self.records.get(normalize_phone(phone))
        return None if record is None else record.loyalty_points

    def find_by_phone(self, phone: str) -> Optional[CustomerRecord]:
        self._check()
        return self.records.get(normalize_phone(phone))

    def create(self, *, name: str, phone: str) -> CustomerRecord:
        self._check()
        return self.seed(name=name, phone=phone)

    def adjust_loyalty(
        self, customer_ref: str, *, delta: Optional[int] = None, absolute: Optional[int] = None
    ) -> CustomerRecord:
        self._check()
        self.loyalty_calls.append({"ref": customer_ref, "delta": delta, "absolute": absolute})
        for phone, record in self.records.items():
            if record.ref == customer_ref:
                target = absolute if absolute is not None else record.loyalty_points + (delta or 0)
                updated = record.model_copy(update={"loyalty_points": max(0, target)})
                self.records[phone] = updated
                return updated
        raise NotFoundException(f"Customer {customer_ref} not found")


class FakeMessageSender:
    """Outcome is one of ``ok``, ``refused`` or ``temporary``."""

    def __init__(self, outcome: str = "ok") -> None:
        self.outcome = outcome
        self.sent: List[Dict[str, Any]] = []

    def send(
        self,
        phone: str,
        message: str,
        *,
        location: Optional[Dict[str, Any]] = None,
        attachment: Optional[Dict[str, Any]] = None,
    ) -> MessageSendResult:
        if self.outcome == "temporary":
            raise MessageGatewayTemporaryError("gateway responded with 503")
        if self.outcome == "refused":
            return MessageSendResult(success=False, reason="invalid number")
        self.sent.append(
            {"phone": phone, "message": message, "location": location, "attachment": attachment}
        )
        return MessageSendResult(success=True, message_id=f"msg-{len(self.sent)}")
