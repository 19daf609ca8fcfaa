"""
Catalog integration: service definitions, promotions and message templates.

Responses are validated with the schemas in ``agenda.schemas.catalog``; a
service entry that does not parse is a ValidationException (the request
cannot be priced or timed), while an unreachable catalog or a listing
envelope that is not ``{"data": [...]}`` is an ExternalDependencyException.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Any, List, Optional, Protocol

from pydantic import ValidationError

from ..core.config import settings
from ..core.exceptions import ExternalDependencyException, NotFoundException, ValidationException
from ..schemas.catalog import CatalogList, CatalogPromotion, CatalogService, NotificationSettings
from .cms_client import CmsHttpClient

logger = logging.getLogger(__name__)


class CatalogProvider(Protocol):
    def get_service(self, service_id: str) -> CatalogService:
        ...

    def get_active_promotional_price(
        self, service_id: str, at: Optional[datetime] = None
    ) -> Optional[Decimal]:
        ...

    def get_notification_settings(self) -> Optional[NotificationSettings]:
        ...


class CatalogClient(CmsHttpClient):
    """HTTP catalog backed by the CMS REST API."""

    dependency_name = "catalog"

    def _list_items(self, body: Any, resource: str) -> List[Any]:
        try:
            return CatalogList.model_validate(body or {}).data
        except ValidationError as exc:
            logger.error("Catalog returned a malformed %s listing: %s", resource, exc)
            raise ExternalDependencyException(
                self.dependency_name,
                f"Catalog returned a malformed {resource} listing",
                details={"resource": resource},
            ) from exc

    def get_service(self, service_id: str) -> CatalogService:
        body = self._request(
            "GET",
            "services",
            params={"filters[id][$eq]": service_id, "populate": "*"},
        )
        items = self._list_items(body, "services")
        if not items:
            raise NotFoundException(f"Service {service_id} not found", code="SERVICE_NOT_FOUND")
        try:
            return CatalogService.model_validate(items[0])
        except ValidationError as exc:
            logger.warning("Catalog returned an invalid service %s: %s", service_id, exc)
            raise ValidationException(
                f"Service {service_id} is not bookable: catalog data is incomplete",
                code="INVALID_SERVICE_DEFINITION",
                details={"service_id": service_id, "errors": exc.errors(include_url=False)},
            ) from exc

    def get_active_promotional_price(
        self, service_id: str, at: Optional[datetime] = None
    ) -> Optional[Decimal]:
        instant = at or datetime.now(timezone.utc)
        body = self._request(
            "GET",
            "promotions",
            params={
                "filters[active][$eq]": "true",
                "filters[service][id][$eq]": service_id,
                "populate": "service",
            },
        )
        for raw in self._list_items(body, "promotions"):
            try:
                promotion = CatalogPromotion.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Ignoring malformed promotion for service %s: %s", service_id, exc)
                continue
            if promotion.service_id not in (None, str(service_id)):
                continue
            if promotion.is_active_at(instant):
                return promotion.promotional_price
        return None

    def get_notification_settings(self) -> Optional[NotificationSettings]:
        body = self._request("GET", "notification-setting", allow_not_found=True)
        if not body or not body.get("data"):
            return None
        try:
            return NotificationSettings.model_validate(body["data"])
        except ValidationError as exc:
            logger.warning("Invalid notification settings payload: %s", exc)
            return None


def build_catalog_client() -> CatalogClient:
    return CatalogClient(
        base_url=settings.catalog_base_url,
        api_token=settings.catalog_api_token,
        timeout=settings.catalog_timeout_seconds,
    )
