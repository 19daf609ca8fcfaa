"""Customer / loyalty store integration."""

from __future__ import annotations

import logging
import re
from typing import Optional, Protocol

from pydantic import ValidationError

from ..core.config import settings
from ..core.exceptions import ExternalDependencyException
from ..schemas.catalog import CatalogList, CustomerRecord
from .cms_client import CmsHttpClient

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str) -> str:
    """Digits only; the store keys customers on this form."""
    return _NON_DIGITS.sub("", phone or "")


class CustomerStore(Protocol):
    def find_by_phone(self, phone: str) -> Optional[CustomerRecord]:
        ...

    def create(self, *, name: str, phone: str) -> CustomerRecord:
        ...

    def adjust_loyalty(
        self, customer_ref: str, *, delta: Optional[int] = None, absolute: Optional[int] = None
    ) -> CustomerRecord:
        ...


class CustomerClient(CmsHttpClient):
    dependency_name = "customer_store"

    def _parse(self, raw: object) -> CustomerRecord:
        try:
            return CustomerRecord.model_validate(raw)
        except ValidationError as exc:
            raise ExternalDependencyException(
                self.dependency_name, "customer store returned an invalid record"
            ) from exc

    def find_by_phone(self, phone: str) -> Optional[CustomerRecord]:
        body = self._request("GET", "clients", params={"filters[phone][$eq]": normalize_phone(phone)})
        items = CatalogList.model_validate(body or {}).data
        if not items:
            return None
        return self._parse(items[0])

    def get(self, customer_ref: str) -> CustomerRecord:
        body = self._request("GET", f"clients/{customer_ref}")
        return self._parse((body or {}).get("data"))

    def create(self, *, name: str, phone: str) -> CustomerRecord:
        body = self._request(
            "POST",
            "clients",
            json_body={
                "data": {
                    "name": name,
                    "phone": normalize_phone(phone),
                    "loyaltyPoints": 0,
                }
            },
        )
        return self._parse((body or {}).get("data"))

    def adjust_loyalty(
        self, customer_ref: str, *, delta: Optional[int] = None, absolute: Optional[int] = None
    ) -> CustomerRecord:
        """
        Change loyalty points by ``delta`` or set them to ``absolute``.

        Points never go below zero.
        """
        if (delta is None) == (absolute is None):
            raise ValueError("Pass exactly one of delta or absolute")
        if absolute is None:
            current = self.get(customer_ref).loyalty_points
            target = max(0, current + (delta or 0))
        else:
            target = max(0, absolute)
        body = self._request(
            "PUT",
            f"clients/{customer_ref}",
            json_body={"data": {"loyaltyPoints": target}},
        )
        logger.info("Loyalty for %s set to %s", customer_ref, target)
        return self._parse((body or {}).get("data"))


def build_customer_client() -> CustomerClient:
    return CustomerClient(
        base_url=settings.customer_store_url,
        api_token=settings.customer_store_token,
        timeout=settings.catalog_timeout_seconds,
    )
