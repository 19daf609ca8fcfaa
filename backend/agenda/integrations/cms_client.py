"""Shared HTTP plumbing for the headless CMS (catalog, customers, settings)."""

from __future__ import annotations

import logging
from typing import Any, Optional, cast

import httpx
from pydantic import SecretStr

from ..core.exceptions import ExternalDependencyException

logger = logging.getLogger(__name__)


class CmsHttpClient:
    """Small synchronous JSON client for the CMS REST API."""

    dependency_name = "cms"

    def __init__(
        self,
        *,
        base_url: str,
        api_token: str | SecretStr | None = None,
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_token = (
            api_token.get_secret_value() if isinstance(api_token, SecretStr) else api_token
        )
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> Optional[dict[str, Any]]:
        """
        Perform a request and return the decoded JSON object.

        Transport errors and 5xx map to ExternalDependencyException. A 404
        returns None when ``allow_not_found`` is set.
        """
        url = f"{self._base_url}/{path.lstrip('/')}"
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.request(
                    method,
                    url,
                    headers=self._headers(),
                    json=json_body,
                    params=params,
                )
        except httpx.HTTPError as exc:
            logger.error("%s unreachable for %s %s: %s", self.dependency_name, method, path, exc)
            raise ExternalDependencyException(
                self.dependency_name, f"{self.dependency_name} unreachable: {exc}"
            ) from exc

        if response.status_code == 404 and allow_not_found:
            return None

        if response.status_code >= 400:
            logger.error(
                "%s error %s for %s %s: %s",
                self.dependency_name,
                response.status_code,
                method,
                path,
                response.text[:500],
            )
            raise ExternalDependencyException(
                self.dependency_name,
                f"{self.dependency_name} responded with {response.status_code}",
                details={"status_code": response.status_code},
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ExternalDependencyException(
                self.dependency_name, f"{self.dependency_name} returned invalid JSON"
            ) from exc
        if not isinstance(body, dict):
            raise ExternalDependencyException(
                self.dependency_name, f"{self.dependency_name} returned an unexpected payload"
            )
        return cast(dict[str, Any], body)
