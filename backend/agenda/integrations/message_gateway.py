"""
Outbound messaging gateway (WhatsApp bridge).

The gateway is a small HTTP service that owns the messaging session. Transient
problems (network, 5xx, 429) raise MessageGatewayTemporaryError so the job
dispatcher retries with backoff. A 4xx is a permanent refusal and comes back
as a failed result.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Optional, Protocol

import httpx
from pydantic import SecretStr

from ..core.config import settings

logger = logging.getLogger(__name__)


class MessageGatewayTemporaryError(RuntimeError):
    """Raised for failures worth retrying."""


@dataclass(slots=True)
class MessageSendResult:
    success: bool
    reason: Optional[str] = None
    message_id: Optional[str] = None


class MessageSender(Protocol):
    def send(
        self,
        phone: str,
        message: str,
        *,
        location: Optional[dict[str, Any]] = None,
        attachment: Optional[dict[str, Any]] = None,
    ) -> MessageSendResult:
        ...


class MessageGatewayClient:
    def __init__(
        self,
        *,
        base_url: str,
        api_token: str | SecretStr | None = None,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_token = (
            api_token.get_secret_value() if isinstance(api_token, SecretStr) else api_token
        )
        self._timeout = timeout
        self._transport = transport

    def send(
        self,
        phone: str,
        message: str,
        *,
        location: Optional[dict[str, Any]] = None,
        attachment: Optional[dict[str, Any]] = None,
    ) -> MessageSendResult:
        payload: dict[str, Any] = {"phone": phone, "message": message}
        if location:
            payload["location"] = location
        if attachment:
            payload["attachment"] = attachment

        headers = {"Content-Type": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"

        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(f"{self._base_url}/send", json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Message gateway unreachable: %s", exc)
            raise MessageGatewayTemporaryError(str(exc)) from exc

        if response.status_code >= 500 or response.status_code == 429:
            raise MessageGatewayTemporaryError(f"gateway responded with {response.status_code}")
        if response.status_code >= 400:
            reason = response.text[:200] or f"status {response.status_code}"
            logger.warning("Message gateway refused message to %s: %s", phone, reason)
            return MessageSendResult(success=False, reason=reason)

        try:
            body = response.json()
        except ValueError:
            body = {}
        message_id = body.get("id") if isinstance(body, dict) else None
        return MessageSendResult(success=True, message_id=message_id)


def build_message_gateway() -> MessageGatewayClient:
    return MessageGatewayClient(
        base_url=settings.message_gateway_url,
        api_token=settings.message_gateway_token,
    )
