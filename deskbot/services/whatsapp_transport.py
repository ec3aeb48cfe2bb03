"""Delivery transports used by the outbox worker."""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from deskbot.logging_config import get_logger, mask_phone

logger = get_logger("whatsapp_transport")


@dataclass
class SendResult:
    ok: bool
    remote_id: Optional[str] = None
    error: Optional[str] = None

    @staticmethod
    def success(remote_id: str) -> "SendResult":
        return SendResult(ok=True, remote_id=remote_id)

    @staticmethod
    def failure(error: str) -> "SendResult":
        return SendResult(ok=False, error=error)


class WhatsAppTransport(ABC):
    @abstractmethod
    async def send(
        self,
        recipient: str,
        payload: dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> SendResult:
        """Deliver one message. Failures are returned, not raised."""

    async def aclose(self) -> None:
        return None


class MockTransport(WhatsAppTransport):
    """Records every send; ``fail_next`` scripts failures for the next N calls."""

    def __init__(self, fail_next: int = 0, error: str = "Simulated network error"):
        self.sent: list[dict[str, Any]] = []
        self.calls = 0
        self.fail_next = fail_next
        self.error = error

    async def send(
        self,
        recipient: str,
        payload: dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> SendResult:
        self.calls += 1
        if self.fail_next > 0:
            self.fail_next -= 1
            logger.warning(
                "Mock send failed",
                extra={"context": {"recipient": mask_phone(recipient), "idempotency_key": idempotency_key}},
            )
            return SendResult.failure(self.error)

        remote_id = f"mock-{uuid.uuid4()}"
        self.sent.append(
            {"recipient": recipient, "payload": payload, "idempotency_key": idempotency_key, "remote_id": remote_id}
        )
        logger.info(
            "Mock send",
            extra={
                "context": {
                    "recipient": mask_phone(recipient),
                    "type": payload.get("type"),
                    "remote_id": remote_id,
                    "idempotency_key": idempotency_key,
                }
            },
        )
        return SendResult.success(remote_id)


class CloudTransport(WhatsAppTransport):
    """Meta WhatsApp Cloud API (``POST /{phone_number_id}/messages``)."""

    def __init__(
        self,
        token: str,
        phone_number_id: str,
        api_version: str = "v20.0",
        timeout_seconds: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.token = token
        self.phone_number_id = phone_number_id
        self.base_url = f"https://graph.facebook.com/{api_version}/{phone_number_id}/messages"
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    @staticmethod
    def _normalize_recipient(recipient: str) -> str:
        return recipient.lstrip("+").replace(" ", "")

    async def send(
        self,
        recipient: str,
        payload: dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> SendResult:
        body = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": self._normalize_recipient(recipient),
            **payload,
        }
        try:
            response = await self._client.post(
                self.base_url,
                headers={"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"},
                json=body,
            )
        except httpx.HTTPError as e:
            logger.error(
                "WhatsApp send error",
                extra={"context": {"recipient": mask_phone(recipient), "error": str(e), "idempotency_key": idempotency_key}},
            )
            return SendResult.failure(f"{type(e).__name__}: {e}")

        if response.status_code >= 300:
            logger.error(
                "WhatsApp send rejected",
                extra={
                    "context": {
                        "recipient": mask_phone(recipient),
                        "status": response.status_code,
                        "body": response.text[:500],
                        "idempotency_key": idempotency_key,
                    }
                },
            )
            return SendResult.failure(f"HTTP {response.status_code}: {response.text[:300]}")

        data = response.json()
        messages = data.get("messages") or []
        remote_id = messages[0].get("id") if messages else None
        if not remote_id:
            return SendResult.failure("Cloud API response without message id")
        return SendResult.success(remote_id)

    async def aclose(self) -> None:
        await self._client.aclose()


def build_transport(settings) -> WhatsAppTransport:
    if settings.whatsapp_driver == "cloud":
        if not settings.whatsapp_token or not settings.whatsapp_phone_number_id:
            raise ValueError("WHATSAPP_TOKEN and WHATSAPP_PHONE_NUMBER_ID are required for the cloud driver")
        return CloudTransport(
            token=settings.whatsapp_token,
            phone_number_id=settings.whatsapp_phone_number_id,
            api_version=settings.whatsapp_api_version,
            timeout_seconds=settings.outbox_send_timeout_seconds,
        )
    return MockTransport()
