"""Bus subscribers: in-memory, structlog and signed webhooks."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
from abc import ABC, abstractmethod
from collections import deque

import httpx
import structlog

from auditguard.bus.messages import BusMessage
from auditguard.core.constants import BusTopic

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-AuditGuard-Signature"
TOPIC_HEADER = "X-AuditGuard-Topic"

_WARNING_TOPICS = frozenset(
    {
        BusTopic.SECURITY_THREAT_DETECTED,
        BusTopic.AUDIT_INTEGRITY_FAILURE,
        BusTopic.AUDIT_STORAGE_FAILURE,
    }
)


class Subscriber(ABC):
    """Base class for bus subscribers."""

    @abstractmethod
    async def deliver(self, message: BusMessage) -> bool:
        """Handle *message*.  Return ``True`` on success, ``False`` on failure."""
        ...


class InMemorySubscriber(Subscriber):
    """Keeps the most recent messages in a bounded buffer.

    Args:
        max_messages: Maximum number of messages retained (default 1000).
    """

    def __init__(self, max_messages: int = 1000) -> None:
        self._messages: deque[BusMessage] = deque(maxlen=max_messages)

    async def deliver(self, message: BusMessage) -> bool:
        self._messages.append(message)
        return True

    @property
    def messages(self) -> list[BusMessage]:
        """All retained messages, oldest first."""
        return list(self._messages)

    def by_topic(self, topic: BusTopic) -> list[BusMessage]:
        return [m for m in self._messages if m.topic == topic]

    def clear(self) -> None:
        self._messages.clear()


class LogSubscriber(Subscriber):
    """Logs messages via structlog; threats and operational failures at warning level."""

    async def deliver(self, message: BusMessage) -> bool:
        log_fn = logger.warning if message.topic in _WARNING_TOPICS else logger.info
        log_fn(
            "bus_message",
            topic=message.topic.value,
            message_id=message.message_id,
            **message.payload,
        )
        return True


def sign_body(body: bytes, secret: str) -> str:
    """HMAC-SHA256 hex digest of a webhook body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class WebhookSubscriber(Subscriber):
    """POSTs each message as JSON, optionally signed with a shared secret.

    Args:
        url: Destination URL.
        secret: When set, ``X-AuditGuard-Signature`` carries the HMAC-SHA256
            of the raw body.
        headers: Extra request headers.
        http_client: Shared client; one is created per delivery otherwise.
        timeout_seconds: Per-request timeout.
        max_retries: Additional attempts after a failed one.
        backoff_base: First backoff delay in seconds; doubles each retry.
    """

    def __init__(
        self,
        url: str,
        *,
        secret: str | None = None,
        headers: dict[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
        max_retries: int = 0,
        backoff_base: float = 1.0,
    ) -> None:
        self._url = url
        self._secret = secret
        self._headers = headers or {}
        self._http_client = http_client
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._backoff_base = backoff_base

    def _request_headers(self, message: BusMessage, body: bytes) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            TOPIC_HEADER: message.topic.value,
            **self._headers,
        }
        if self._secret:
            headers[SIGNATURE_HEADER] = sign_body(body, self._secret)
        return headers

    async def deliver(self, message: BusMessage) -> bool:
        body = json.dumps(message.model_dump(mode="json"), sort_keys=True).encode("utf-8")
        headers = self._request_headers(message, body)

        should_close = False
        client = self._http_client
        if client is None:
            client = httpx.AsyncClient()
            should_close = True

        try:
            for attempt in range(self._max_retries + 1):
                try:
                    response = await client.post(
                        self._url, content=body, headers=headers, timeout=self._timeout
                    )
                    if 200 <= response.status_code < 300:
                        return True
                    logger.warning(
                        "webhook_delivery_failed",
                        url=self._url,
                        topic=message.topic.value,
                        status=response.status_code,
                        attempt=attempt + 1,
                    )
                except httpx.HTTPError as exc:
                    logger.warning(
                        "webhook_delivery_error",
                        url=self._url,
                        topic=message.topic.value,
                        error=str(exc),
                        attempt=attempt + 1,
                    )
                if attempt < self._max_retries:
                    await asyncio.sleep(self._backoff_base * 2**attempt)
            return False
        finally:
            if should_close:
                await client.aclose()
