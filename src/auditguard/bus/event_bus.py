"""Topic-based fan-out to bus subscribers."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog

from auditguard.bus.messages import BusMessage
from auditguard.bus.subscribers import Subscriber
from auditguard.core.constants import BusTopic

logger = structlog.get_logger(__name__)


class EventBus:
    """Delivers messages to every subscriber registered for their topic.

    Subscriber failures are logged but never propagated to the publisher.

    Uses a builder-style API::

        bus = (
            EventBus()
            .subscribe(LogSubscriber())
            .subscribe(WebhookSubscriber(url, secret=s), [BusTopic.SECURITY_THREAT_DETECTED])
        )
    """

    def __init__(self) -> None:
        self._subscriptions: list[tuple[Subscriber, frozenset[BusTopic] | None]] = []

    def subscribe(
        self, subscriber: Subscriber, topics: Iterable[BusTopic] | None = None
    ) -> EventBus:
        """Register *subscriber* for *topics* (all topics when ``None``)."""
        self._subscriptions.append(
            (subscriber, frozenset(topics) if topics is not None else None)
        )
        return self

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, message: BusMessage) -> int:
        """Deliver *message*.  Returns the number of successful deliveries."""
        delivered = 0
        for subscriber, topics in self._subscriptions:
            if topics is not None and message.topic not in topics:
                continue
            try:
                if await subscriber.deliver(message):
                    delivered += 1
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "bus_subscriber_error",
                    subscriber=type(subscriber).__name__,
                    topic=message.topic.value,
                    message_id=message.message_id,
                    error=str(exc),
                )
        return delivered

    async def emit(self, topic: BusTopic, payload: dict[str, Any]) -> BusMessage:
        """Build and publish a message on *topic*."""
        message = BusMessage(topic=topic, payload=payload)
        await self.publish(message)
        return message
