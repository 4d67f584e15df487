from auditguard.bus.event_bus import EventBus
from auditguard.bus.messages import BusMessage, messages_for
from auditguard.bus.subscribers import (
    SIGNATURE_HEADER,
    InMemorySubscriber,
    LogSubscriber,
    Subscriber,
    WebhookSubscriber,
    sign_body,
)

__all__ = [
    "SIGNATURE_HEADER",
    "BusMessage",
    "EventBus",
    "InMemorySubscriber",
    "LogSubscriber",
    "Subscriber",
    "WebhookSubscriber",
    "messages_for",
    "sign_body",
]
