"""Outbound bus messages and the rules deciding which ones an event produces."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from auditguard.core.constants import BusTopic
from auditguard.core.models import AuditEvent, utc_now


class BusMessage(BaseModel):
    message_id: str = Field(default_factory=lambda: uuid4().hex)
    topic: BusTopic
    payload: dict[str, Any] = Field(default_factory=dict)
    published_at: datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}


def event_recorded_payload(event: AuditEvent) -> dict[str, Any]:
    return {
        "id": event.event_id,
        "event_type": event.event_type,
        "subject_id": event.subject_id,
        "risk_score": event.risk_score,
        "compliance_flags": [flag.value for flag in event.compliance_flags],
        "timestamp": event.timestamp.isoformat(),
    }


def threat_detected_payload(event: AuditEvent) -> dict[str, Any]:
    level = event.threat_level
    return {
        "id": event.event_id,
        "threat_level": level.value if level is not None else event.severity.value,
        "subject_id": event.subject_id,
        "timestamp": event.timestamp.isoformat(),
    }


def compliance_event_payload(event: AuditEvent) -> dict[str, Any]:
    return {
        "id": event.event_id,
        "compliance_flags": [flag.value for flag in event.compliance_flags],
        "timestamp": event.timestamp.isoformat(),
    }


def messages_for(event: AuditEvent) -> list[BusMessage]:
    """Messages owed for a finalized event.

    ``audit_event_recorded`` is always produced;
    ``security_threat_detected`` only when the event requires an immediate
    alert; ``compliance_event_recorded`` only when it carries compliance flags.
    """
    messages = [
        BusMessage(topic=BusTopic.AUDIT_EVENT_RECORDED, payload=event_recorded_payload(event))
    ]
    if event.requires_immediate_alert():
        messages.append(
            BusMessage(
                topic=BusTopic.SECURITY_THREAT_DETECTED,
                payload=threat_detected_payload(event),
            )
        )
    if event.compliance_flags:
        messages.append(
            BusMessage(
                topic=BusTopic.COMPLIANCE_EVENT_RECORDED,
                payload=compliance_event_payload(event),
            )
        )
    return messages
