"""Shared test fixtures."""
from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import pytest

from auditguard.classification.classifier import EventClassifier
from auditguard.core.models import AuditEvent, EventContext, GeoLocation, Subject
from auditguard.crypto.keys import StaticSecretsProvider
from auditguard.crypto.signer import EventSigner

FIXED_NOW = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
SIGNING_SECRET = b"unit-test-signing-secret-0123456789"


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def secrets_provider() -> StaticSecretsProvider:
    return StaticSecretsProvider("k1", SIGNING_SECRET)


@pytest.fixture
def signer(secrets_provider: StaticSecretsProvider, clock: Callable[[], datetime]) -> EventSigner:
    return EventSigner(secrets_provider, clock=clock)


@pytest.fixture
def make_event() -> Callable[..., AuditEvent]:
    """Factory for classified events at a fixed time."""
    classifier = EventClassifier()

    def _make(
        event_type: str = "user_login",
        *,
        subject_id: str | None = "u-1",
        role: str | None = None,
        details: dict[str, Any] | None = None,
        timestamp: datetime = FIXED_NOW,
        geolocation: GeoLocation | None = None,
        device_fingerprint: str | None = None,
        session_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditEvent:
        subject = Subject(subject_id=subject_id, role=role) if subject_id else None
        context = EventContext(
            session_id=session_id,
            ip_address=ip_address,
            user_agent=user_agent,
            geolocation=geolocation,
            device_fingerprint=device_fingerprint,
        )
        return classifier.classify(
            event_type, subject, details or {}, context, timestamp=timestamp
        )

    return _make
