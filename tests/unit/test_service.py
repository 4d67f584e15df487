"""End-to-end tests for AuditService."""
from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest

from auditguard.bus.event_bus import EventBus
from auditguard.bus.subscribers import InMemorySubscriber
from auditguard.core.config import EngineConfig
from auditguard.core.constants import BusTopic, ThreatType
from auditguard.core.exceptions import (
    ConfigurationError,
    SignatureMismatchError,
    StorageFailureError,
)
from auditguard.core.models import (
    AuditEvent,
    BehavioralBaseline,
    EventContext,
    GeoLocation,
    Subject,
)
from auditguard.crypto.keys import SecretsProvider, SigningKey, StaticSecretsProvider
from auditguard.service import AuditService
from auditguard.stores.audit import InMemoryAuditStore
from auditguard.stores.baseline import InMemoryBaselineProvider
from auditguard.stores.query import AuditQuery, QueryPage

NOW = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
SECRET = b"unit-test-signing-secret-0123456789"
ORIGIN = GeoLocation(country_code="US", latitude=0.0, longitude=0.0)
FAR = GeoLocation(country_code="BR", latitude=0.0, longitude=17.9865)


class _UnavailableSecrets(SecretsProvider):
    def active_key(self) -> SigningKey:
        raise ConfigurationError("key vault unreachable", code="MISSING_SIGNING_KEY")

    def get_key(self, key_id: str) -> SigningKey | None:
        return None


class _FailingStore(InMemoryAuditStore):
    async def append(self, event: AuditEvent) -> None:
        raise StorageFailureError("primary store offline")


class _TimingOutStore(InMemoryAuditStore):
    def __init__(self) -> None:
        super().__init__()
        self.attempts = 0

    async def append(self, event: AuditEvent) -> None:
        self.attempts += 1
        raise TimeoutError("primary store timed out")


class _SlowQueryStore(InMemoryAuditStore):
    """Holds every query open until ``release`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.query_started = asyncio.Event()
        self.release = asyncio.Event()

    async def query(self, query: AuditQuery) -> QueryPage:
        page = await super().query(query)
        self.query_started.set()
        await self.release.wait()
        return page


@pytest.fixture
def sink() -> InMemorySubscriber:
    return InMemorySubscriber()


@pytest.fixture
def baselines(clock: Callable[[], datetime]) -> InMemoryBaselineProvider:
    return InMemoryBaselineProvider(clock=clock)


@pytest.fixture
def service(
    secrets_provider: StaticSecretsProvider,
    sink: InMemorySubscriber,
    baselines: InMemoryBaselineProvider,
    clock: Callable[[], datetime],
) -> AuditService:
    return AuditService(
        secrets=secrets_provider,
        baseline_provider=baselines,
        bus=EventBus().subscribe(sink),
        clock=clock,
    )


# ---------------------------------------------------------------------------
# record_event
# ---------------------------------------------------------------------------


async def test_failed_login_scenario(service: AuditService, sink: InMemorySubscriber) -> None:
    result = await service.record_event(
        "failed_authentication",
        Subject(subject_id="u-1"),
        {"username": "alice", "password": "hunter2"},
    )
    assert result.success is True
    assert result.error is None
    event = result.event
    assert event is not None
    assert event.version == 5
    assert event.risk_score == pytest.approx(0.28)
    assert event.details["password"] == "[REDACTED]"
    assert event.timestamp == NOW
    assert service.verify_event(event) is True

    assert await service.store.get(event.event_id) == event
    assert [m.topic for m in sink.messages] == [BusTopic.AUDIT_EVENT_RECORDED]
    assert sink.messages[0].payload["risk_score"] == pytest.approx(0.28)


async def test_invalid_input_is_rejected_without_tripping_breaker(
    service: AuditService,
) -> None:
    for _ in range(service.config.failure_threshold + 1):
        result = await service.record_event("", Subject(subject_id="u-1"), {})
        assert result.success is False
        assert result.error_code == "INVALID_EVENT"
    missing = await service.record_event("user_login", Subject(subject_id="u-1"), None)
    assert missing.error_code == "INVALID_EVENT"
    assert service.circuit_breaker.state == "closed"
    assert len(await service.store.all()) == 0


async def test_mapping_inputs_are_coerced(service: AuditService) -> None:
    result = await service.record_event(
        "user_login",
        {"subject_id": "u-7", "role": "admin"},
        {},
        {"session_id": "s-1", "geolocation": {"country_code": "US", "latitude": 1, "longitude": 2}},
    )
    assert result.success is True
    assert result.event is not None
    assert result.event.subject_role == "admin"
    assert result.event.geolocation == GeoLocation(country_code="US", latitude=1, longitude=2)


async def test_malformed_context_is_invalid(service: AuditService) -> None:
    result = await service.record_event(
        "user_login",
        {"subject_id": "u-1"},
        {},
        {"geolocation": {"country_code": "US", "latitude": 200, "longitude": 0}},
    )
    assert result.success is False
    assert result.error_code == "INVALID_EVENT"


async def test_compliance_event_is_published(
    service: AuditService, sink: InMemorySubscriber
) -> None:
    result = await service.record_event("data_exported", Subject(subject_id="u-1"), {"rows": 5})
    assert result.success is True
    compliance = sink.by_topic(BusTopic.COMPLIANCE_EVENT_RECORDED)
    assert len(compliance) == 1
    assert "gdpr_personal_data" in compliance[0].payload["compliance_flags"]
    regulations = result.event.metadata["compliance_classification"]["applicable_regulations"]
    assert regulations == ["CCPA", "GDPR"]


async def test_privilege_escalation_raises_threat(
    service: AuditService, sink: InMemorySubscriber
) -> None:
    result = await service.record_event(
        "privilege_escalation", Subject(subject_id="u-1", role="viewer"), {}
    )
    assert result.success is True
    threats = sink.by_topic(BusTopic.SECURITY_THREAT_DETECTED)
    assert len(threats) == 1
    assert threats[0].payload["threat_level"] == "high"
    assert threats[0].payload["subject_id"] == "u-1"


async def test_impossible_travel(service: AuditService, sink: InMemorySubscriber) -> None:
    first = await service.record_event(
        "user_login",
        Subject(subject_id="u-1"),
        {},
        EventContext(geolocation=ORIGIN),
        timestamp=NOW - timedelta(minutes=10),
    )
    assert first.success is True
    assert sink.by_topic(BusTopic.SECURITY_THREAT_DETECTED) == []

    second = await service.record_event(
        "user_login",
        Subject(subject_id="u-1"),
        {},
        EventContext(geolocation=FAR),
        timestamp=NOW,
    )
    assert second.success is True
    indicators = second.event.all_threat_indicators
    assert [i.indicator_type for i in indicators] == [ThreatType.IMPOSSIBLE_TRAVEL]
    assert indicators[0].evidence["previous_event_id"] == first.event.event_id
    assert len(sink.by_topic(BusTopic.SECURITY_THREAT_DETECTED)) == 1


async def test_baseline_drives_geographic_factor(
    service: AuditService, baselines: InMemoryBaselineProvider
) -> None:
    baselines.seed(
        BehavioralBaseline(
            subject_id="u-1",
            avg_events_per_hour=1.0,
            typical_event_types=("user_login",),
            typical_hours=(10,),
            typical_locations=("US",),
            known_devices=("laptop",),
            event_count=200,
        )
    )
    home = await service.record_event(
        "user_login",
        Subject(subject_id="u-1"),
        {},
        EventContext(geolocation=ORIGIN, device_fingerprint="laptop"),
    )
    away = await service.record_event(
        "user_login",
        Subject(subject_id="u-2"),
        {},
        EventContext(geolocation=ORIGIN, device_fingerprint="laptop"),
    )
    home_factors = home.event.metadata["security_analysis"]["risk_factors"]
    away_factors = away.event.metadata["security_analysis"]["risk_factors"]
    assert home_factors["geographic"] == 0.1
    assert home_factors["device"] == 0.1
    assert away_factors["geographic"] == 0.7
    assert away_factors["device"] == 0.8
    assert away_factors["behavioral"] == 0.5
    assert home.event.risk_score < away.event.risk_score


async def test_activity_feeds_baseline_refresh(
    service: AuditService, baselines: InMemoryBaselineProvider
) -> None:
    await service.record_event("user_login", Subject(subject_id="u-1"), {})
    await service.record_event("data_accessed", Subject(subject_id="u-1"), {})
    baseline = await baselines.refresh("u-1")
    assert baseline.event_count == 2
    assert set(baseline.typical_event_types) == {"user_login", "data_accessed"}


async def test_storage_fallback(
    secrets_provider: StaticSecretsProvider,
    sink: InMemorySubscriber,
    clock: Callable[[], datetime],
) -> None:
    service = AuditService(
        secrets=secrets_provider,
        config=EngineConfig(storage_max_retries=1, storage_backoff_base=0.0),
        store=_FailingStore(),
        bus=EventBus().subscribe(sink),
        clock=clock,
    )
    result = await service.record_event("user_login", Subject(subject_id="u-1"), {})
    assert result.success is True
    assert result.fallback_used is True
    assert await service.fallback_store.get(result.event.event_id) == result.event

    failures = sink.by_topic(BusTopic.AUDIT_STORAGE_FAILURE)
    assert len(failures) == 1
    assert failures[0].payload["id"] == result.event.event_id
    assert failures[0].payload["fallback"] == "InMemoryAuditStore"
    assert len(sink.by_topic(BusTopic.AUDIT_EVENT_RECORDED)) == 1

    page = await service.query_events(AuditQuery(subject_id="u-1"))
    assert [e.event_id for e in page.events] == [result.event.event_id]


async def test_primary_timeout_takes_fallback_path(
    secrets_provider: StaticSecretsProvider,
    sink: InMemorySubscriber,
    clock: Callable[[], datetime],
) -> None:
    store = _TimingOutStore()
    service = AuditService(
        secrets=secrets_provider,
        config=EngineConfig(storage_max_retries=1, storage_backoff_base=0.0),
        store=store,
        bus=EventBus().subscribe(sink),
        clock=clock,
    )
    result = await service.record_event("user_login", Subject(subject_id="u-1"), {})
    assert result.success is True
    assert result.fallback_used is True
    assert store.attempts == 2
    assert await service.fallback_store.get(result.event.event_id) == result.event
    assert service.circuit_breaker.failure_count == 0
    failures = sink.by_topic(BusTopic.AUDIT_STORAGE_FAILURE)
    assert failures[0].payload["error"] == "primary store timed out"


async def test_both_stores_failing_is_a_storage_failure(
    secrets_provider: StaticSecretsProvider, clock: Callable[[], datetime]
) -> None:
    service = AuditService(
        secrets=secrets_provider,
        config=EngineConfig(storage_max_retries=0),
        store=_TimingOutStore(),
        fallback_store=_FailingStore(),
        clock=clock,
    )
    result = await service.record_event("user_login", Subject(subject_id="u-1"), {})
    assert result.success is False
    assert result.error_code == "STORAGE_FAILURE"


async def test_naive_timestamp_is_rejected(service: AuditService) -> None:
    result = await service.record_event(
        "user_login", Subject(subject_id="u-1"), {}, timestamp=datetime(2026, 3, 10, 9, 50)
    )
    assert result.success is False
    assert result.error_code == "INVALID_EVENT"
    assert service.circuit_breaker.failure_count == 0


async def test_non_utc_timestamp_keeps_history_usable(
    service: AuditService, baselines: InMemoryBaselineProvider
) -> None:
    local = datetime(2026, 3, 10, 4, 50, tzinfo=timezone(timedelta(hours=-5)))
    first = await service.record_event(
        "user_login", Subject(subject_id="u-1"), {}, timestamp=local
    )
    assert first.event.timestamp == NOW - timedelta(minutes=10)
    assert first.event.timestamp.tzinfo == timezone.utc

    await service.record_event("data_accessed", Subject(subject_id="u-1"), {})
    assert await baselines.refresh_all() == 1
    recent = await baselines.recent_activity(
        "u-1", since=NOW - timedelta(hours=1), until=NOW, limit=10
    )
    assert len(recent) == 2


async def test_non_string_detail_keys_are_accepted(service: AuditService) -> None:
    result = await service.record_event("user_login", Subject(subject_id="u-1"), {1: "x"})
    assert result.success is True
    assert result.event.details == {"1": "x"}


async def test_integrity_failure_when_signing_unavailable(
    sink: InMemorySubscriber, clock: Callable[[], datetime]
) -> None:
    service = AuditService(
        secrets=_UnavailableSecrets(), bus=EventBus().subscribe(sink), clock=clock
    )
    result = await service.record_event("user_login", Subject(subject_id="u-1"), {})
    assert result.success is False
    assert result.error_code == "INTEGRITY_THRESHOLD"
    assert result.event is None
    assert len(await service.store.all()) == 0
    assert sink.messages == []


async def test_circuit_opens_after_repeated_failures(clock: Callable[[], datetime]) -> None:
    service = AuditService(
        secrets=_UnavailableSecrets(),
        config=EngineConfig(failure_threshold=2, recovery_timeout_seconds=9999.0),
        clock=clock,
    )
    codes = [
        (await service.record_event("user_login", Subject(subject_id="u-1"), {})).error_code
        for _ in range(3)
    ]
    assert codes == ["INTEGRITY_THRESHOLD", "INTEGRITY_THRESHOLD", "CIRCUIT_OPEN"]
    assert service.circuit_breaker.state == "open"


async def test_from_env(monkeypatch: pytest.MonkeyPatch, clock: Callable[[], datetime]) -> None:
    monkeypatch.setenv("AUDITGUARD_SIGNING_KEY", SECRET.decode())
    monkeypatch.delenv("AUDITGUARD_SIGNING_KEY_ID", raising=False)
    monkeypatch.setenv("AUDITGUARD_IMPOSSIBLE_TRAVEL_KMH", "500")
    service = AuditService.from_env(clock=clock)
    assert service.config.impossible_travel_kmh == 500.0
    result = await service.record_event("user_login", Subject(subject_id="u-1"), {})
    assert result.success is True
    assert result.event.metadata["cryptographic_signing"]["key_id"] == "default"


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


async def test_verify_recent_reports_forged_and_unsigned(
    service: AuditService,
    sink: InMemorySubscriber,
    make_event: Callable[..., AuditEvent],
) -> None:
    genuine = (await service.record_event("user_login", Subject(subject_id="u-1"), {})).event
    forged = genuine.model_copy(update={"event_id": "forged", "details": {"admin": True}})
    unsigned = make_event("data_deleted")
    await service.store.append(forged)
    await service.store.append(unsigned)

    report = await service.verify_recent()
    assert report.checked == 3
    assert report.verified == 1
    assert report.mismatched == ["forged"]
    assert report.unsigned == [unsigned.event_id]
    assert report.ok is False

    failures = sink.by_topic(BusTopic.AUDIT_INTEGRITY_FAILURE)
    assert {m.payload["reason"] for m in failures} == {"signature mismatch", "unsigned"}


async def test_ensure_authentic(
    service: AuditService, make_event: Callable[..., AuditEvent]
) -> None:
    event = (await service.record_event("user_login", Subject(subject_id="u-1"), {})).event
    service.ensure_authentic(event)

    tampered = event.model_copy(update={"subject_id": "u-2"})
    assert service.verify_event(tampered) is False
    with pytest.raises(SignatureMismatchError):
        service.ensure_authentic(tampered)

    with pytest.raises(SignatureMismatchError) as exc_info:
        service.ensure_authentic(make_event())
    assert exc_info.value.details["reason"] == "event is not signed"


async def test_risk_score_reuses_cached_assessment(service: AuditService) -> None:
    event = (
        await service.record_event("failed_authentication", Subject(subject_id="u-1"), {})
    ).event
    assessment = await service.risk_score(event)
    assert assessment.score == pytest.approx(0.28)
    assert assessment.cached is True


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------


async def test_query_cache_invalidated_by_writes(service: AuditService) -> None:
    await service.record_event("user_login", Subject(subject_id="u-1"), {})
    query = AuditQuery(subject_id="u-1")

    first = await service.query_events(query)
    second = await service.query_events(query)
    assert first.total == 1 and first.cached is False
    assert second.total == 1 and second.cached is True

    await service.record_event("user_logout", Subject(subject_id="u-1"), {})
    third = await service.query_events(query)
    assert third.total == 2
    assert third.cached is False


async def test_query_overlapping_a_write_is_not_cached(
    secrets_provider: StaticSecretsProvider, clock: Callable[[], datetime]
) -> None:
    store = _SlowQueryStore()
    service = AuditService(secrets=secrets_provider, store=store, clock=clock)
    query = AuditQuery(subject_id="u-1")

    pending = asyncio.create_task(service.query_events(query))
    await store.query_started.wait()
    await service.record_event("user_login", Subject(subject_id="u-1"), {})
    store.release.set()
    assert (await pending).total == 0

    fresh = await service.query_events(query)
    assert fresh.total == 1
    assert fresh.cached is False


async def test_query_defaults(service: AuditService) -> None:
    await service.record_event("data_exported", Subject(subject_id="u-1"), {})
    page = await service.query_events()
    assert page.total == 1
    assert page.counts_by_category == {"data": 1}
    await service.close()
