"""Tests for crypto/: key providers, signing and verification."""
from __future__ import annotations

from collections.abc import Callable

import pytest

from auditguard.core.constants import Severity
from auditguard.core.exceptions import ConfigurationError, EventStateError
from auditguard.core.models import AuditEvent
from auditguard.crypto.keys import EnvSecretsProvider, SigningKey, StaticSecretsProvider
from auditguard.crypto.signer import (
    ALGORITHM,
    EventSigner,
    canonical_payload,
    compute_signature,
)

SECRET = b"unit-test-signing-secret-0123456789"
OTHER_SECRET = b"another-signing-secret-9876543210"


def _signed(signer: EventSigner, event: AuditEvent) -> AuditEvent:
    return event.with_signature(signer.sign(event))


# ---------------------------------------------------------------------------
# Key providers
# ---------------------------------------------------------------------------


def test_signing_key_repr_hides_secret() -> None:
    key = SigningKey(key_id="k1", secret=SECRET)
    assert repr(key) == "SigningKey(key_id='k1')"


def test_static_provider_rotation_keeps_old_keys() -> None:
    provider = StaticSecretsProvider("k1", SECRET)
    provider.rotate("k2", OTHER_SECRET)
    assert provider.active_key().key_id == "k2"
    assert provider.get_key("k1") is not None
    assert provider.get_key("missing") is None


def test_static_provider_accepts_str_secret() -> None:
    provider = StaticSecretsProvider("k1", SECRET.decode())
    assert provider.active_key().secret == SECRET


def test_env_provider_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUDITGUARD_SIGNING_KEY", SECRET.decode())
    monkeypatch.setenv("AUDITGUARD_SIGNING_KEY_ID", "env-key")
    provider = EnvSecretsProvider()
    assert provider.active_key().key_id == "env-key"
    assert provider.get_key("env-key") is not None
    assert provider.get_key("other") is None


def test_env_provider_without_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("AUDITGUARD_SIGNING_KEY", raising=False)
    provider = EnvSecretsProvider()
    with pytest.raises(ConfigurationError) as exc_info:
        provider.active_key()
    assert exc_info.value.code == "MISSING_SIGNING_KEY"
    assert provider.get_key("default") is None


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------


def test_sign_returns_record_without_mutating(
    signer: EventSigner, make_event: Callable[..., AuditEvent]
) -> None:
    event = make_event()
    record = signer.sign(event, nonce="fixed")
    assert record["algorithm"] == ALGORITHM
    assert record["key_id"] == "k1"
    assert record["nonce"] == "fixed"
    assert record["signed_at"] == "2026-03-10T10:00:00+00:00"
    assert len(record["signature"]) == 64
    assert event.signature is None


def test_signature_matches_manual_hmac(
    signer: EventSigner, make_event: Callable[..., AuditEvent]
) -> None:
    event = make_event()
    record = signer.sign(event, nonce="n1")
    assert record["signature"] == compute_signature(canonical_payload(event, "n1"), SECRET)


def test_canonical_payload_is_stable(make_event: Callable[..., AuditEvent]) -> None:
    event = make_event(details={"b": 1, "a": 2})
    assert canonical_payload(event, "n") == canonical_payload(event, "n")
    assert canonical_payload(event, "n") != canonical_payload(event, "m")


def test_sign_refuses_signed_event(
    signer: EventSigner, make_event: Callable[..., AuditEvent]
) -> None:
    signed = _signed(signer, make_event())
    with pytest.raises(EventStateError) as exc_info:
        signer.sign(signed)
    assert exc_info.value.code == "ALREADY_SIGNED"


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


def test_round_trip_verifies(signer: EventSigner, make_event: Callable[..., AuditEvent]) -> None:
    assert signer.verify(_signed(signer, make_event())) is True


def test_later_transforms_do_not_break_signature(
    signer: EventSigner, make_event: Callable[..., AuditEvent]
) -> None:
    signed = _signed(signer, make_event())
    enriched = signed.with_threat_detection({"indicators": []}).with_security_analysis(
        {"risk_score": 0.9}
    )
    assert signer.verify(enriched) is True


@pytest.mark.parametrize(
    "update",
    [
        {"details": {"tampered": True}},
        {"subject_id": "someone-else"},
        {"event_type": "user_logout"},
        {"severity": Severity.LOW},
    ],
)
def test_tampering_is_detected(
    signer: EventSigner, make_event: Callable[..., AuditEvent], update: dict
) -> None:
    signed = _signed(signer, make_event("data_exported"))
    assert signer.verify(signed.model_copy(update=update)) is False


def test_unsigned_event_does_not_verify(
    signer: EventSigner, make_event: Callable[..., AuditEvent]
) -> None:
    assert signer.verify(make_event()) is False


def test_forged_signature_does_not_verify(
    signer: EventSigner, make_event: Callable[..., AuditEvent]
) -> None:
    signed = _signed(signer, make_event())
    forged = signed.model_copy(update={"signature": "0" * 64})
    assert signer.verify(forged) is False


def test_unknown_key_does_not_verify(make_event: Callable[..., AuditEvent]) -> None:
    signed = _signed(EventSigner(StaticSecretsProvider("k1", SECRET)), make_event())
    verifier = EventSigner(StaticSecretsProvider("k9", SECRET))
    assert verifier.verify(signed) is False


def test_rotation_keeps_old_signatures_valid(make_event: Callable[..., AuditEvent]) -> None:
    provider = StaticSecretsProvider("k1", SECRET)
    signer = EventSigner(provider)
    old = _signed(signer, make_event())
    provider.rotate("k2", OTHER_SECRET)
    new = _signed(signer, make_event())
    assert new.metadata["cryptographic_signing"]["key_id"] == "k2"
    assert signer.verify(old) is True
    assert signer.verify(new) is True
