"""HMAC-SHA256 event signing and constant-time verification."""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import structlog

from auditguard.core.constants import StageName
from auditguard.core.exceptions import EventStateError
from auditguard.core.models import AuditEvent
from auditguard.crypto.keys import SecretsProvider

logger = structlog.get_logger(__name__)

ALGORITHM = "hmac-sha256"

# Fields covered by the signature in addition to id, timestamp and nonce.
_SIGNED_FIELDS = (
    "event_type",
    "subject_id",
    "subject_role",
    "session_id",
    "ip_address",
    "user_agent",
    "geolocation",
    "device_fingerprint",
    "category",
    "severity",
    "details",
    "compliance_flags",
    "encryption_required",
    "retention_period_days",
)


def canonical_payload(event: AuditEvent, nonce: str) -> bytes:
    """Serialize the signed portion of *event* deterministically."""
    body: dict[str, Any] = {
        "id": event.event_id,
        "timestamp": event.timestamp.astimezone(timezone.utc).isoformat(),
        "nonce": nonce,
        "event": event.model_dump(mode="json", include=set(_SIGNED_FIELDS)),
    }
    return json.dumps(body, sort_keys=True, separators=(",", ":"), default=str).encode(
        "utf-8"
    )


def compute_signature(payload: bytes, secret: bytes) -> str:
    """Compute the HMAC-SHA256 hex digest of *payload*."""
    return hmac.new(secret, payload, hashlib.sha256).hexdigest()


class EventSigner:
    """Signs events once and verifies them later.

    Args:
        secrets_provider: Source of the signing key.
        clock: Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        secrets_provider: SecretsProvider,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._secrets = secrets_provider
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def sign(self, event: AuditEvent, *, nonce: str | None = None) -> dict[str, Any]:
        """Return the signing record for *event* without modifying it.

        Raises:
            EventStateError: If *event* already carries a signature.
        """
        if event.signature is not None:
            raise EventStateError(
                f"event {event.event_id} is already signed",
                code="ALREADY_SIGNED",
            )
        key = self._secrets.active_key()
        nonce = nonce or secrets.token_hex(16)
        signature = compute_signature(canonical_payload(event, nonce), key.secret)
        return {
            "signature": signature,
            "algorithm": ALGORITHM,
            "key_id": key.key_id,
            "nonce": nonce,
            "signed_at": self._clock().isoformat(),
        }

    def verify(self, event: AuditEvent) -> bool:
        """Recompute the HMAC and compare in constant time.

        Never raises on a mismatch; an unsigned event, a missing signing
        record or an unknown key all verify as ``False``.
        """
        if event.signature is None:
            return False
        record = event.metadata.get(StageName.CRYPTOGRAPHIC_SIGNING.value) or {}
        nonce = record.get("nonce")
        key_id = record.get("key_id")
        if not nonce or not key_id or record.get("algorithm", ALGORITHM) != ALGORITHM:
            return False
        key = self._secrets.get_key(key_id)
        if key is None:
            logger.warning("signing_key_unknown", event_id=event.event_id, key_id=key_id)
            return False
        expected = compute_signature(canonical_payload(event, nonce), key.secret)
        return hmac.compare_digest(expected, event.signature)
