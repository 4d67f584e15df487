"""Risk-score caching layer with TTL and LRU eviction.

Provides :class:`RiskScoreCache` (abstract base) and :class:`InMemoryRiskCache`
(default implementation backed by :class:`collections.OrderedDict`).

Entries are keyed by event id and carry a fingerprint of the inputs they
were computed from; a fingerprint mismatch is a miss, so a changed event or
baseline never serves a stale score.  The cache is an optimization only.
"""

from __future__ import annotations

import hashlib
import json
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Tuple

from auditguard.core.models import AuditEvent, BehavioralBaseline, RiskAssessment

_FINGERPRINT_FIELDS = (
    "event_type",
    "timestamp",
    "subject_id",
    "geolocation",
    "device_fingerprint",
    "severity",
    "compliance_flags",
)


class RiskScoreCache(ABC):
    """Abstract base class for risk-score caches.

    Subclass this to plug in Redis, disk, or any other backend.
    """

    @staticmethod
    def fingerprint(
        event: AuditEvent,
        baseline: BehavioralBaseline | None,
        recent_ids: tuple[str, ...] = (),
    ) -> str:
        """Compute a deterministic digest of everything a score depends on."""
        raw = {
            "event": event.model_dump(mode="json", include=set(_FINGERPRINT_FIELDS)),
            "baseline": baseline.model_dump(mode="json") if baseline else None,
            "recent": list(recent_ids),
        }
        return hashlib.sha256(json.dumps(raw, sort_keys=True).encode()).hexdigest()

    @abstractmethod
    async def get(self, event_id: str, fingerprint: str) -> RiskAssessment | None:
        """Return a cached assessment, or ``None`` on miss / expiry / stale inputs."""

    @abstractmethod
    async def set(
        self,
        event_id: str,
        fingerprint: str,
        assessment: RiskAssessment,
        *,
        subject_id: str | None = None,
    ) -> None:
        """Store *assessment* for *event_id*."""

    @abstractmethod
    async def invalidate(self, event_id: str) -> None:
        """Drop the entry for *event_id*, if any."""

    @abstractmethod
    async def invalidate_subject(self, subject_id: str) -> None:
        """Drop every entry computed for *subject_id* (e.g. after a baseline refresh)."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove all entries from the cache."""


class InMemoryRiskCache(RiskScoreCache):
    """LRU cache with per-entry TTL, backed by :class:`collections.OrderedDict`.

    Args:
        ttl_seconds: Time-to-live for each entry in seconds (default 1800).
        max_size: Maximum number of entries before the oldest is evicted (default 10 000).
    """

    def __init__(self, ttl_seconds: float = 1800, max_size: int = 10000) -> None:
        self._ttl = ttl_seconds
        self._max_size = max_size
        # (timestamp, fingerprint, subject_id, assessment), ordered by access time.
        self._store: OrderedDict[str, Tuple[float, str, str | None, RiskAssessment]] = (
            OrderedDict()
        )

    async def get(self, event_id: str, fingerprint: str) -> RiskAssessment | None:
        entry = self._store.get(event_id)
        if entry is None:
            return None

        ts, cached_fingerprint, _, assessment = entry
        if time.monotonic() - ts > self._ttl or cached_fingerprint != fingerprint:
            del self._store[event_id]
            return None

        self._store.move_to_end(event_id)
        return assessment

    async def set(
        self,
        event_id: str,
        fingerprint: str,
        assessment: RiskAssessment,
        *,
        subject_id: str | None = None,
    ) -> None:
        if event_id in self._store:
            del self._store[event_id]

        self._store[event_id] = (time.monotonic(), fingerprint, subject_id, assessment)

        while len(self._store) > self._max_size:
            self._store.popitem(last=False)

    async def invalidate(self, event_id: str) -> None:
        self._store.pop(event_id, None)

    async def invalidate_subject(self, subject_id: str) -> None:
        stale = [key for key, entry in self._store.items() if entry[2] == subject_id]
        for key in stale:
            del self._store[key]

    async def clear(self) -> None:
        self._store.clear()

    @property
    def size(self) -> int:
        return len(self._store)
