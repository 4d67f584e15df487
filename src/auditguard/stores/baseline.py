"""Behavioral baseline provider: read-only during scoring, refreshed out-of-band."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from collections.abc import Callable
from datetime import datetime, timezone

import structlog

from auditguard.analysis.behavior import compute_baseline
from auditguard.core.models import ActivityRecord, BehavioralBaseline

logger = structlog.get_logger(__name__)


class BaselineProvider(ABC):
    """Read-only lookup of a subject's historical activity statistics."""

    @abstractmethod
    async def get_baseline(self, subject_id: str) -> BehavioralBaseline | None:
        """Return the latest computed baseline, or ``None`` for unknown subjects."""

    @abstractmethod
    async def recent_activity(
        self,
        subject_id: str,
        *,
        since: datetime,
        until: datetime | None = None,
        limit: int = 50,
    ) -> list[ActivityRecord]:
        """Return the subject's activity in ``[since, until]``, newest first."""

    async def record(self, record: ActivityRecord) -> None:
        """Accept a finalized event's activity.  Read-only providers ignore it."""


class InMemoryBaselineProvider(BaselineProvider):
    """Keeps per-subject history in bounded deques.

    :meth:`record` only appends history.  Baselines are recomputed by
    :meth:`refresh` / :meth:`refresh_all`, which a batch job calls; reads
    never trigger a recomputation.

    Args:
        window_days: Trailing window summarized by each baseline.
        top_n: Number of typical types / hours / countries retained.
        max_history: Maximum records retained per subject.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        *,
        window_days: int = 30,
        top_n: int = 5,
        max_history: int = 10000,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._window_days = window_days
        self._top_n = top_n
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._history: dict[str, deque[ActivityRecord]] = defaultdict(
            lambda: deque(maxlen=max_history)
        )
        self._baselines: dict[str, BehavioralBaseline] = {}

    async def record(self, record: ActivityRecord) -> None:
        self._history[record.subject_id].append(record)

    async def get_baseline(self, subject_id: str) -> BehavioralBaseline | None:
        baseline = self._baselines.get(subject_id)
        if baseline is None or baseline.is_empty:
            return None
        return baseline

    async def recent_activity(
        self,
        subject_id: str,
        *,
        since: datetime,
        until: datetime | None = None,
        limit: int = 50,
    ) -> list[ActivityRecord]:
        history = self._history.get(subject_id)
        if not history:
            return []
        matches = [
            r
            for r in history
            if r.timestamp >= since and (until is None or r.timestamp <= until)
        ]
        matches.sort(key=lambda r: r.timestamp, reverse=True)
        return matches[:limit]

    async def refresh(self, subject_id: str) -> BehavioralBaseline:
        """Recompute and publish the baseline for *subject_id*."""
        history = list(self._history.get(subject_id, ()))
        baseline = await asyncio.to_thread(
            compute_baseline,
            subject_id,
            history,
            now=self._clock(),
            window_days=self._window_days,
            top_n=self._top_n,
        )
        self._baselines[subject_id] = baseline
        logger.debug(
            "baseline_refreshed",
            subject_id=subject_id,
            event_count=baseline.event_count,
        )
        return baseline

    async def refresh_all(self) -> int:
        """Refresh every known subject.  Returns the number refreshed."""
        subjects = list(self._history)
        for subject_id in subjects:
            await self.refresh(subject_id)
        return len(subjects)

    def seed(self, baseline: BehavioralBaseline) -> None:
        """Install a precomputed baseline (e.g. loaded from a warehouse)."""
        self._baselines[baseline.subject_id] = baseline
