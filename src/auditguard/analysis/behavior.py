"""Behavioral baselines and deviation scoring."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from auditguard.core.models import ActivityRecord, AuditEvent, BehavioralBaseline

TIME_ANOMALY_PENALTY = 0.8
GEO_ANOMALY_PENALTY = 0.9


def _top_n(values: Iterable[object], n: int) -> list:
    # Ties are broken by first appearance so the result is deterministic.
    return [value for value, _ in Counter(values).most_common(n)]


def compute_baseline(
    subject_id: str,
    history: Sequence[ActivityRecord],
    *,
    now: datetime,
    window_days: int = 30,
    top_n: int = 5,
) -> BehavioralBaseline:
    """Summarize *history* over the trailing *window_days* ending at *now*.

    This is the batch computation run out-of-band; per-event scoring only
    reads its result.
    """
    since = now - timedelta(days=window_days)
    window = sorted(
        (r for r in history if r.subject_id == subject_id and since <= r.timestamp <= now),
        key=lambda r: r.timestamp,
    )
    hours_in_window = window_days * 24
    return BehavioralBaseline(
        subject_id=subject_id,
        avg_events_per_hour=len(window) / hours_in_window,
        typical_event_types=tuple(_top_n((r.event_type for r in window), top_n)),
        typical_hours=tuple(_top_n((r.timestamp.hour for r in window), top_n)),
        typical_locations=tuple(
            _top_n((r.country_code for r in window if r.country_code), top_n)
        ),
        known_devices=tuple(
            dict.fromkeys(r.device_fingerprint for r in window if r.device_fingerprint)
        ),
        event_count=len(window),
        window_days=window_days,
        computed_at=now,
    )


class BehavioralDeviation(BaseModel):
    frequency_anomaly: float = Field(..., ge=0.0, le=1.0)
    type_anomaly: float = Field(..., ge=0.0, le=1.0)
    time_anomaly: float = Field(..., ge=0.0, le=1.0)
    geo_anomaly: float = Field(..., ge=0.0, le=1.0)
    current_hour_count: int = 0

    @property
    def score(self) -> float:
        return (
            self.frequency_anomaly + self.type_anomaly + self.time_anomaly + self.geo_anomaly
        ) / 4.0


class BehavioralAnomalyDetector:
    """Scores how far an event and its recent window deviate from a baseline.

    Four sub-anomalies are averaged:

    * **frequency**: ``|count_last_hour / avg_per_hour - 1|`` doubled and
      clamped to ``[0, 1]``;
    * **type**: share of baseline event types absent from the current window;
    * **time**: fixed penalty when the event hour is not a typical hour;
    * **geo**: fixed penalty when the event country is not a typical location.

    The detector requires a non-empty baseline; the neutral score for unknown
    subjects is the risk factor's concern.
    """

    def __init__(
        self,
        time_penalty: float = TIME_ANOMALY_PENALTY,
        geo_penalty: float = GEO_ANOMALY_PENALTY,
    ) -> None:
        self._time_penalty = time_penalty
        self._geo_penalty = geo_penalty

    def analyze(
        self,
        event: AuditEvent,
        baseline: BehavioralBaseline,
        recent: Sequence[ActivityRecord],
    ) -> BehavioralDeviation:
        hour_ago = event.timestamp - timedelta(hours=1)
        current_hour_count = 1 + sum(
            1 for r in recent if hour_ago <= r.timestamp <= event.timestamp
        )

        current_types = {r.event_type for r in recent} | {event.event_type}
        country = event.geolocation.country_code if event.geolocation else None

        return BehavioralDeviation(
            frequency_anomaly=self._frequency(current_hour_count, baseline.avg_events_per_hour),
            type_anomaly=self._type_overlap_deficit(baseline.typical_event_types, current_types),
            time_anomaly=(
                0.0 if event.timestamp.hour in baseline.typical_hours else self._time_penalty
            ),
            geo_anomaly=(
                0.0
                if country is None or country in baseline.typical_locations
                else self._geo_penalty
            ),
            current_hour_count=current_hour_count,
        )

    @staticmethod
    def _frequency(current_hour_count: int, avg_per_hour: float) -> float:
        if avg_per_hour <= 0:
            return 1.0 if current_hour_count > 0 else 0.0
        deviation = max(0.0, abs(current_hour_count / avg_per_hour - 1.0))
        return min(1.0, deviation * 2.0)

    @staticmethod
    def _type_overlap_deficit(baseline_types: Sequence[str], current_types: set[str]) -> float:
        overlap = len(set(baseline_types) & current_types)
        return max(0.0, 1.0 - overlap / max(len(baseline_types), 1))
