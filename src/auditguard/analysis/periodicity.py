"""Autocorrelation-based detection of machine-regular activity."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from pydantic import BaseModel


class PeriodicityResult(BaseModel):
    periodic: bool
    period_seconds: float | None = None
    strength: float = 0.0
    sample_size: int = 0


def bucket_counts(
    timestamps: Sequence[datetime], bucket_seconds: float, max_buckets: int = 1440
) -> list[int]:
    """Histogram *timestamps* into fixed-width buckets from the earliest one.

    The series is truncated to the most recent *max_buckets* buckets.
    """
    if not timestamps:
        return []
    ordered = sorted(timestamps)
    start = ordered[0]
    span = (ordered[-1] - start).total_seconds()
    size = int(span // bucket_seconds) + 1
    counts = [0] * size
    for ts in ordered:
        counts[int((ts - start).total_seconds() // bucket_seconds)] += 1
    return counts[-max_buckets:]


def autocorrelation(series: Sequence[float], lag: int) -> float:
    """Normalized sample autocorrelation of *series* at *lag*.

    Returns ``0.0`` for constant series or lags outside ``1..len-1``.
    """
    n = len(series)
    if lag <= 0 or lag >= n:
        return 0.0
    mean = sum(series) / n
    variance = sum((x - mean) ** 2 for x in series)
    if variance == 0:
        return 0.0
    covariance = sum((series[i] - mean) * (series[i + lag] - mean) for i in range(n - lag))
    return covariance / variance


class PeriodicityDetector:
    """Finds a dominant period in a subject's activity timeline.

    Activity is bucketed, and the lag with the highest autocorrelation is
    reported when it exceeds *threshold*.  Lag 1 is skipped because bursts
    of adjacent activity correlate trivially.

    Args:
        bucket_seconds: Width of each histogram bucket.
        threshold: Minimum autocorrelation treated as periodic.
        min_events: Fewer events than this are never judged periodic.
    """

    def __init__(
        self,
        bucket_seconds: float = 60.0,
        threshold: float = 0.6,
        min_events: int = 8,
    ) -> None:
        self._bucket_seconds = bucket_seconds
        self._threshold = threshold
        self._min_events = min_events

    def detect(self, timestamps: Sequence[datetime]) -> PeriodicityResult:
        if len(timestamps) < self._min_events:
            return PeriodicityResult(periodic=False, sample_size=len(timestamps))

        series = bucket_counts(timestamps, self._bucket_seconds)
        best_lag = 0
        best_value = 0.0
        for lag in range(2, len(series) // 2 + 1):
            value = autocorrelation(series, lag)
            if value > best_value:
                best_lag, best_value = lag, value

        periodic = best_value >= self._threshold
        return PeriodicityResult(
            periodic=periodic,
            period_seconds=best_lag * self._bucket_seconds if periodic else None,
            strength=max(0.0, min(1.0, best_value)),
            sample_size=len(timestamps),
        )
