"""Forensic query contract: filters, result pages and a write-invalidated cache."""

from __future__ import annotations

import hashlib
import time
from collections import Counter, OrderedDict
from collections.abc import Iterable
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from auditguard.core.constants import ComplianceFlag, Severity
from auditguard.core.models import AuditEvent

SortField = Literal["timestamp", "risk_score", "severity"]


class AuditQuery(BaseModel):
    """Filter set plus pagination and sort.

    Every filter is optional; list filters match when the event's value is
    one of the listed values.  ``compliance_flags`` matches events carrying
    any of the given flags.
    """

    start_time: datetime | None = None
    end_time: datetime | None = None
    event_types: tuple[str, ...] = ()
    severities: tuple[Severity, ...] = ()
    subject_id: str | None = None
    compliance_flags: tuple[ComplianceFlag, ...] = ()
    min_risk_score: float | None = Field(default=None, ge=0.0, le=1.0)
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=50, ge=1, le=1000)
    sort_by: SortField = "timestamp"
    descending: bool = True

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_range(self) -> AuditQuery:
        if self.start_time and self.end_time and self.start_time > self.end_time:
            raise ValueError("start_time must not be after end_time")
        return self

    def cache_key(self) -> str:
        """Digest of the complete filter, pagination and sort set."""
        return hashlib.sha256(self.model_dump_json().encode()).hexdigest()

    def matches(self, event: AuditEvent) -> bool:
        if self.start_time is not None and event.timestamp < self.start_time:
            return False
        if self.end_time is not None and event.timestamp > self.end_time:
            return False
        if self.event_types and event.event_type not in self.event_types:
            return False
        if self.severities and event.severity not in self.severities:
            return False
        if self.subject_id is not None and event.subject_id != self.subject_id:
            return False
        if self.compliance_flags and not set(self.compliance_flags) & set(
            event.compliance_flags
        ):
            return False
        if self.min_risk_score is not None and (
            event.risk_score is None or event.risk_score < self.min_risk_score
        ):
            return False
        return True

    def _sort_key(self, event: AuditEvent) -> tuple:
        if self.sort_by == "risk_score":
            primary: object = event.risk_score if event.risk_score is not None else -1.0
        elif self.sort_by == "severity":
            primary = event.severity.rank
        else:
            primary = event.timestamp
        return (primary, event.timestamp, event.event_id)

    def apply(self, events: Iterable[AuditEvent]) -> QueryPage:
        """Filter, sort and paginate *events* into a :class:`QueryPage`."""
        started = time.monotonic()
        matched = [event for event in events if self.matches(event)]
        matched.sort(key=self._sort_key, reverse=self.descending)

        offset = (self.page - 1) * self.per_page
        return QueryPage(
            events=matched[offset : offset + self.per_page],
            total=len(matched),
            page=self.page,
            per_page=self.per_page,
            counts_by_severity=dict(Counter(e.severity.value for e in matched)),
            counts_by_category=dict(Counter(e.category.value for e in matched)),
            execution_time_ms=(time.monotonic() - started) * 1000.0,
        )


class QueryPage(BaseModel):
    events: list[AuditEvent] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    per_page: int = 50
    counts_by_severity: dict[str, int] = Field(default_factory=dict)
    counts_by_category: dict[str, int] = Field(default_factory=dict)
    execution_time_ms: float = 0.0
    cached: bool = False

    @property
    def total_pages(self) -> int:
        return max(1, -(-self.total // self.per_page))

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


class QueryCache:
    """TTL + LRU cache of query pages keyed on :meth:`AuditQuery.cache_key`.

    The owner must call :meth:`invalidate_all` on every write; a page is
    never served across a write.  Readers capture :attr:`generation` before
    querying and pass it to :meth:`set`, which drops a page computed before
    an intervening write.

    Args:
        ttl_seconds: Time-to-live for each page (default 60).
        max_size: Maximum number of cached pages (default 256).
    """

    def __init__(self, ttl_seconds: float = 60.0, max_size: int = 256) -> None:
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._pages: OrderedDict[str, tuple[float, QueryPage]] = OrderedDict()
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def get(self, query: AuditQuery) -> QueryPage | None:
        key = query.cache_key()
        entry = self._pages.get(key)
        if entry is None:
            return None
        stored_at, page = entry
        if time.monotonic() - stored_at > self._ttl:
            del self._pages[key]
            return None
        self._pages.move_to_end(key)
        return page.model_copy(update={"cached": True})

    def set(self, query: AuditQuery, page: QueryPage, *, generation: int | None = None) -> bool:
        """Store *page*; returns ``False`` when it is stale for *generation*."""
        if generation is not None and generation != self._generation:
            return False
        key = query.cache_key()
        self._pages.pop(key, None)
        self._pages[key] = (time.monotonic(), page)
        while len(self._pages) > self._max_size:
            self._pages.popitem(last=False)
        return True

    def invalidate_all(self) -> None:
        self._generation += 1
        self._pages.clear()

    @property
    def size(self) -> int:
        return len(self._pages)
