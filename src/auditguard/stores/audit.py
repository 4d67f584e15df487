"""Append-only audit event stores: in-memory and file (JSONL)."""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import structlog

from auditguard.core.exceptions import EventStateError, StorageFailureError
from auditguard.core.models import AuditEvent
from auditguard.stores.query import AuditQuery, QueryPage

logger = structlog.get_logger(__name__)


class AuditStore(ABC):
    """Abstract base for durable, append-only event stores.

    Subclass this to persist finalized events to a database, object store
    or log pipeline.  Implementations raise :class:`StorageFailureError`
    when the backend is unavailable.
    """

    @abstractmethod
    async def append(self, event: AuditEvent) -> None:
        """Persist a finalized event.  Existing events are never replaced."""

    @abstractmethod
    async def all(self) -> list[AuditEvent]:
        """Return every stored event, oldest first."""

    async def get(self, event_id: str) -> AuditEvent | None:
        for event in await self.all():
            if event.event_id == event_id:
                return event
        return None

    async def recent(self, limit: int = 100) -> list[AuditEvent]:
        """Return up to *limit* events, newest first."""
        events = await self.all()
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

    async def query(self, query: AuditQuery) -> QueryPage:
        return query.apply(await self.all())

    async def close(self) -> None:
        """Release resources held by the store."""


class InMemoryAuditStore(AuditStore):
    """Dict-backed store that keeps insertion order.

    Args:
        max_entries: Oldest events are dropped beyond this many (``None`` keeps all).
    """

    def __init__(self, max_entries: int | None = None) -> None:
        self._max_entries = max_entries
        self._events: dict[str, AuditEvent] = {}

    async def append(self, event: AuditEvent) -> None:
        if event.event_id in self._events:
            raise EventStateError(
                f"event {event.event_id} is already stored",
                code="DUPLICATE_EVENT",
            )
        self._events[event.event_id] = event
        if self._max_entries is not None:
            while len(self._events) > self._max_entries:
                del self._events[next(iter(self._events))]

    async def all(self) -> list[AuditEvent]:
        return list(self._events.values())

    async def get(self, event_id: str) -> AuditEvent | None:
        return self._events.get(event_id)

    def __len__(self) -> int:
        return len(self._events)


class FileAuditStore(AuditStore):
    """Append-only JSONL file store.

    Uses :func:`asyncio.to_thread` so file I/O does not block the event
    loop.  Also serves as the local fallback when the primary store fails.

    Args:
        path: Filesystem path for the JSONL file.  Parent directories are
            created on first write.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _serialize(self, event: AuditEvent) -> str:
        data: dict[str, Any] = event.model_dump(mode="json")
        return json.dumps(data, default=str, sort_keys=True)

    def _write_sync(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")

    def _read_sync(self) -> list[AuditEvent]:
        if not self._path.exists():
            return []
        events: list[AuditEvent] = []
        with self._path.open("r", encoding="utf-8") as fh:
            for lineno, raw_line in enumerate(fh, start=1):
                raw_line = raw_line.strip()
                if not raw_line:
                    continue
                try:
                    events.append(AuditEvent.model_validate_json(raw_line))
                except ValueError:
                    logger.warning(
                        "audit_store_corrupt_line", path=str(self._path), line=lineno
                    )
        return events

    async def append(self, event: AuditEvent) -> None:
        line = self._serialize(event)
        async with self._lock:
            try:
                await asyncio.to_thread(self._write_sync, line)
            except OSError as exc:
                raise StorageFailureError(
                    f"could not append event {event.event_id} to {self._path}",
                    details={"path": str(self._path), "error": str(exc)},
                ) from exc

    async def all(self) -> list[AuditEvent]:
        try:
            return await asyncio.to_thread(self._read_sync)
        except OSError as exc:
            raise StorageFailureError(
                f"could not read {self._path}",
                details={"path": str(self._path), "error": str(exc)},
            ) from exc
