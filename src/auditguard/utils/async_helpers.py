from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any, Coroutine, TypeVar

from auditguard.core.exceptions import StageTimeoutError

T = TypeVar("T")


def elapsed_ms(started: float) -> float:
    """Milliseconds since a ``time.monotonic()`` reading."""
    return (time.monotonic() - started) * 1000.0


async def with_timeout(
    coro: Coroutine[Any, Any, T],
    seconds: float,
    *,
    stage: str | None = None,
) -> T:
    """Run *coro* with a deadline.

    Args:
        coro: The coroutine to run.
        seconds: Maximum number of seconds to wait.
        stage: When given, a timeout is reported as :class:`StageTimeoutError`
            naming this stage instead of a bare ``asyncio.TimeoutError``.

    Raises:
        asyncio.TimeoutError: If *coro* overruns and *stage* is ``None``.
        StageTimeoutError: If *coro* overruns and *stage* is given.
    """
    try:
        return await asyncio.wait_for(coro, timeout=seconds)
    except asyncio.TimeoutError as exc:
        if stage is None:
            raise
        raise StageTimeoutError(stage, seconds) from exc


async def run_blocking(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run CPU-bound *fn* on the default thread pool so the loop stays responsive."""
    return await asyncio.to_thread(fn, *args, **kwargs)
