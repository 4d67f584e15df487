"""Circuit breaker middleware for the ingestion entrypoint."""

from __future__ import annotations

import functools
import time
from enum import StrEnum
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from auditguard.core.exceptions import CircuitOpenError

logger = structlog.get_logger(__name__)

_T = TypeVar("_T")


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Tracks consecutive failures and short-circuits calls past a threshold.

    States:
        - **closed** (normal): calls pass through.
        - **open** (failing): calls are rejected with :class:`CircuitOpenError`.
        - **half_open** (probing): a limited number of calls test recovery.

    Exceptions listed in *excluded_exceptions* are caller errors (such as a
    rejected input); they propagate unchanged and count as a successful
    round-trip rather than a failure.

    Args:
        failure_threshold: Consecutive failures that open the circuit.
        recovery_timeout: Seconds spent open before probing.
        half_open_max_calls: Probe calls allowed while half-open.
        excluded_exceptions: Exception types that never count as failures.
        name: Label used in log events.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        half_open_max_calls: int = 1,
        excluded_exceptions: tuple[type[BaseException], ...] = (),
        name: str = "default",
    ) -> None:
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._half_open_max_calls = half_open_max_calls
        self._excluded = excluded_exceptions
        self._name = name

        self._failure_count: int = 0
        self._half_open_calls: int = 0
        self._state = CircuitState.CLOSED
        self._opened_at: float = 0.0

    @property
    def state(self) -> CircuitState:
        """Current state; *open* becomes *half_open* once the recovery timeout elapses."""
        if self._state == CircuitState.OPEN:
            if time.monotonic() - self._opened_at >= self._recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._half_open_calls = 0
                logger.info("circuit_half_open", circuit=self._name)
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    async def execute(
        self,
        fn: Callable[..., Awaitable[_T]],
        *args: Any,
        **kwargs: Any,
    ) -> _T:
        """Execute *fn* through the breaker.

        Raises:
            CircuitOpenError: If the circuit is open or the probe budget is spent.
        """
        current = self.state

        if current == CircuitState.OPEN:
            raise CircuitOpenError(
                f"circuit {self._name!r} is open, calls are being rejected",
                code="CIRCUIT_OPEN",
            )

        if current == CircuitState.HALF_OPEN:
            if self._half_open_calls >= self._half_open_max_calls:
                self._trip()
                raise CircuitOpenError(
                    f"circuit {self._name!r} is open, half-open probe limit reached",
                    code="CIRCUIT_OPEN",
                )
            self._half_open_calls += 1

        try:
            result: _T = await fn(*args, **kwargs)
        except self._excluded:
            self._on_success()
            raise
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def as_decorator(
        self,
    ) -> Callable[[Callable[..., Awaitable[_T]]], Callable[..., Awaitable[_T]]]:
        """Return a decorator that routes an async function through this breaker."""

        def decorator(fn: Callable[..., Awaitable[_T]]) -> Callable[..., Awaitable[_T]]:
            @functools.wraps(fn)
            async def wrapper(*args: Any, **kwargs: Any) -> _T:
                return await self.execute(fn, *args, **kwargs)

            return wrapper

        return decorator

    def reset(self) -> None:
        """Manually reset the breaker to *closed*."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._half_open_calls = 0
        self._opened_at = 0.0

    def _on_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            logger.info("circuit_closed", circuit=self._name)
            self.reset()
        else:
            self._failure_count = 0

    def _on_failure(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._trip()
            return
        self._failure_count += 1
        if self._failure_count >= self._failure_threshold:
            self._trip()

    def _trip(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = time.monotonic()
        self._failure_count = 0
        self._half_open_calls = 0
        logger.warning(
            "circuit_opened",
            circuit=self._name,
            recovery_timeout=self._recovery_timeout,
        )
