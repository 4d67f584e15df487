"""Retry policy with exponential backoff and jitter for collaborator calls."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import BaseModel, Field

from auditguard.core.exceptions import AuditGuardError, StorageFailureError

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class RetryPolicy(BaseModel):
    """Configurable retry policy with exponential backoff.

    Attributes:
        max_retries: Maximum number of retry attempts (0 = no retries).
        backoff_base: Base delay in seconds for exponential backoff.
        backoff_max: Maximum delay in seconds.
        jitter: If ``True``, draw the delay uniformly from ``[0, computed]``.
        retryable_exceptions: Exception types eligible for retry when the
            exception does not state its own ``is_retryable``.
    """

    max_retries: int = Field(default=2, ge=0, le=10)
    backoff_base: float = Field(default=0.1, ge=0.0)
    backoff_max: float = Field(default=5.0, ge=0.0)
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = (StorageFailureError, TimeoutError)

    model_config = {"arbitrary_types_allowed": True}

    def _is_retryable(self, exc: Exception) -> bool:
        """Decide whether *exc* is retried.

        An :class:`AuditGuardError` subclass that overrides ``is_retryable``
        decides for itself; anything else is retried when it is an instance
        of ``retryable_exceptions``.
        """
        if isinstance(exc, AuditGuardError):
            for klass in type(exc).__mro__:
                if klass is AuditGuardError:
                    break
                if "is_retryable" in klass.__dict__:
                    return bool(exc.is_retryable)
        return isinstance(exc, self.retryable_exceptions)

    def _compute_delay(self, attempt: int) -> float:
        delay: float = min(self.backoff_base * (2**attempt), self.backoff_max)
        if self.jitter:
            delay = random.uniform(0, delay)  # noqa: S311
        return delay

    async def execute(
        self,
        fn: Callable[..., Awaitable[_T]],
        *args: Any,
        **kwargs: Any,
    ) -> _T:
        """Call ``await fn(*args, **kwargs)``, retrying retryable failures.

        Raises:
            Exception: The last exception once retries are exhausted, or the
                first non-retryable one immediately.
        """
        attempt = 0
        while True:
            try:
                return await fn(*args, **kwargs)
            except Exception as exc:
                if not self._is_retryable(exc):
                    raise
                if attempt >= self.max_retries:
                    logger.warning(
                        "Retry exhausted after %d attempt(s): %s", attempt + 1, exc
                    )
                    raise
                delay = self._compute_delay(attempt)
                logger.info(
                    "Retry attempt %d/%d after %.2fs: %s",
                    attempt + 1,
                    self.max_retries,
                    delay,
                    exc,
                )
                await asyncio.sleep(delay)
                attempt += 1
