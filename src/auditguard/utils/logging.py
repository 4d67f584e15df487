from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import IO, Any

import structlog

_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
]


def configure_logging(
    level: str = "INFO",
    json: bool = True,
    stream: IO[str] | None = None,
) -> None:
    """Route auditguard's structlog output through stdlib logging.

    Args:
        level: Standard logging level name, e.g. ``"DEBUG"`` or ``"WARNING"``.
        json: Render entries as JSON (production) or coloured console lines.
        stream: Destination stream; defaults to ``sys.stdout``.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=_SHARED_PROCESSORS + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
            foreign_pre_chain=_SHARED_PROCESSORS,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)


@contextmanager
def bound_event_context(**values: Any) -> Iterator[None]:
    """Bind *values* (e.g. ``event_id``, ``subject_id``) to every log line in the block.

    ``None`` values are skipped.  Bindings are context-local, so concurrent
    ingestions on the same loop do not see each other's context.
    """
    bindings = {key: value for key, value in values.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**bindings):
        yield
