from auditguard.utils.async_helpers import elapsed_ms, run_blocking, with_timeout
from auditguard.utils.logging import bound_event_context, configure_logging

__all__ = [
    "bound_event_context",
    "configure_logging",
    "elapsed_ms",
    "run_blocking",
    "with_timeout",
]
