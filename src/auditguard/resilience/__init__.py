from auditguard.resilience.circuit_breaker import CircuitBreaker, CircuitState
from auditguard.resilience.retry import RetryPolicy

__all__ = ["CircuitBreaker", "CircuitState", "RetryPolicy"]
