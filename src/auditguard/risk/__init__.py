from auditguard.risk.cache import InMemoryRiskCache, RiskScoreCache
from auditguard.risk.calculator import CachedRiskCalculator, RiskCalculator

__all__ = [
    "CachedRiskCalculator",
    "InMemoryRiskCache",
    "RiskCalculator",
    "RiskScoreCache",
]
