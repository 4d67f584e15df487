from auditguard.analysis.behavior import (
    BehavioralAnomalyDetector,
    BehavioralDeviation,
    compute_baseline,
)
from auditguard.analysis.geo import GeoVelocityDetector, haversine_km, travel_velocity_kmh
from auditguard.analysis.periodicity import PeriodicityDetector, autocorrelation
from auditguard.analysis.threats import (
    ImpossibleTravelRule,
    ThreatDetector,
    ThreatRule,
    default_rules,
    pattern_rules,
    threat_level,
)

__all__ = [
    "BehavioralAnomalyDetector",
    "BehavioralDeviation",
    "GeoVelocityDetector",
    "ImpossibleTravelRule",
    "PeriodicityDetector",
    "ThreatDetector",
    "ThreatRule",
    "autocorrelation",
    "compute_baseline",
    "default_rules",
    "haversine_km",
    "pattern_rules",
    "threat_level",
    "travel_velocity_kmh",
]
