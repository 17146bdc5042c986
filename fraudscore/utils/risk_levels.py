"""
Risk level utilities.
Score-derived tiers for the composite score, for behavioral pattern sets
and for the lightweight quick scan. Thresholds come from config.
"""

import math
from enum import Enum
from typing import Iterable, Optional, Sequence

from fraudscore.config import settings


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


PATTERN_RECOMMENDATIONS = {
    RiskLevel.CRITICAL: "Immediate action required - block phone number and investigate related activity",
    RiskLevel.HIGH: "High risk detected - implement additional verification and monitoring",
    RiskLevel.MEDIUM: "Monitor closely for additional suspicious patterns",
    RiskLevel.LOW: "Continue normal monitoring",
}


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (2.5 -> 3, not 2)."""
    return int(math.floor(value + 0.5))


def derive_risk_level(
    composite_score: float,
    critical_threshold: Optional[float] = None,
    high_threshold: Optional[float] = None,
    medium_threshold: Optional[float] = None,
) -> RiskLevel:
    """
    Derive risk tier from a composite score (0-100 scale).

    Lower bounds are inclusive: 85 -> critical, 84 -> high,
    70 -> high, 69 -> medium, 40 -> medium, 39 -> low.
    """
    critical = critical_threshold if critical_threshold is not None else settings.critical_risk_threshold
    high = high_threshold if high_threshold is not None else settings.high_risk_threshold
    medium = medium_threshold if medium_threshold is not None else settings.medium_risk_threshold

    if composite_score >= critical:
        return RiskLevel.CRITICAL
    elif composite_score >= high:
        return RiskLevel.HIGH
    elif composite_score >= medium:
        return RiskLevel.MEDIUM
    else:
        return RiskLevel.LOW


def is_fraudulent(composite_score: float) -> bool:
    return composite_score >= settings.fraud_threshold


def overall_pattern_risk(risk_scores: Sequence[float], violation_counts: Iterable[int]) -> RiskLevel:
    """
    Overall risk tier for a set of behavioral patterns.

    Args:
        risk_scores: Each pattern's risk score (0-100)
        violation_counts: Each pattern's violation count

    Returns:
        RiskLevel; LOW for an empty set
    """
    if not risk_scores:
        return RiskLevel.LOW

    max_risk = max(risk_scores)
    avg_risk = sum(risk_scores) / len(risk_scores)
    total_violations = sum(violation_counts)

    if max_risk >= 85 or (avg_risk >= 70 and total_violations >= 5):
        return RiskLevel.CRITICAL
    if max_risk >= 70 or (avg_risk >= 50 and total_violations >= 3):
        return RiskLevel.HIGH
    if max_risk >= 40 or avg_risk >= 30:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def pattern_recommendation(level: RiskLevel) -> str:
    return PATTERN_RECOMMENDATIONS[RiskLevel(level)]


def pattern_risk_bucket(risk_score: float) -> str:
    """Bucket a single pattern risk score for statistics (low <= 30 < medium <= 60 < high <= 80 < critical)."""
    if risk_score <= 30:
        return RiskLevel.LOW.value
    if risk_score <= 60:
        return RiskLevel.MEDIUM.value
    if risk_score <= 80:
        return RiskLevel.HIGH.value
    return RiskLevel.CRITICAL.value


def quick_scan_risk_level(quick_score: float) -> RiskLevel:
    """Tier for the quick scan score, which uses lower cut-offs than the composite."""
    if quick_score >= 70:
        return RiskLevel.CRITICAL
    if quick_score >= 50:
        return RiskLevel.HIGH
    if quick_score >= 25:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW
