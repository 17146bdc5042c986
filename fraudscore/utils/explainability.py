"""
Explainability utilities.
Breaks a composite fraud score into per-component contributing factors
with human-readable risk indicators and recommendations.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Any, List

from fraudscore.config import settings
from fraudscore.utils.confidence import component_confidence


@dataclass
class ContributingFactor:
    """A single component's contribution to the composite score."""
    component: str
    score: float
    weight_percent: int
    risk_indicators: List[str]
    confidence: float


# (threshold, indicator) tiers; only the first matching tier applies
_TIERED_INDICATORS = {
    "context": [
        (30, "Highly suspicious content detected"),
        (20, "Suspicious content patterns"),
        (10, "Minor content irregularities"),
    ],
    "keyword": [
        (15, "High-severity red flag keywords"),
        (10, "Multiple red flag keywords"),
        (5, "Red flag keywords detected"),
    ],
    "behavioral": [
        (25, "Severe behavioral anomalies"),
        (15, "Multiple behavioral red flags"),
        (8, "Suspicious behavioral patterns"),
    ],
    "transaction": [
        (8, "Transaction verification failed"),
        (5, "Transaction anomalies detected"),
        (3, "Minor transaction inconsistencies"),
    ],
}

# (threshold, indicator) pairs added independently of the tier above
_ADDITIONAL_INDICATORS = {
    "context": [
        (25, "Language authenticity concerns"),
        (20, "Cultural context mismatch"),
        (15, "Impossible claims detected"),
    ],
    "keyword": [
        (12, "Threat-related content"),
        (8, "Profanity or nonsensical content"),
    ],
    "behavioral": [
        (20, "Call frequency abuse detected"),
        (15, "Unusual timing patterns"),
        (10, "Content similarity concerns"),
    ],
    "transaction": [],
}


def risk_indicators(component: str, score: float) -> List[str]:
    indicators = []
    for threshold, text in _TIERED_INDICATORS[component]:
        if score >= threshold:
            indicators.append(text)
            break
    for threshold, text in _ADDITIONAL_INDICATORS[component]:
        if score >= threshold:
            indicators.append(text)
    return indicators


def contributing_factors(components: Dict[str, float]) -> List[ContributingFactor]:
    """One factor per component, in context/keyword/behavioral/transaction order."""
    weights = settings.component_weights
    factors = []
    for component, max_score in weights.items():
        score = components.get(component, 0.0)
        factors.append(ContributingFactor(
            component=component,
            score=score,
            weight_percent=max_score,
            risk_indicators=risk_indicators(component, score),
            confidence=round(component_confidence(score, max_score), 2),
        ))
    return factors


def recommendations(
    composite_score: float,
    components: Dict[str, float],
    confidence_level: float,
) -> List[str]:
    recs = []

    if composite_score >= settings.fraud_threshold:
        recs.append("Block or flag this phone number for manual review")
        recs.append("Investigate related phone numbers from same source")
    elif composite_score >= settings.medium_risk_threshold:
        recs.append("Monitor this phone number for additional activity")
        recs.append("Consider additional verification steps")

    if components.get("context", 0) >= 20:
        recs.append("Review feedback content for impossible claims")
    if components.get("keyword", 0) >= 10:
        recs.append("Content contains problematic keywords - verify legitimacy")
    if components.get("behavioral", 0) >= 15:
        recs.append("Behavioral patterns suggest automated or abusive activity")

    if confidence_level < 60:
        recs.append("Low confidence score - consider manual review")

    return recs


def factors_to_dicts(factors: List[ContributingFactor]) -> List[Dict[str, Any]]:
    return [asdict(f) for f in factors]
