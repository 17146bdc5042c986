"""
Confidence utilities.
How much evidence a composite score is built on.
"""

from typing import Dict

from fraudscore.utils.risk_levels import round_half_up


def calculate_confidence_level(components: Dict[str, float]) -> int:
    """
    Confidence (0-100) of a composite score.

    Half of it comes from how many of the four components are non-zero,
    the other half from the magnitude of the total.

    Args:
        components: Component name -> score

    Returns:
        Integer confidence, capped at 100
    """
    non_zero = sum(1 for value in components.values() if value > 0)
    total = sum(components.values())

    data_completeness = non_zero / 4 * 50
    score_magnitude = total / 100 * 50

    return min(round_half_up(data_completeness + score_magnitude), 100)


def component_confidence(score: float, max_score: float) -> float:
    """Share of its maximum a component reached, as a percentage capped at 100."""
    if max_score <= 0:
        return 0.0
    return min(score / max_score * 100, 100.0)
