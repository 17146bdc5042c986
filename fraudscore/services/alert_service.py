"""
Fraud alert evaluation.
Threshold rules over a persisted FraudScore. A rule that fired for a phone
hash stays quiet until its cooldown has elapsed.
"""

import time
from dataclasses import dataclass, asdict
from typing import Callable, Dict, Any, List, Optional, Tuple

from fraudscore.config import settings
from fraudscore.models.fraud_score import FraudScore
from fraudscore.utils.logging_config import StructuredLogger, metrics

logger = StructuredLogger(__name__)


@dataclass
class AlertRule:
    name: str
    field: str
    threshold: float
    level: str
    component: str
    message: str
    recommended_action: str


@dataclass
class FraudAlert:
    level: str
    message: str
    component: str
    recommended_action: str
    phone_hash: str
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_RULES = [
    AlertRule(
        name="critical_composite",
        field="composite_score",
        threshold=85,
        level="critical",
        component="composite_score",
        message="Critical fraud score detected: {value}",
        recommended_action="immediate_block",
    ),
    AlertRule(
        name="high_keyword",
        field="keyword_score",
        threshold=15,
        level="high",
        component="keyword_detection",
        message="High-severity keywords detected in content",
        recommended_action="manual_review",
    ),
    AlertRule(
        name="behavioral_anomaly",
        field="behavioral_score",
        threshold=25,
        level="high",
        component="behavioral_patterns",
        message="Severe behavioral anomalies detected",
        recommended_action="investigate_patterns",
    ),
    AlertRule(
        name="context_legitimacy",
        field="context_score",
        threshold=30,
        level="medium",
        component="context_analysis",
        message="Context analysis indicates potential fraud",
        recommended_action="detailed_review",
    ),
]


class FraudAlertEvaluator:
    """
    Evaluates alert rules per phone hash with an in-process cooldown.

    Checks:
    - Composite score at critical level
    - Keyword, behavioral and context components above their alert lines
    """

    def __init__(
        self,
        rules: Optional[List[AlertRule]] = None,
        cooldown_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.rules = rules or list(DEFAULT_RULES)
        self.cooldown = cooldown_seconds if cooldown_seconds is not None else settings.alert_cooldown_seconds
        self._clock = clock
        self._last_fired: Dict[Tuple[str, str], float] = {}

    def _in_cooldown(self, key: Tuple[str, str], now: float) -> bool:
        fired_at = self._last_fired.get(key)
        return fired_at is not None and now - fired_at < self.cooldown

    def evaluate(self, score: FraudScore) -> List[FraudAlert]:
        now = self._clock()
        alerts = []
        for rule in self.rules:
            value = getattr(score, rule.field) or 0
            if value < rule.threshold:
                continue

            key = (score.phone_hash, rule.name)
            if self._in_cooldown(key, now):
                metrics.increment(f"alerts.suppressed.{rule.name}")
                continue

            self._last_fired[key] = now
            alert = FraudAlert(
                level=rule.level,
                message=rule.message.format(value=value),
                component=rule.component,
                recommended_action=rule.recommended_action,
                phone_hash=score.phone_hash,
                value=value,
            )
            alerts.append(alert)
            metrics.increment(f"alerts.{rule.level}")
            logger.warning(
                "Fraud alert raised",
                rule=rule.name,
                level=rule.level,
                value=value,
                action=rule.recommended_action,
            )
        return alerts

    def reset(self, phone_hash: Optional[str] = None):
        """Forget cooldowns, for one phone hash or all of them."""
        if phone_hash is None:
            self._last_fired.clear()
            return
        for key in [k for k in self._last_fired if k[0] == phone_hash]:
            del self._last_fired[key]


# Global evaluator so cooldowns persist across requests
alert_evaluator = FraudAlertEvaluator()
