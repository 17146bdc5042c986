"""Tests for fraud alert evaluation."""

import pytest

from fraudscore.models.fraud_score import FraudScore
from fraudscore.services.alert_service import AlertRule, FraudAlertEvaluator


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def _score(phone_hash="hash-1", context=0.0, keyword=0.0, behavioral=0.0, transaction=0.0):
    return FraudScore(
        phone_hash=phone_hash,
        context_score=context,
        keyword_score=keyword,
        behavioral_score=behavioral,
        transaction_score=transaction,
        composite_score=context + keyword + behavioral + transaction,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def evaluator(clock):
    return FraudAlertEvaluator(cooldown_seconds=900, clock=clock)


class TestAlertRules:

    def test_clean_score_raises_nothing(self, evaluator):
        assert evaluator.evaluate(_score(context=10, keyword=5)) == []

    def test_all_rules_fire(self, evaluator):
        alerts = evaluator.evaluate(_score(context=40, keyword=20, behavioral=30, transaction=0))

        assert [a.recommended_action for a in alerts] == [
            "immediate_block",
            "manual_review",
            "investigate_patterns",
            "detailed_review",
        ]
        assert [a.level for a in alerts] == ["critical", "high", "high", "medium"]
        assert alerts[0].message == "Critical fraud score detected: 90.0"

    def test_thresholds_are_inclusive(self, evaluator):
        alerts = evaluator.evaluate(_score(keyword=15))
        assert [a.component for a in alerts] == ["keyword_detection"]

    def test_just_below_threshold(self, evaluator):
        assert evaluator.evaluate(_score(context=29.9, behavioral=24.9, keyword=14.9)) == []

    def test_alert_to_dict(self, evaluator):
        alert = evaluator.evaluate(_score(behavioral=25))[0]
        assert alert.to_dict() == {
            "level": "high",
            "message": "Severe behavioral anomalies detected",
            "component": "behavioral_patterns",
            "recommended_action": "investigate_patterns",
            "phone_hash": "hash-1",
            "value": 25,
        }

    def test_custom_rules(self, clock):
        rule = AlertRule(
            name="any_transaction",
            field="transaction_score",
            threshold=1,
            level="low",
            component="transaction",
            message="Transaction flagged",
            recommended_action="review",
        )
        evaluator = FraudAlertEvaluator(rules=[rule], clock=clock)
        assert len(evaluator.evaluate(_score(transaction=2, context=40))) == 1


class TestCooldown:

    def test_repeat_suppressed_within_cooldown(self, evaluator, clock):
        assert len(evaluator.evaluate(_score(keyword=20))) == 1
        clock.now += 899
        assert evaluator.evaluate(_score(keyword=20)) == []

    def test_fires_again_after_cooldown(self, evaluator, clock):
        evaluator.evaluate(_score(keyword=20))
        clock.now += 900
        assert len(evaluator.evaluate(_score(keyword=20))) == 1

    def test_cooldown_is_per_phone_hash(self, evaluator):
        evaluator.evaluate(_score("a", keyword=20))
        assert len(evaluator.evaluate(_score("b", keyword=20))) == 1

    def test_cooldown_is_per_rule(self, evaluator):
        evaluator.evaluate(_score(keyword=20))
        alerts = evaluator.evaluate(_score(keyword=20, behavioral=30))
        assert [a.component for a in alerts] == ["behavioral_patterns"]

    def test_reset_one_phone_hash(self, evaluator):
        evaluator.evaluate(_score("a", keyword=20))
        evaluator.evaluate(_score("b", keyword=20))

        evaluator.reset("a")
        assert len(evaluator.evaluate(_score("a", keyword=20))) == 1
        assert evaluator.evaluate(_score("b", keyword=20)) == []

    def test_zero_cooldown(self, clock):
        evaluator = FraudAlertEvaluator(cooldown_seconds=0, clock=clock)
        evaluator.evaluate(_score(keyword=20))
        assert len(evaluator.evaluate(_score(keyword=20))) == 1
