"""Tests for the assessment pipeline and quick scan."""

from datetime import timedelta

import pytest

from fraudscore.config import settings
from fraudscore.errors import FraudValidationError
from fraudscore.pipelines.assessment_pipeline import FraudAssessmentPipeline
from fraudscore.schemas.fraud_schemas import AssessmentRequest
from fraudscore.services.behavioral_service import BehavioralPatternService
from fraudscore.services.fraud_score_service import FraudScoreService
from fraudscore.utils.logging_config import metrics, phone_hash_var

PHONE = "hash-pipeline"
THREATS = "bomb döda våld hot skada bomb"
SCRIPT = "jag vill ha pengarna tillbaka omedelbart nu"


@pytest.fixture
def pipeline(seeded_db, fake_classifier):
    return FraudAssessmentPipeline(seeded_db, classifier=fake_classifier)


def _history(calls):
    return [
        {"timestamp": c.timestamp, "call_id": c.call_id, "transcript": c.transcript}
        for c in calls
    ]


class TestAssess:

    def test_low_risk_assessment(self, pipeline, fake_classifier, burst_calls):
        response = pipeline.assess(AssessmentRequest(
            phone_hash=PHONE,
            call_transcript="bomb helvete",
            feedback_content="Maten var god",
            call_history=_history(burst_calls),
            business_context={"type": "restaurant"},
        ))

        score = response["fraud_score"]
        assert score["keyword_score"] == 8
        assert score["behavioral_score"] == 10.5
        assert score["context_score"] == 4.0
        assert score["transaction_score"] == 0.0
        assert score["composite_score"] == 22.5
        assert score["risk_level"] == "low"
        assert score["confidence_level"] == 49
        assert response["is_fraudulent"] is False
        assert response["recommendations"] == ["Low confidence score - consider manual review"]
        assert response["alerts"] == []

        assert fake_classifier.calls == [("Maten var god", {"type": "restaurant"})]
        assert len(response["keyword_detection"]["keywords_found"]) == 2
        assert response["behavioral_analysis"]["overall_risk_level"] == "medium"
        assert response["context_analysis"]["legitimacy_score"] == 90

    def test_critical_assessment(self, pipeline, fake_classifier, base_time):
        calls = [
            {"timestamp": base_time + timedelta(minutes=i), "transcript": SCRIPT}
            for i in range(8)
        ]
        response = pipeline.assess(AssessmentRequest(
            phone_hash=PHONE,
            call_transcript=THREATS,
            call_history=calls,
            context_assessment={"legitimacy_score": 0, "confidence_score": 95},
            transaction_score=25,
        ))

        score = response["fraud_score"]
        assert score["context_score"] == 40.0
        assert score["keyword_score"] == 20
        assert score["transaction_score"] == 10.0
        assert score["behavioral_score"] > 15
        assert score["risk_level"] == "critical"
        assert response["is_fraudulent"] is True
        assert {a["recommended_action"] for a in response["alerts"]} == {
            "immediate_block",
            "manual_review",
            "detailed_review",
        }
        # supplied assessment skips the classifier
        assert fake_classifier.calls == []
        assert response["context_analysis"]["language_detected"] == "sv"

    def test_repeat_assessment_merges_patterns(self, pipeline, burst_calls):
        request = AssessmentRequest(
            phone_hash=PHONE,
            feedback_content="Bra",
            call_history=_history(burst_calls),
        )
        pipeline.assess(request)
        response = pipeline.assess(request)

        patterns = response["behavioral_analysis"]["patterns"]
        assert len(patterns) == 1
        assert patterns[0]["violation_count"] == 2
        assert len(FraudScoreService(pipeline.db).get_history(PHONE)) == 2

    def test_alert_cooldown_across_assessments(self, pipeline):
        request = AssessmentRequest(
            phone_hash=PHONE,
            call_transcript=THREATS,
        )
        assert len(pipeline.assess(request)["alerts"]) == 1
        assert pipeline.assess(request)["alerts"] == []

    def test_neutral_context_without_classifier(self, seeded_db, monkeypatch):
        monkeypatch.setattr(settings, "openai_api_key", None)
        pipeline = FraudAssessmentPipeline(seeded_db)
        assert pipeline.classifier is None

        response = pipeline.assess(AssessmentRequest(phone_hash=PHONE, feedback_content="Trevligt"))
        assert response["fraud_score"]["context_score"] == 0.0
        assert response["fraud_score"]["composite_score"] == 0
        assert response["context_analysis"]["suspicious_patterns"] == ["classifier_unavailable"]

    @pytest.mark.parametrize(
        "kwargs, message",
        [
            ({"feedback_content": "x"}, "Phone hash is required"),
            ({"phone_hash": PHONE}, "Either call transcript or feedback content is required"),
            ({"phone_hash": PHONE, "feedback_content": "x", "language_code": "fi"}, "Unsupported language"),
        ],
    )
    def test_invalid_request(self, pipeline, kwargs, message):
        with pytest.raises(FraudValidationError, match=message):
            pipeline.assess(AssessmentRequest(**kwargs))

    def test_assessment_metrics(self, pipeline):
        before = dict(metrics.get_stats()["counters"])
        pipeline.assess(AssessmentRequest(phone_hash=PHONE, feedback_content="Bra"))
        with pytest.raises(FraudValidationError):
            pipeline.assess(AssessmentRequest(phone_hash=PHONE))
        after = metrics.get_stats()["counters"]

        assert after["assessment.total"] - before.get("assessment.total", 0) == 2
        assert after["assessment.errors"] - before.get("assessment.errors", 0) == 1
        assert after["assessment.risk.low"] - before.get("assessment.risk.low", 0) == 1

    def test_unsupported_classifier_language_falls_back(self, pipeline, fake_classifier, burst_calls):
        fake_classifier.assessment["language_detected"] = "fi"
        response = pipeline.assess(AssessmentRequest(
            phone_hash=PHONE,
            feedback_content="Maten var god",
            call_history=_history(burst_calls),
            language_code="en",
        ))

        assert response["context_analysis"]["language_detected"] == "en"
        assert response["behavioral_analysis"]["patterns"][0]["violation_count"] == 1
        assert FraudScoreService(pipeline.db).get_by_phone_hash(PHONE) is not None

    def test_supplied_assessment_rejected_before_writes(self, pipeline, burst_calls):
        request = AssessmentRequest(
            phone_hash=PHONE,
            feedback_content="Bra",
            call_history=_history(burst_calls),
            context_assessment={"legitimacy_score": 80, "confidence_score": 90, "language_detected": "fi"},
        )
        with pytest.raises(FraudValidationError, match="Unsupported language: fi"):
            pipeline.assess(request)

        assert BehavioralPatternService(pipeline.db).get_patterns(PHONE) == []
        assert FraudScoreService(pipeline.db).get_by_phone_hash(PHONE) is None

    def test_invalid_classifier_output_rejected_before_writes(self, pipeline, fake_classifier, burst_calls):
        fake_classifier.assessment["legitimacy_score"] = 150
        with pytest.raises(FraudValidationError, match="Legitimacy score must be between 0 and 100"):
            pipeline.assess(AssessmentRequest(
                phone_hash=PHONE,
                feedback_content="Bra",
                call_history=_history(burst_calls),
            ))

        assert BehavioralPatternService(pipeline.db).get_patterns(PHONE) == []

    def test_phone_hash_in_log_context(self, pipeline, fake_classifier):
        seen = []
        analyze = fake_classifier.analyze

        def tracking_analyze(content, business_context=None):
            seen.append(phone_hash_var.get())
            return analyze(content, business_context)

        fake_classifier.analyze = tracking_analyze
        pipeline.assess(AssessmentRequest(phone_hash=PHONE, feedback_content="Bra"))

        assert seen == [PHONE]
        assert phone_hash_var.get() is None


class TestQuickScan:

    def test_keywords_only(self, pipeline):
        result = pipeline.quick_scan(PHONE, "bomb helvete", "sv")

        # contribution 8 of 20 -> 40%, * 0.6
        assert result["quick_risk_score"] == 24.0
        assert result["risk_level"] == "low"
        assert result["should_block"] is False
        assert result["block_reason"] is None
        assert result["keyword_matches"] == 2
        assert result["behavioral_flags"] == []

    def test_call_count_flags(self, pipeline):
        result = pipeline.quick_scan(PHONE, "bomb helvete", "sv", recent_call_count=12)

        # 24 + min(30, (12 - 5) * 5) * 0.4
        assert result["quick_risk_score"] == 36.0
        assert result["risk_level"] == "medium"
        assert result["behavioral_flags"] == [
            "12 calls in 30 minutes",
            "Exceeds threshold of 5 calls",
        ]

    def test_threshold_scales_with_window(self, pipeline):
        result = pipeline.quick_scan(PHONE, "Trevligt", "sv", recent_call_count=8, time_window_minutes=60)
        assert result["behavioral_flags"] == []
        assert result["quick_risk_score"] == 0.0

    def test_should_block(self, pipeline):
        result = pipeline.quick_scan(PHONE, THREATS, "sv", recent_call_count=12)

        assert result["quick_risk_score"] == 72.0
        assert result["risk_level"] == "critical"
        assert result["should_block"] is True
        assert result["block_reason"] == "6 red flag keywords detected; Suspicious call frequency pattern"

    def test_nothing_persisted(self, pipeline):
        pipeline.quick_scan(PHONE, THREATS, "sv")
        assert FraudScoreService(pipeline.db).get_by_phone_hash(PHONE) is None

    def test_phone_hash_required(self, pipeline):
        with pytest.raises(FraudValidationError, match="Phone hash is required"):
            pipeline.quick_scan("", "text")
