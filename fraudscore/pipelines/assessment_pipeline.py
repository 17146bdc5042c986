"""
Fraud assessment pipeline.

Runs every scorer over one inbound feedback/call event:
keywords -> context legitimacy -> behavioral patterns -> composite score -> alerts.
Everything that can reject the request is checked before the first write.
"""

from typing import Dict, Any, Optional

from sqlalchemy.orm import Session

from fraudscore.config import settings
from fraudscore.errors import FraudValidationError
from fraudscore.schemas.fraud_schemas import AssessmentRequest
from fraudscore.services.alert_service import FraudAlertEvaluator, alert_evaluator
from fraudscore.services.behavioral_service import BehavioralPatternService
from fraudscore.services.context_service import (
    ContextAnalysisService,
    legitimacy_to_context_score,
    validate_assessment,
)
from fraudscore.services.fraud_score_service import FraudScoreService
from fraudscore.services.keyword_service import KeywordService, calculate_fraud_score_contribution
from fraudscore.services.llm_client import LegitimacyClassifier, NEUTRAL_ASSESSMENT
from fraudscore.services.pattern_detection import CallEvent, PatternDetector
from fraudscore.utils.logging_config import (
    StructuredLogger,
    log_execution_time,
    metrics,
    phone_hash_var,
    track_assessment,
)
from fraudscore.utils.risk_levels import quick_scan_risk_level

logger = StructuredLogger(__name__)

QUICK_KEYWORD_WEIGHT = 0.6
QUICK_BEHAVIORAL_WEIGHT = 0.4
QUICK_BLOCK_THRESHOLD = 50


def validate_request(request: AssessmentRequest):
    if not request.phone_hash:
        raise FraudValidationError("Phone hash is required")
    if not request.call_transcript and not request.feedback_content:
        raise FraudValidationError("Either call transcript or feedback content is required")
    if request.language_code and request.language_code not in settings.supported_languages_list:
        raise FraudValidationError(f"Unsupported language: {request.language_code}")
    if request.context_assessment is not None:
        validate_assessment(request.context_assessment.model_dump())


class FraudAssessmentPipeline:
    """
    Composes the scoring services over a single database session.

    The legitimacy classifier is optional: without one (and without an
    OpenAI key) the context component falls back to a neutral assessment.
    """

    def __init__(
        self,
        db: Session,
        classifier: Optional[LegitimacyClassifier] = None,
        alerts: Optional[FraudAlertEvaluator] = None,
        detector: Optional[PatternDetector] = None,
    ):
        self.db = db
        self.keywords = KeywordService(db)
        self.patterns = BehavioralPatternService(db, detector=detector)
        self.contexts = ContextAnalysisService(db)
        self.scores = FraudScoreService(db)
        self.alerts = alerts or alert_evaluator

        if classifier is None and settings.openai_api_key:
            classifier = LegitimacyClassifier()
        self.classifier = classifier

    def _assess_context(self, request: AssessmentRequest, content: str) -> Dict[str, Any]:
        if request.context_assessment is not None:
            return request.context_assessment.model_dump()
        if self.classifier is None:
            logger.debug("No legitimacy classifier configured, using neutral assessment")
            return dict(NEUTRAL_ASSESSMENT)
        return self.classifier.analyze(content, request.business_context)

    @track_assessment
    @log_execution_time("fraudscore.pipeline")
    def assess(self, request: AssessmentRequest) -> Dict[str, Any]:
        validate_request(request)
        token = phone_hash_var.set(request.phone_hash)
        try:
            return self._assess(request)
        finally:
            phone_hash_var.reset(token)

    def _assess(self, request: AssessmentRequest) -> Dict[str, Any]:
        phone_hash = request.phone_hash
        language = request.language_code or settings.default_language

        # 1. Keywords over everything the caller said or wrote
        scanned_text = "\n".join(t for t in (request.call_transcript, request.feedback_content) if t)
        keyword_result = self.keywords.detect_keywords(scanned_text, language)
        keyword_score = calculate_fraud_score_contribution(keyword_result)

        # 2. Context legitimacy, validated before anything is written
        feedback = request.feedback_content or request.call_transcript
        assessment = self._assess_context(request, feedback)
        if assessment.get("language_detected") not in settings.supported_languages_list:
            assessment["language_detected"] = language
        validate_assessment(assessment)

        # 3. Behavioral patterns over the call history
        calls = [CallEvent(**event.model_dump()) for event in request.call_history]
        self.patterns.analyze_calls(phone_hash, calls)
        behavioral_score = self.patterns.calculate_behavioral_score(phone_hash)

        context = self.contexts.record(phone_hash, feedback, assessment, request.business_context)
        context_score = legitimacy_to_context_score(context.legitimacy_score)

        # 4. Composite
        transaction_score = max(0.0, min(float(settings.transaction_weight), request.transaction_score))
        score = self.scores.create(
            phone_hash=phone_hash,
            context_score=context_score,
            keyword_score=keyword_score,
            behavioral_score=behavioral_score,
            transaction_score=transaction_score,
        )

        # 5. Alerts
        alerts = self.alerts.evaluate(score)

        patterns = self.patterns.get_patterns(phone_hash)
        response = FraudScoreService.generate_response(score)
        response["keyword_detection"] = keyword_result.to_dict()
        response["behavioral_analysis"] = self.patterns.generate_response(phone_hash, patterns)
        response["context_analysis"] = context.to_dict()
        response["alerts"] = [a.to_dict() for a in alerts]

        logger.info(
            "Assessment completed",
            score_id=score.id,
            composite=score.composite_score,
            risk_level=score.risk_level,
            alerts=len(alerts),
        )
        return response

    def quick_scan(
        self,
        phone_hash: str,
        content: str,
        language: Optional[str] = None,
        recent_call_count: Optional[int] = None,
        time_window_minutes: int = 30,
    ) -> Dict[str, Any]:
        """
        Keyword scan plus a call-count check, nothing persisted.

        quick score = keyword (as 0-100) * 0.6 + call-count risk (0-30) * 0.4
        """
        if not phone_hash:
            raise FraudValidationError("Phone hash is required")

        keyword_result = self.keywords.detect_keywords(content, language)
        keyword_percent = calculate_fraud_score_contribution(keyword_result) / settings.keyword_weight * 100

        call_risk, flags = 0.0, []
        if recent_call_count:
            window = settings.call_frequency_window_minutes
            scaled_threshold = settings.call_frequency_threshold * time_window_minutes / window
            if recent_call_count > scaled_threshold:
                call_risk = min(30.0, (recent_call_count - scaled_threshold) * 5)
                flags = [
                    f"{recent_call_count} calls in {time_window_minutes} minutes",
                    f"Exceeds threshold of {scaled_threshold:g} calls",
                ]

        quick_score = round(keyword_percent * QUICK_KEYWORD_WEIGHT + call_risk * QUICK_BEHAVIORAL_WEIGHT, 2)
        should_block = quick_score >= QUICK_BLOCK_THRESHOLD

        block_reason = None
        if should_block:
            reasons = []
            if keyword_result.keywords_found:
                reasons.append(f"{len(keyword_result.keywords_found)} red flag keywords detected")
            if flags:
                reasons.append("Suspicious call frequency pattern")
            block_reason = "; ".join(reasons) or "Multiple risk factors detected"

        metrics.increment("quick_scan.total")
        if should_block:
            metrics.increment("quick_scan.blocked")

        return {
            "phone_hash": phone_hash,
            "quick_risk_score": quick_score,
            "risk_level": quick_scan_risk_level(quick_score).value,
            "should_block": should_block,
            "block_reason": block_reason,
            "keyword_matches": len(keyword_result.keywords_found),
            "behavioral_flags": flags,
        }
