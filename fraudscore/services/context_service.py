"""
Context legitimacy store.
Records the classifier's assessment of a piece of feedback. No scoring
happens here; callers turn legitimacy into the 0-40 context component.
"""

from datetime import timedelta
from typing import Dict, Any, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from fraudscore.config import settings
from fraudscore.database import commit_or_raise, utcnow
from fraudscore.errors import FraudValidationError
from fraudscore.models.context_analysis import ContextAnalysis
from fraudscore.utils.logging_config import StructuredLogger

logger = StructuredLogger(__name__)


def legitimacy_to_context_score(legitimacy_score: float) -> float:
    """Map legitimacy (0-100, higher = genuine) to the context component (0-40)."""
    legitimacy = max(0.0, min(100.0, legitimacy_score))
    return round((100 - legitimacy) / 100 * settings.context_weight, 2)


def validate_assessment(assessment: Dict[str, Any]):
    """Raise FraudValidationError unless both scores are in [0, 100] and the language is supported."""
    for name in ("legitimacy", "confidence"):
        value = assessment.get(f"{name}_score")
        if value is None or not 0 <= value <= 100:
            raise FraudValidationError(f"{name.capitalize()} score must be between 0 and 100")

    language = assessment.get("language_detected")
    if language and language not in settings.supported_languages_list:
        raise FraudValidationError(f"Unsupported language: {language}")


class ContextAnalysisService:

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        phone_hash: str,
        feedback_content: str,
        assessment: Dict[str, Any],
        business_context: Optional[Dict[str, Any]] = None,
    ) -> ContextAnalysis:
        validate_assessment(assessment)
        legitimacy = assessment["legitimacy_score"]
        confidence = assessment["confidence_score"]
        language = assessment.get("language_detected")

        analysis = ContextAnalysis(
            phone_hash=phone_hash,
            feedback_content=feedback_content,
            language_detected=language,
            business_context=business_context,
            legitimacy_score=legitimacy,
            confidence_score=confidence,
            impossible_claims_detected=list(assessment.get("impossible_claims_detected") or []),
            suspicious_patterns=list(assessment.get("suspicious_patterns") or []),
            reasoning=assessment.get("reasoning"),
        )
        self.db.add(analysis)
        commit_or_raise(self.db, "create context analysis")
        self.db.refresh(analysis)

        logger.info(
            "Context analysis recorded",
            analysis_id=analysis.id,
            legitimacy=legitimacy,
            confidence=confidence,
        )
        return analysis

    def get_by_phone_hash(self, phone_hash: str) -> List[ContextAnalysis]:
        return (
            self.db.query(ContextAnalysis)
            .filter(ContextAnalysis.phone_hash == phone_hash)
            .order_by(ContextAnalysis.created_at.desc(), ContextAnalysis.id.desc())
            .all()
        )

    def get_latest(self, phone_hash: str) -> Optional[ContextAnalysis]:
        return (
            self.db.query(ContextAnalysis)
            .filter(ContextAnalysis.phone_hash == phone_hash)
            .order_by(ContextAnalysis.created_at.desc(), ContextAnalysis.id.desc())
            .first()
        )

    def get_requiring_review(self, confidence_threshold: float = 60, limit: int = 100) -> List[ContextAnalysis]:
        """Low-confidence analyses, or any that flagged impossible claims or suspicious patterns."""
        rows = (
            self.db.query(ContextAnalysis)
            .order_by(ContextAnalysis.created_at.desc(), ContextAnalysis.id.desc())
            .all()
        )
        flagged = [
            r for r in rows
            if r.confidence_score < confidence_threshold
            or r.impossible_claims_detected
            or r.suspicious_patterns
        ]
        return flagged[:limit]

    def get_statistics(self) -> Dict[str, Any]:
        total, avg_legitimacy, avg_confidence = self.db.query(
            func.count(ContextAnalysis.id),
            func.avg(ContextAnalysis.legitimacy_score),
            func.avg(ContextAnalysis.confidence_score),
        ).one()
        languages = dict(
            self.db.query(ContextAnalysis.language_detected, func.count(ContextAnalysis.id))
            .group_by(ContextAnalysis.language_detected)
            .all()
        )
        return {
            "total_analyses": total,
            "average_legitimacy_score": round(avg_legitimacy or 0.0, 2),
            "average_confidence_score": round(avg_confidence or 0.0, 2),
            "language_distribution": {k or "unknown": v for k, v in languages.items()},
        }

    def delete_older_than(self, days: int) -> int:
        cutoff = utcnow() - timedelta(days=days)
        deleted = (
            self.db.query(ContextAnalysis)
            .filter(ContextAnalysis.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        commit_or_raise(self.db, "delete old context analyses")
        return deleted
