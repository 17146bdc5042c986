"""
Composite fraud scorer.
Combines the four component scores into a persisted FraudScore with
derived risk tier, fraud probability and confidence.
"""

from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from fraudscore.config import settings
from fraudscore.database import commit_or_raise, utcnow
from fraudscore.errors import FraudValidationError
from fraudscore.models.fraud_score import FraudScore
from fraudscore.utils.confidence import calculate_confidence_level
from fraudscore.utils.explainability import contributing_factors, factors_to_dicts, recommendations
from fraudscore.utils.logging_config import StructuredLogger, metrics
from fraudscore.utils.risk_levels import RiskLevel, derive_risk_level, is_fraudulent

logger = StructuredLogger(__name__)

COMPONENT_FIELDS = {
    "context": "context_score",
    "keyword": "keyword_score",
    "behavioral": "behavioral_score",
    "transaction": "transaction_score",
}


def validate_components(components: Dict[str, float]):
    """Raise FraudValidationError if any component is outside [0, max]."""
    weights = settings.component_weights
    for component, value in components.items():
        max_score = weights[component]
        if value is None or not 0 <= value <= max_score:
            raise FraudValidationError(
                f"{component.capitalize()} score must be between 0 and {max_score}"
            )


def derive_fields(components: Dict[str, float]) -> Dict[str, Any]:
    """Every field that follows from the four components."""
    composite = sum(components.values())
    return {
        "composite_score": composite,
        "risk_level": derive_risk_level(composite).value,
        "fraud_probability": min(composite / 100, 1.0),
        "confidence_level": calculate_confidence_level(components),
    }


def _apply_derived(score: FraudScore):
    for name, value in derive_fields(score.components).items():
        setattr(score, name, value)


class FraudScoreService:
    """FraudScore store bound to a database session."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        phone_hash: str,
        context_score: float = 0.0,
        keyword_score: float = 0.0,
        behavioral_score: float = 0.0,
        transaction_score: float = 0.0,
        analysis_version: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> FraudScore:
        if not phone_hash:
            raise FraudValidationError("phone_hash is required")

        components = {
            "context": context_score,
            "keyword": keyword_score,
            "behavioral": behavioral_score,
            "transaction": transaction_score,
        }
        validate_components(components)

        if expires_at is None and settings.score_ttl_hours > 0:
            expires_at = utcnow() + timedelta(hours=settings.score_ttl_hours)

        score = FraudScore(
            phone_hash=phone_hash,
            context_score=context_score,
            keyword_score=keyword_score,
            behavioral_score=behavioral_score,
            transaction_score=transaction_score,
            analysis_version=analysis_version or settings.analysis_version,
            expires_at=expires_at,
        )
        _apply_derived(score)

        self.db.add(score)
        commit_or_raise(self.db, "create fraud score")
        self.db.refresh(score)

        metrics.increment("fraud_scores.created")
        metrics.increment(f"fraud_scores.risk.{score.risk_level}")
        logger.info(
            "Fraud score created",
            score_id=score.id,
            composite=score.composite_score,
            risk_level=score.risk_level,
        )
        return score

    def update(self, score_id: int, **components: float) -> Optional[FraudScore]:
        """
        Amend component scores and recompute every derived field.

        Keyword arguments are component names (context, keyword,
        behavioral, transaction); anything else is rejected.
        """
        unknown = set(components) - set(COMPONENT_FIELDS)
        if unknown:
            raise FraudValidationError(f"Unknown score components: {', '.join(sorted(unknown))}")
        validate_components(components)

        score = self.get_by_id(score_id)
        if score is None:
            return None

        for component, value in components.items():
            setattr(score, COMPONENT_FIELDS[component], value)
        _apply_derived(score)

        commit_or_raise(self.db, "update fraud score")
        self.db.refresh(score)
        logger.info("Fraud score updated", score_id=score.id, composite=score.composite_score)
        return score

    # ==================== READS ====================

    def get_by_id(self, score_id: int) -> Optional[FraudScore]:
        return self.db.query(FraudScore).filter(FraudScore.id == score_id).first()

    def get_by_phone_hash(self, phone_hash: str) -> Optional[FraudScore]:
        """Most recent score for the phone hash, expired or not."""
        return (
            self.db.query(FraudScore)
            .filter(FraudScore.phone_hash == phone_hash)
            .order_by(FraudScore.created_at.desc(), FraudScore.id.desc())
            .first()
        )

    def get_history(self, phone_hash: str, limit: int = 50) -> List[FraudScore]:
        return (
            self.db.query(FraudScore)
            .filter(FraudScore.phone_hash == phone_hash)
            .order_by(FraudScore.created_at.desc(), FraudScore.id.desc())
            .limit(limit)
            .all()
        )

    def get_active_score(self, phone_hash: str) -> Optional[FraudScore]:
        """Most recent score that has not expired."""
        now = utcnow()
        return (
            self.db.query(FraudScore)
            .filter(
                FraudScore.phone_hash == phone_hash,
                or_(FraudScore.expires_at.is_(None), FraudScore.expires_at > now),
            )
            .order_by(FraudScore.created_at.desc(), FraudScore.id.desc())
            .first()
        )

    def get_by_date_range(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        risk_level: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[FraudScore], int]:
        query = self.db.query(FraudScore)
        if start_date:
            query = query.filter(FraudScore.created_at >= start_date)
        if end_date:
            query = query.filter(FraudScore.created_at <= end_date)
        if risk_level:
            if risk_level not in [level.value for level in RiskLevel]:
                raise FraudValidationError(f"Invalid risk level: {risk_level}")
            query = query.filter(FraudScore.risk_level == risk_level)

        total = query.count()
        scores = (
            query.order_by(FraudScore.created_at.desc(), FraudScore.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return scores, total

    def get_bulk_scores(self, phone_hashes: List[str]) -> Dict[str, FraudScore]:
        """Newest score per phone hash; hashes without a score are omitted."""
        if not phone_hashes:
            return {}
        rows = (
            self.db.query(FraudScore)
            .filter(FraudScore.phone_hash.in_(phone_hashes))
            .order_by(FraudScore.created_at.desc(), FraudScore.id.desc())
            .all()
        )
        latest: Dict[str, FraudScore] = {}
        for row in rows:
            latest.setdefault(row.phone_hash, row)
        return latest

    def get_statistics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        query = self.db.query(FraudScore)
        if start_date:
            query = query.filter(FraudScore.created_at >= start_date)
        if end_date:
            query = query.filter(FraudScore.created_at <= end_date)
        rows = query.all()

        distribution = {level.value: 0 for level in RiskLevel}
        for row in rows:
            distribution[row.risk_level] = distribution.get(row.risk_level, 0) + 1

        total = len(rows)

        def _avg(field_name: str) -> float:
            if not total:
                return 0.0
            return round(sum(getattr(r, field_name) for r in rows) / total, 2)

        return {
            "total_scores": total,
            "fraudulent_count": sum(1 for r in rows if is_fraudulent(r.composite_score)),
            "risk_level_distribution": distribution,
            "average_score": _avg("composite_score"),
            "average_context_score": _avg("context_score"),
            "average_keyword_score": _avg("keyword_score"),
            "average_behavioral_score": _avg("behavioral_score"),
            "average_transaction_score": _avg("transaction_score"),
        }

    # ==================== LIFECYCLE ====================

    def delete_expired(self) -> int:
        deleted = (
            self.db.query(FraudScore)
            .filter(FraudScore.expires_at.isnot(None), FraudScore.expires_at < utcnow())
            .delete(synchronize_session=False)
        )
        commit_or_raise(self.db, "delete expired fraud scores")
        logger.info("Expired fraud scores deleted", deleted=deleted)
        return deleted

    # ==================== RESPONSE ====================

    @staticmethod
    def generate_response(score: FraudScore) -> Dict[str, Any]:
        components = score.components
        factors = contributing_factors(components)
        return {
            "phone_hash": score.phone_hash,
            "is_fraudulent": is_fraudulent(score.composite_score),
            "fraud_score": score.to_dict(),
            "contributing_factors": factors_to_dicts(factors),
            "recommendations": recommendations(
                score.composite_score,
                components,
                score.confidence_level,
            ),
        }
