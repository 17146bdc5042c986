"""
Admin API endpoints for FraudScore management.

Includes:
- Red-flag keyword management
- Behavioral pattern review and resolution
- Score, pattern and keyword statistics
- Retention sweeps and metrics
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from fraudscore.api.security import verify_api_token
from fraudscore.config import settings
from fraudscore.database import get_db
from fraudscore.schemas.fraud_schemas import (
    BulkKeywordRequest,
    KeywordCreateRequest,
    KeywordUpdateRequest,
    ResolvePatternRequest,
    ScoreUpdateRequest,
)
from fraudscore.services.alert_service import alert_evaluator
from fraudscore.services.behavioral_service import BehavioralPatternService
from fraudscore.services.context_service import ContextAnalysisService
from fraudscore.services.fraud_score_service import FraudScoreService
from fraudscore.services.keyword_service import KeywordService
from fraudscore.utils.logging_config import metrics


router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(verify_api_token)],
)


def _not_found(what: str):
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found")


# ============== KEYWORDS ==============


@router.get("/keywords")
def list_keywords(
    language: Optional[str] = None,
    category: Optional[str] = None,
    sort_by: str = "severity",
    search: Optional[str] = None,
    db: Session = Depends(get_db),
):
    service = KeywordService(db)
    if search:
        rows = service.search_keywords(search, category=category, language=language)
    else:
        rows = service.get_active_keywords(language=language, category=category, sort_by=sort_by)
    return [r.to_dict() for r in rows]


@router.post("/keywords", status_code=status.HTTP_201_CREATED)
def create_keyword(request: KeywordCreateRequest, db: Session = Depends(get_db)):
    row = KeywordService(db).create_keyword(created_by="admin", **request.model_dump())
    return row.to_dict()


@router.post("/keywords/bulk")
def bulk_create_keywords(request: BulkKeywordRequest, db: Session = Depends(get_db)):
    return KeywordService(db).bulk_create(
        [k.model_dump() for k in request.keywords],
        created_by=request.created_by,
    )


@router.post("/keywords/seed")
def seed_keywords(db: Session = Depends(get_db)):
    created = KeywordService(db).initialize_default_keywords()
    return {"created": created}


@router.get("/keywords/{keyword_id}")
def get_keyword(keyword_id: int, db: Session = Depends(get_db)):
    row = KeywordService(db).get_by_id(keyword_id)
    if row is None:
        _not_found("Keyword")
    return row.to_dict()


@router.patch("/keywords/{keyword_id}")
def update_keyword(keyword_id: int, request: KeywordUpdateRequest, db: Session = Depends(get_db)):
    row = KeywordService(db).update_keyword(keyword_id, **request.model_dump())
    if row is None:
        _not_found("Keyword")
    return row.to_dict()


@router.delete("/keywords/{keyword_id}")
def deactivate_keyword(keyword_id: int, db: Session = Depends(get_db)):
    if not KeywordService(db).deactivate_keyword(keyword_id):
        _not_found("Keyword")
    return {"message": "Keyword deactivated", "id": keyword_id}


# ============== PATTERNS ==============


@router.get("/patterns")
def list_patterns(
    min_risk_score: float = 0,
    max_risk_score: Optional[float] = None,
    pattern_types: Optional[List[str]] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    include_resolved: bool = False,
    db: Session = Depends(get_db),
):
    patterns, total = BehavioralPatternService(db).get_by_risk_level(
        min_risk_score=min_risk_score,
        max_risk_score=max_risk_score,
        pattern_types=pattern_types,
        limit=limit,
        offset=offset,
        include_resolved=include_resolved,
    )
    return {"patterns": [p.to_dict() for p in patterns], "total_count": total}


@router.get("/patterns/critical")
def critical_patterns(
    risk_threshold: Optional[float] = None,
    limit: Optional[int] = None,
    db: Session = Depends(get_db),
):
    rows = BehavioralPatternService(db).get_critical_patterns(risk_threshold=risk_threshold, limit=limit)
    return [p.to_dict() for p in rows]


@router.post("/patterns/{pattern_id}/resolve")
def resolve_pattern(pattern_id: int, request: ResolvePatternRequest, db: Session = Depends(get_db)):
    pattern = BehavioralPatternService(db).resolve_pattern(pattern_id, request.resolution_notes)
    if pattern is None:
        _not_found("Pattern")
    return pattern.to_dict()


# ============== SCORES ==============


@router.get("/scores")
def list_scores(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    risk_level: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    scores, total = FraudScoreService(db).get_by_date_range(
        start_date=start_date,
        end_date=end_date,
        risk_level=risk_level,
        limit=limit,
        offset=offset,
    )
    return {"scores": [s.to_dict() for s in scores], "total_count": total}


@router.post("/scores/bulk")
def bulk_scores(phone_hashes: List[str], db: Session = Depends(get_db)):
    latest = FraudScoreService(db).get_bulk_scores(phone_hashes)
    return {h: s.to_dict() for h, s in latest.items()}


@router.patch("/scores/{score_id}")
def amend_score(score_id: int, request: ScoreUpdateRequest, db: Session = Depends(get_db)):
    changes = {k: v for k, v in request.model_dump().items() if v is not None}
    score = FraudScoreService(db).update(score_id, **changes)
    if score is None:
        _not_found("Fraud score")
    return FraudScoreService.generate_response(score)


# ============== STATISTICS ==============


@router.get("/statistics")
def statistics(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
):
    return {
        "scores": FraudScoreService(db).get_statistics(start_date, end_date),
        "patterns": BehavioralPatternService(db).get_statistics(start_date, end_date),
        "keywords": KeywordService(db).get_statistics(),
        "context": ContextAnalysisService(db).get_statistics(),
    }


@router.get("/context/review")
def context_review(confidence_threshold: float = 60, db: Session = Depends(get_db)):
    rows = ContextAnalysisService(db).get_requiring_review(confidence_threshold)
    return [r.to_dict() for r in rows]


# ============== RETENTION ==============


@router.post("/retention/sweep")
def retention_sweep(days_old: Optional[int] = None, db: Session = Depends(get_db)):
    """Delete expired scores and resolved patterns past retention."""
    return {
        "expired_scores_deleted": FraudScoreService(db).delete_expired(),
        "resolved_patterns_deleted": BehavioralPatternService(db).delete_old_resolved(
            days_old if days_old is not None else settings.pattern_retention_days
        ),
    }


# ============== METRICS ==============


@router.get("/metrics")
async def get_metrics():
    """Get current application metrics."""
    return metrics.get_stats()


@router.post("/metrics/reset")
async def reset_metrics():
    """Reset all metrics and alert cooldowns."""
    metrics.reset()
    alert_evaluator.reset()
    return {"message": "Metrics reset"}
