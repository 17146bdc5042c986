from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator
from typing import Dict, List, Optional, Any


class CallEventIn(BaseModel):
    """One call in the recent history of a phone hash."""
    timestamp: datetime
    call_id: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    transcript: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def _to_naive_utc(cls, value: datetime) -> datetime:
        # Stored timestamps are naive UTC
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class ContextAssessmentIn(BaseModel):
    """A legitimacy assessment produced upstream (skips the classifier)."""
    legitimacy_score: float = Field(ge=0, le=100)
    confidence_score: float = Field(ge=0, le=100)
    language_detected: Optional[str] = None
    impossible_claims_detected: List[str] = []
    suspicious_patterns: List[str] = []
    reasoning: Optional[str] = None


class AssessmentRequest(BaseModel):
    phone_hash: str = ""
    call_transcript: Optional[str] = None
    feedback_content: Optional[str] = None
    language_code: Optional[str] = None
    call_history: List[CallEventIn] = []
    business_context: Optional[Dict[str, Any]] = None
    context_assessment: Optional[ContextAssessmentIn] = None
    transaction_score: float = 0.0  # supplied by the caller, clamped to 0-10


class QuickScanRequest(BaseModel):
    phone_hash: str
    content: str
    language_code: Optional[str] = None
    recent_call_count: Optional[int] = Field(default=None, ge=0)
    time_window_minutes: int = Field(default=30, gt=0)


class KeywordDetectRequest(BaseModel):
    content: str
    language_code: Optional[str] = None


class ScoreCreateRequest(BaseModel):
    phone_hash: str
    context_score: float = 0.0
    keyword_score: float = 0.0
    behavioral_score: float = 0.0
    transaction_score: float = 0.0
    analysis_version: Optional[str] = None
    expires_at: Optional[datetime] = None


class ScoreUpdateRequest(BaseModel):
    context: Optional[float] = None
    keyword: Optional[float] = None
    behavioral: Optional[float] = None
    transaction: Optional[float] = None


class KeywordCreateRequest(BaseModel):
    keyword: str
    category: str
    severity_level: int
    language_code: Optional[str] = None
    detection_pattern: Optional[str] = None


class KeywordUpdateRequest(BaseModel):
    severity_level: Optional[int] = None
    detection_pattern: Optional[str] = None
    category: Optional[str] = None
    is_active: Optional[bool] = None


class BulkKeywordRequest(BaseModel):
    keywords: List[KeywordCreateRequest]
    created_by: str = "admin"


class ResolvePatternRequest(BaseModel):
    resolution_notes: str


class QuickScanResponse(BaseModel):
    phone_hash: str
    quick_risk_score: float
    risk_level: str
    should_block: bool
    block_reason: Optional[str] = None
    keyword_matches: int
    behavioral_flags: List[str]
