import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from fraudscore.config import settings
from fraudscore.database import SessionLocal, Base, engine, get_db
from fraudscore.errors import FraudValidationError, StorageError
from fraudscore.models import behavioral_pattern, context_analysis, fraud_score, red_flag_keyword  # noqa: F401
from fraudscore.schemas.fraud_schemas import (
    AssessmentRequest,
    KeywordDetectRequest,
    QuickScanRequest,
    QuickScanResponse,
    ScoreCreateRequest,
)
from fraudscore.pipelines.assessment_pipeline import FraudAssessmentPipeline
from fraudscore.services.behavioral_service import BehavioralPatternService
from fraudscore.services.fraud_score_service import FraudScoreService
from fraudscore.services.keyword_service import KeywordService, calculate_fraud_score_contribution
from fraudscore.api.security import verify_api_token, check_rate_limit
from fraudscore.api.admin import router as admin_router
from fraudscore.utils.logging_config import metrics, StructuredLogger, init_logging, request_id_var

VERSION = "1.0.0"

# Initialize structured logging
init_logging()

logger = StructuredLogger(__name__)

Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = SessionLocal()
    try:
        KeywordService(db).initialize_default_keywords()
    finally:
        db.close()
    yield


app = FastAPI(
    title="FraudScore API",
    version=VERSION,
    description="Composite fraud scoring for customer feedback calls",
    docs_url="/docs" if settings.debug else None,  # Disable docs in production
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["*"],
)


@app.middleware("http")
async def assign_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    if settings.is_production:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


@app.middleware("http")
async def add_rate_limit_headers(request: Request, call_next):
    response = await call_next(request)
    if hasattr(request.state, "rate_limit_remaining"):
        response.headers["X-RateLimit-Limit"] = str(request.state.rate_limit_limit)
        response.headers["X-RateLimit-Remaining"] = str(request.state.rate_limit_remaining)
    return response


@app.exception_handler(FraudValidationError)
async def validation_error_handler(request: Request, exc: FraudValidationError):
    metrics.increment("api.errors.validation")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    metrics.increment("api.errors.storage")
    logger.error("Storage failure", action=exc.action, error=str(exc.cause))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": f"Failed to {exc.action}"},
    )


app.include_router(admin_router)

protected = [Depends(verify_api_token), Depends(check_rate_limit)]


def get_pipeline(db: Session = Depends(get_db)) -> FraudAssessmentPipeline:
    return FraudAssessmentPipeline(db)


@app.get("/health")
def health():
    """Health check endpoint - no auth required."""
    return {"status": "ok"}


@app.get("/status")
def status_info():
    """API status and scoring configuration."""
    return {
        "status": "ok",
        "version": VERSION,
        "analysis_version": settings.analysis_version,
        "environment": settings.environment,
        "auth_enabled": bool(settings.api_token),
        "classifier_enabled": bool(settings.openai_api_key),
        "rate_limit": {
            "requests": settings.rate_limit_requests,
            "window_seconds": settings.rate_limit_window,
        },
        "component_weights": settings.component_weights,
        "risk_thresholds": {
            "critical": settings.critical_risk_threshold,
            "high": settings.high_risk_threshold,
            "medium": settings.medium_risk_threshold,
        },
    }


@app.post("/fraud/analyze", dependencies=protected)
def analyze(request: AssessmentRequest, pipeline: FraudAssessmentPipeline = Depends(get_pipeline)):
    """Full assessment: keywords, behavioral patterns, context, composite score and alerts."""
    metrics.increment("api.requests.analyze")
    return pipeline.assess(request)


@app.post("/fraud/quick-scan", response_model=QuickScanResponse, dependencies=protected)
def quick_scan(request: QuickScanRequest, pipeline: FraudAssessmentPipeline = Depends(get_pipeline)):
    metrics.increment("api.requests.quick_scan")
    return pipeline.quick_scan(
        phone_hash=request.phone_hash,
        content=request.content,
        language=request.language_code,
        recent_call_count=request.recent_call_count,
        time_window_minutes=request.time_window_minutes,
    )


@app.get("/fraud/scores/{phone_hash}", dependencies=protected)
def get_score(phone_hash: str, active_only: bool = False, db: Session = Depends(get_db)):
    service = FraudScoreService(db)
    score = service.get_active_score(phone_hash) if active_only else service.get_by_phone_hash(phone_hash)
    if score is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No fraud score for phone hash")
    return FraudScoreService.generate_response(score)


@app.post("/fraud/scores", status_code=status.HTTP_201_CREATED, dependencies=protected)
def create_score(request: ScoreCreateRequest, db: Session = Depends(get_db)):
    """Persist a score from precomputed components."""
    score = FraudScoreService(db).create(**request.model_dump())
    return FraudScoreService.generate_response(score)


@app.post("/fraud/keywords/detect", dependencies=protected)
def detect_keywords(request: KeywordDetectRequest, db: Session = Depends(get_db)):
    result = KeywordService(db).detect_keywords(request.content, request.language_code)
    response = result.to_dict()
    response["fraud_score_contribution"] = calculate_fraud_score_contribution(result)
    return response


@app.get("/fraud/patterns/{phone_hash}", dependencies=protected)
def get_patterns(
    phone_hash: str,
    time_window: str = "24h",
    include_resolved: bool = False,
    db: Session = Depends(get_db),
):
    service = BehavioralPatternService(db)
    patterns = service.get_patterns(phone_hash, time_window=time_window, include_resolved=include_resolved)
    return service.generate_response(phone_hash, patterns, time_window)
