import os

# Keep the module-level engine off the working directory during tests
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fraudscore.database import Base, get_db
from fraudscore.models import behavioral_pattern, context_analysis, fraud_score, red_flag_keyword  # noqa: F401
from fraudscore.services.alert_service import alert_evaluator
from fraudscore.services.keyword_service import KeywordService, pattern_cache
from fraudscore.services.pattern_detection import CallEvent
from fraudscore.api.security import rate_limiter


class FakeClassifier:
    """Stands in for the OpenAI legitimacy classifier."""

    def __init__(self, legitimacy_score=90.0, confidence_score=80.0, **extra):
        self.assessment = {
            "legitimacy_score": legitimacy_score,
            "confidence_score": confidence_score,
            "language_detected": "sv",
            "impossible_claims_detected": [],
            "suspicious_patterns": [],
            "reasoning": "test",
        }
        self.assessment.update(extra)
        self.calls = []

    def analyze(self, content, business_context=None):
        self.calls.append((content, business_context))
        return dict(self.assessment)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def test_db(engine):
    """In-memory database session."""
    SessionLocal = sessionmaker(bind=engine, autoflush=False)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def seeded_db(test_db):
    """Session with the default keyword list loaded."""
    KeywordService(test_db).initialize_default_keywords()
    return test_db


@pytest.fixture(autouse=True)
def reset_process_state():
    """Global caches, cooldowns and limits must not leak between tests."""
    pattern_cache.clear()
    alert_evaluator.reset()
    rate_limiter.reset()
    yield


@pytest.fixture
def client(engine):
    """FastAPI test client bound to the in-memory database."""
    from fraudscore.api.server import app

    SessionLocal = sessionmaker(bind=engine, autoflush=False)
    seed = SessionLocal()
    KeywordService(seed).initialize_default_keywords()
    seed.close()

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def fake_classifier():
    return FakeClassifier()


@pytest.fixture
def base_time():
    # A Wednesday, mid-day
    return datetime(2025, 3, 12, 12, 0, 0)


@pytest.fixture
def burst_calls(base_time):
    """Eight calls two minutes apart plus one after a long gap."""
    calls = [CallEvent(timestamp=base_time + timedelta(minutes=2 * i), call_id=f"c{i}") for i in range(8)]
    calls.append(CallEvent(timestamp=base_time + timedelta(hours=5), call_id="late"))
    return calls
