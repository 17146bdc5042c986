"""Tests for the FastAPI endpoints."""

import pytest

from fraudscore.config import settings


@pytest.fixture(autouse=True)
def no_classifier(monkeypatch):
    """API tests never reach OpenAI; context falls back to neutral."""
    monkeypatch.setattr(settings, "openai_api_key", None)


def _create_score(client, phone_hash="hash-api", **components):
    body = {"phone_hash": phone_hash}
    body.update(components)
    response = client.post("/fraud/scores", json=body)
    assert response.status_code == 201
    return response.json()


class TestHealthEndpoint:
    """Tests for /health and /status."""

    def test_health_returns_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_status_reports_scoring_config(self, client):
        data = client.get("/status").json()
        assert data["component_weights"] == {"context": 40, "keyword": 20, "behavioral": 30, "transaction": 10}
        assert data["risk_thresholds"] == {"critical": 85.0, "high": 70.0, "medium": 40.0}
        assert data["classifier_enabled"] is False

    def test_security_headers(self, client):
        response = client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_request_id_generated(self, client):
        response = client.get("/health")
        assert len(response.headers["X-Request-ID"]) == 32

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"


class TestAnalyzeEndpoint:
    """Tests for /fraud/analyze."""

    def test_analyze_success(self, client):
        response = client.post("/fraud/analyze", json={
            "phone_hash": "hash-api",
            "call_transcript": "bomb helvete",
            "feedback_content": "Maten var god",
            "language_code": "sv",
        })
        assert response.status_code == 200
        data = response.json()
        assert data["fraud_score"]["keyword_score"] == 8
        assert data["fraud_score"]["context_score"] == 0.0
        assert data["fraud_score"]["risk_level"] == "low"
        assert data["is_fraudulent"] is False
        assert len(data["contributing_factors"]) == 4
        assert "alerts" in data

    def test_analyze_with_call_history(self, client):
        history = [{"timestamp": f"2025-03-12T12:{2 * i:02d}:00Z"} for i in range(8)]
        response = client.post("/fraud/analyze", json={
            "phone_hash": "hash-api",
            "feedback_content": "Bra",
            "call_history": history,
        })
        assert response.status_code == 200
        assert response.json()["fraud_score"]["behavioral_score"] == 10.5

    def test_analyze_missing_content(self, client):
        response = client.post("/fraud/analyze", json={"phone_hash": "hash-api"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Either call transcript or feedback content is required"

    def test_analyze_missing_phone_hash(self, client):
        response = client.post("/fraud/analyze", json={"feedback_content": "Bra"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Phone hash is required"

    def test_analyze_bad_language(self, client):
        response = client.post("/fraud/analyze", json={
            "phone_hash": "hash-api",
            "feedback_content": "Bra",
            "language_code": "de",
        })
        assert response.status_code == 400

    def test_analyze_invalid_context_assessment(self, client):
        response = client.post("/fraud/analyze", json={
            "phone_hash": "hash-api",
            "feedback_content": "Bra",
            "context_assessment": {"legitimacy_score": 150, "confidence_score": 50},
        })
        assert response.status_code == 422

    def test_analyze_unsupported_context_language_writes_nothing(self, client):
        history = [{"timestamp": f"2025-03-12T12:{2 * i:02d}:00"} for i in range(8)]
        response = client.post("/fraud/analyze", json={
            "phone_hash": "hash-api",
            "feedback_content": "Bra",
            "call_history": history,
            "context_assessment": {"legitimacy_score": 80, "confidence_score": 90, "language_detected": "fi"},
        })
        assert response.status_code == 400
        assert response.json()["detail"] == "Unsupported language: fi"

        assert client.get("/fraud/patterns/hash-api").json()["patterns"] == []
        assert client.get("/fraud/scores/hash-api").status_code == 404


class TestQuickScanEndpoint:

    def test_quick_scan(self, client):
        response = client.post("/fraud/quick-scan", json={
            "phone_hash": "hash-api",
            "content": "bomb helvete",
            "recent_call_count": 12,
        })
        assert response.status_code == 200
        data = response.json()
        assert data["quick_risk_score"] == 36.0
        assert data["should_block"] is False
        assert data["keyword_matches"] == 2

    def test_quick_scan_requires_content(self, client):
        response = client.post("/fraud/quick-scan", json={"phone_hash": "hash-api"})
        assert response.status_code == 422


class TestScoreEndpoints:

    def test_create_and_fetch(self, client):
        created = _create_score(client, context_score=30, keyword_score=15, behavioral_score=20, transaction_score=5)
        assert created["fraud_score"]["composite_score"] == 70
        assert created["is_fraudulent"] is True

        response = client.get("/fraud/scores/hash-api")
        assert response.status_code == 200
        assert response.json()["fraud_score"]["id"] == created["fraud_score"]["id"]

    def test_unknown_phone_hash(self, client):
        response = client.get("/fraud/scores/nobody")
        assert response.status_code == 404

    def test_active_only_skips_expired(self, client):
        _create_score(client, expires_at="2000-01-01T00:00:00")
        assert client.get("/fraud/scores/hash-api").status_code == 200
        assert client.get("/fraud/scores/hash-api", params={"active_only": True}).status_code == 404

    def test_component_out_of_range(self, client):
        response = client.post("/fraud/scores", json={"phone_hash": "hash-api", "context_score": 45})
        assert response.status_code == 400
        assert "Context score" in response.json()["detail"]


class TestKeywordDetectEndpoint:

    def test_detect(self, client):
        response = client.post("/fraud/keywords/detect", json={"content": "bomb helvete", "language_code": "sv"})
        assert response.status_code == 200
        data = response.json()
        assert data["total_severity_score"] == 15
        assert data["fraud_score_contribution"] == 8


class TestPatternEndpoint:

    def test_patterns_after_analysis(self, client):
        history = [{"timestamp": f"2025-03-12T12:{2 * i:02d}:00"} for i in range(8)]
        client.post("/fraud/analyze", json={
            "phone_hash": "hash-api",
            "feedback_content": "Bra",
            "call_history": history,
        })

        response = client.get("/fraud/patterns/hash-api")
        assert response.status_code == 200
        data = response.json()
        assert data["time_window_analyzed"] == "24h"
        assert [p["pattern_type"] for p in data["patterns"]] == ["call_frequency"]
        assert data["overall_risk_level"] == "medium"

    def test_invalid_time_window(self, client):
        response = client.get("/fraud/patterns/hash-api", params={"time_window": "2w"})
        assert response.status_code == 400
        assert "Invalid time window format" in response.json()["detail"]


class TestSecurity:

    def test_api_key_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "api_token", "secret")

        assert client.post("/fraud/keywords/detect", json={"content": "x"}).status_code == 401
        assert client.post(
            "/fraud/keywords/detect", json={"content": "x"}, headers={"X-API-Key": "wrong"}
        ).status_code == 401
        assert client.post(
            "/fraud/keywords/detect", json={"content": "x"}, headers={"X-API-Key": "secret"}
        ).status_code == 200
        # health stays open
        assert client.get("/health").status_code == 200

    def test_admin_requires_key(self, client, monkeypatch):
        monkeypatch.setattr(settings, "api_token", "secret")
        assert client.get("/admin/keywords").status_code == 401

    def test_rate_limit(self, client, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_requests", 2)

        first = client.post("/fraud/keywords/detect", json={"content": "x"})
        assert first.headers["X-RateLimit-Remaining"] == "1"
        client.post("/fraud/keywords/detect", json={"content": "x"})
        response = client.post("/fraud/keywords/detect", json={"content": "x"})
        assert response.status_code == 429
        assert "Retry-After" in response.headers


class TestAdminKeywords:

    def test_keyword_lifecycle(self, client):
        response = client.post("/admin/keywords", json={
            "keyword": "lotto",
            "category": "impossible",
            "severity_level": 6,
        })
        assert response.status_code == 201
        keyword_id = response.json()["id"]

        duplicate = client.post("/admin/keywords", json={
            "keyword": "lotto",
            "category": "impossible",
            "severity_level": 6,
        })
        assert duplicate.status_code == 400
        assert duplicate.json()["detail"] == "Keyword already exists"

        patched = client.patch(f"/admin/keywords/{keyword_id}", json={"severity_level": 9})
        assert patched.json()["severity_level"] == 9

        assert client.delete(f"/admin/keywords/{keyword_id}").status_code == 200
        assert client.get(f"/admin/keywords/{keyword_id}").json()["is_active"] is False

    def test_missing_keyword(self, client):
        assert client.get("/admin/keywords/9999").status_code == 404
        assert client.patch("/admin/keywords/9999", json={"severity_level": 5}).status_code == 404
        assert client.delete("/admin/keywords/9999").status_code == 404

    def test_list_and_search(self, client):
        listed = client.get("/admin/keywords", params={"category": "profanity"}).json()
        assert {k["keyword"] for k in listed} == {"helvete", "fan", "skit"}

        found = client.get("/admin/keywords", params={"search": "bomb"}).json()
        assert [k["keyword"] for k in found] == ["bomb"]

    def test_bulk_and_seed(self, client):
        response = client.post("/admin/keywords/bulk", json={"keywords": [
            {"keyword": "ett", "category": "threats", "severity_level": 5},
            {"keyword": "bomb", "category": "threats", "severity_level": 5},
        ]})
        assert response.json()["created"] == 1
        assert len(response.json()["errors"]) == 1

        assert client.post("/admin/keywords/seed").json() == {"created": 0}


class TestAdminPatternsAndScores:

    def _analyze_burst(self, client, phone_hash="hash-api"):
        history = [{"timestamp": f"2025-03-12T12:{2 * i:02d}:00"} for i in range(8)]
        client.post("/fraud/analyze", json={
            "phone_hash": phone_hash,
            "feedback_content": "Bra",
            "call_history": history,
        })

    def test_list_and_resolve_patterns(self, client):
        self._analyze_burst(client)

        data = client.get("/admin/patterns", params={"min_risk_score": 30}).json()
        assert data["total_count"] == 1
        pattern_id = data["patterns"][0]["id"]

        assert client.post(f"/admin/patterns/{pattern_id}/resolve", json={"resolution_notes": ""}).status_code == 400
        resolved = client.post(f"/admin/patterns/{pattern_id}/resolve", json={"resolution_notes": "verified caller"})
        assert resolved.json()["is_resolved"] is True

        assert client.get("/admin/patterns").json()["total_count"] == 0
        assert client.post("/admin/patterns/9999/resolve", json={"resolution_notes": "x"}).status_code == 404

    def test_critical_patterns_empty(self, client):
        self._analyze_burst(client)
        assert client.get("/admin/patterns/critical").json() == []

    def test_bulk_scores(self, client):
        _create_score(client, "a", context_score=5)
        latest = _create_score(client, "a", context_score=10)

        data = client.post("/admin/scores/bulk", json=["a", "b"]).json()
        assert list(data) == ["a"]
        assert data["a"]["id"] == latest["fraud_score"]["id"]

    def test_amend_score(self, client):
        created = _create_score(client, context_score=10)
        score_id = created["fraud_score"]["id"]

        response = client.patch(f"/admin/scores/{score_id}", json={"keyword": 20, "behavioral": 30, "transaction": 10})
        assert response.status_code == 200
        data = response.json()
        assert data["fraud_score"]["composite_score"] == 70
        assert data["fraud_score"]["risk_level"] == "high"

        assert client.patch("/admin/scores/9999", json={"keyword": 1}).status_code == 404

    def test_list_scores_by_risk_level(self, client):
        _create_score(client, context_score=40, keyword_score=20, behavioral_score=30)
        _create_score(client, context_score=1)

        data = client.get("/admin/scores", params={"risk_level": "critical"}).json()
        assert data["total_count"] == 1
        assert client.get("/admin/scores", params={"risk_level": "bogus"}).status_code == 400

    def test_statistics(self, client):
        self._analyze_burst(client)
        data = client.get("/admin/statistics").json()

        assert data["scores"]["total_scores"] == 1
        assert data["patterns"]["total_patterns"] == 1
        assert data["keywords"]["active_keywords"] == 16
        assert data["context"]["total_analyses"] == 1

    def test_context_review_lists_neutral_fallbacks(self, client):
        self._analyze_burst(client)
        rows = client.get("/admin/context/review").json()
        assert rows[0]["suspicious_patterns"] == ["classifier_unavailable"]

    def test_retention_sweep(self, client):
        _create_score(client, expires_at="2000-01-01T00:00:00")
        _create_score(client)

        data = client.post("/admin/retention/sweep").json()
        assert data == {"expired_scores_deleted": 1, "resolved_patterns_deleted": 0}

    def test_metrics(self, client):
        client.post("/fraud/analyze", json={"phone_hash": "hash-api", "feedback_content": "Bra"})
        data = client.get("/admin/metrics").json()
        assert data["counters"]["api.requests.analyze"] >= 1
        assert data["counters"]["assessment.total"] >= 1
        assert "uptime_seconds" in data

        assert client.post("/admin/metrics/reset").json() == {"message": "Metrics reset"}
        assert client.get("/admin/metrics").json()["counters"] == {}
