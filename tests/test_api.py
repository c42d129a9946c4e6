"""
Tests for the HTTP surface (consolidation/api.py)

Run: python -m pytest tests/test_api.py -q
"""

import pytest
from fastapi.testclient import TestClient

import consolidation.api as api
from consolidation.configs.default_config import build_default_config
from consolidation.core.errors import ClassifierUnavailableError
from consolidation.core.models import OverlapType, SimilarityMatch
from consolidation.core.orchestrator import ConsolidationOrchestrator
from tests.fakes import FakeClassifier

CANDIDATE = {"narrative": "As a member, I want to cancel my reservation", "persona": "member", "priority": "P0"}
EXISTING = [{"id": "ES-1", "narrative": "As a member, I want to cancel a table reservation", "persona": "member"}]
CONTEXT = {"name": "Reservations", "description": "Table booking"}


@pytest.fixture
def fake():
    return FakeClassifier()


@pytest.fixture
def client(monkeypatch, fake):
    monkeypatch.delenv("CONSOLIDATION_VALIDATE_MODELS", raising=False)
    monkeypatch.setattr(
        api, "build_orchestrator",
        lambda: ConsolidationOrchestrator(build_default_config({}), classifier=fake),
    )
    with TestClient(api.app) as c:
        yield c


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "running"

    def test_consolidate_description(self, client):
        body = client.get("/consolidate").json()
        assert body["method"] == "POST"
        assert set(body["response"]) == {"to_create", "to_merge", "to_skip", "summary"}


class TestConsolidateEndpoint:
    def test_skip_proposal(self, client, fake):
        fake.proposal = {"to_skip": [{"candidate_ref": "G1", "duplicate_of": "ES-1", "reason": "same"}]}
        resp = client.post("/consolidate", json={
            "candidates": [CANDIDATE], "existing": EXISTING, "context": CONTEXT,
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["summary"] == {
            "total_generated": 1, "new_stories": 0, "merges_suggested": 0, "duplicates_found": 1,
        }
        assert body["data"]["to_skip"][0]["duplicate_of"] == "ES-1"
        assert body["metadata"] == {"grouping_name": "Reservations", "existing_count": 1, "candidate_count": 1}

    def test_classifier_down_still_succeeds(self, client, fake):
        fake.error = ClassifierUnavailableError("connection refused")
        resp = client.post("/consolidate", json={
            "candidates": [CANDIDATE], "existing": EXISTING, "context": CONTEXT,
        })
        assert resp.status_code == 200
        assert resp.json()["data"]["summary"]["new_stories"] == 1

    def test_empty_candidates_is_400(self, client):
        resp = client.post("/consolidate", json={"candidates": [], "existing": EXISTING, "context": CONTEXT})
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    def test_missing_context_is_400(self, client):
        resp = client.post("/consolidate", json={"candidates": [CANDIDATE], "existing": EXISTING})
        assert resp.status_code == 400
        assert "grouping context" in resp.json()["error"]

    def test_malformed_body_is_400(self, client):
        resp = client.post("/consolidate", json={
            "candidates": [{"persona": "member"}], "existing": [], "context": CONTEXT,
        })
        assert resp.status_code == 400
        assert resp.json()["error"].startswith("Invalid request body")

    def test_unexpected_error_is_500(self, client, monkeypatch):
        class Broken:
            def consolidate(self, *args):
                raise KeyError("boom")

        monkeypatch.setattr(api, "build_orchestrator", lambda: Broken())
        resp = client.post("/consolidate", json={
            "candidates": [CANDIDATE], "existing": EXISTING, "context": CONTEXT,
        })
        assert resp.status_code == 500
        assert resp.json() == {"success": False, "error": "Failed to consolidate stories"}


class TestOtherEndpoints:
    def test_check_duplicates(self, client, fake):
        fake.matches = [SimilarityMatch(
            existing_item_id="ES-1",
            narrative=EXISTING[0]["narrative"],
            similarity_score=90,
            overlap_type=OverlapType.EXACT_DUPLICATE,
        )]
        resp = client.post("/check-duplicates", json={"candidate": CANDIDATE, "existing": EXISTING})
        data = resp.json()["data"]
        assert data["recommendation"] == "skip_duplicate"
        assert data["has_potential_duplicates"] is True

    def test_check_duplicates_threshold_out_of_range(self, client):
        resp = client.post("/check-duplicates", json={"candidate": CANDIDATE, "existing": [], "threshold": 150})
        assert resp.status_code == 400

    def test_merge_falls_back(self, client, fake):
        fake.error = ClassifierUnavailableError("down")
        resp = client.post("/merge", json={
            "a": {"narrative": "As a member, I want to view my reservations", "persona": "member"},
            "b": {"narrative": "As a member, I want to see upcoming bookings", "persona": "member"},
        })
        merged = resp.json()["data"]["merged_narrative"]
        assert merged == "As a member, I want to view my reservations. Additionally, I want to see upcoming bookings"

    def test_quick_score(self, client):
        resp = client.post("/quick-score", json={
            "text_a": "I want a reservation", "text_b": "I would like a reservation",
        })
        assert resp.json()["score"] >= 80
