"""
HTTP surface – FastAPI TestClient with the generator / validator swapped for
in-process fakes (no DB, no Gemini).
"""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from api.v1.plans import get_generator_factory, get_validator
from core.generation_controller import GenerationPolicy, PlanGenerator
from core.nutrient_resolver import NutrientResolver
from core.nutrition_validator import NutritionValidator
from main import app

from fakes import TARGETS, WEEK_START, FakeAssigner, FakeReviewer, FakeScorer, recipe, store

BLUEPRINT = {"user_id": "user-1", "diet_type": "omnivore", "targets": TARGETS.model_dump()}
PREFS = {"week_start_date": WEEK_START.isoformat()}


def _factory(recipes=None, assigner=None):
    def _build(user_id: str) -> PlanGenerator:
        return PlanGenerator(
            store(recipes), FakeScorer(), assigner or FakeAssigner(), FakeReviewer(),
            policy=GenerationPolicy(),
        )
    return _build


@pytest.fixture
def client():
    app.dependency_overrides[get_validator] = lambda: NutritionValidator(store(), NutrientResolver())
    app.dependency_overrides[get_generator_factory] = lambda: _factory()
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_generate_accepted(client):
    r = client.post("/api/v1/plans", json={"blueprint": BLUEPRINT, "preferences": PREFS})
    assert r.status_code == 200

    body = r.json()
    assert body["outcome"] == "accepted"
    assert len(body["plan"]["days"]) == 7
    assert body["plan"]["days"][0]["date"] == "2025-01-06"
    assert body["usage"]["calls"] == 3


def test_incomplete_blueprint_is_422(client):
    r = client.post("/api/v1/plans", json={"blueprint": {"user_id": "user-1"}})
    assert r.status_code == 422
    assert r.json()["detail"]["error"]["code"] == "INCOMPLETE_BLUEPRINT"


def test_complete_failure_is_503(client):
    app.dependency_overrides[get_generator_factory] = lambda: _factory(
        recipes=[recipe("slow-stew", prep_time_minutes=90)], assigner=FakeAssigner(["x"] * 3),
    )
    r = client.post("/api/v1/plans", json={"blueprint": BLUEPRINT, "preferences": PREFS})
    assert r.status_code == 503
    assert r.json()["detail"]["error"]["code"] == "COMPLETE_FAILURE"


def test_bad_preferences_rejected_by_schema(client):
    r = client.post(
        "/api/v1/plans",
        json={"blueprint": BLUEPRINT, "preferences": {"max_prep_time": 1}},
    )
    assert r.status_code == 422


def _plan_body(servings: float = 1.0) -> dict:
    return {
        "week_start_date": WEEK_START.isoformat(),
        "days": [{
            "day": "monday",
            "date": WEEK_START.isoformat(),
            "meals": [
                {"meal_type": "breakfast", "recipe_id": "breakfast-0", "servings": servings},
                {"meal_type": "lunch", "recipe_id": "lunch-0", "servings": servings},
                {"meal_type": "dinner", "recipe_id": "dinner-0", "servings": servings},
            ],
        }],
    }


def test_validate_endpoint(client):
    r = client.post(
        "/api/v1/plans/validate",
        json={"plan": _plan_body(), "targets": TARGETS.model_dump(), "detailed_breakdown": True},
    )
    assert r.status_code == 200

    body = r.json()
    assert body["is_valid"] is True
    assert body["daily_average"]["calories"] == 2000
    assert body["detailed_breakdown"][0]["day"] == "monday"


def test_validate_reports_deviation(client):
    r = client.post(
        "/api/v1/plans/validate",
        json={"plan": _plan_body(servings=1.5), "targets": TARGETS.model_dump()},
    )
    body = r.json()
    assert body["is_valid"] is False
    assert body["target_deviations"]["calories"] == 50.0
