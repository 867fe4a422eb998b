# tests/test_payloads.py
from __future__ import annotations

from core.payloads import (
    AssemblyPayload,
    Malformed,
    Ok,
    ReviewPayload,
    ScoringPayload,
    parse_payload,
)


def test_json_inside_prose_and_fences():
    raw = 'Sure! Here you go:\n```json\n{"rating": 8, "feedback": "Nice"}\n```\nEnjoy.'
    parsed = parse_payload(raw, ReviewPayload)
    assert isinstance(parsed, Ok)
    assert parsed.value.rating == 8


def test_already_decoded_dict_accepted():
    parsed = parse_payload({"recipe_scores": {"a": {"score": 120}, "b": {"score": None}}}, ScoringPayload)
    assert isinstance(parsed, Ok)
    # scores are clamped and null means neutral
    assert parsed.value.recipe_scores["a"].score == 100
    assert parsed.value.recipe_scores["b"].score == 50


def test_out_of_range_rating_is_malformed():
    parsed = parse_payload('{"rating": 42}', ReviewPayload)
    assert isinstance(parsed, Malformed)
    assert "rating" in parsed.reason


def test_no_json_is_malformed():
    parsed = parse_payload("I could not build a plan.", AssemblyPayload)
    assert isinstance(parsed, Malformed)
    assert parsed.raw == "I could not build a plan."


def test_meal_types_normalised():
    parsed = parse_payload(
        {"days": [{"day": "monday", "meals": [{"meal_type": " Dinner ", "recipe_id": "r1"}]}]},
        AssemblyPayload,
    )
    assert parsed.value.days[0].meals[0].meal_type == "dinner"
    assert parsed.value.week_theme is None
