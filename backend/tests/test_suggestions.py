"""Tests for suggestions.py."""

import pytest

import suggestions
from models import (
    CoachingAdvice,
    Difficulty,
    RidingProfile,
    RouteRequest,
    TrainingGoal,
    WeatherConditions,
)

_ROUTES_JSON = """{
  "routes": [
    {
      "name": "Cherry Creek Loop",
      "description": "Flat bike path along the creek",
      "estimatedDistance": 30,
      "estimatedElevation": 120,
      "difficulty": "easy",
      "keyDirections": ["Head south on the Cherry Creek Trail"],
      "estimatedTime": 60
    },
    {
      "name": "Lookout Mountain Climb",
      "estimatedDistance": 40,
      "estimatedElevation": 900,
      "difficulty": "challenging"
    }
  ]
}"""


# ---------------------------------------------------------------------------
# parse_suggestions
# ---------------------------------------------------------------------------


def test_parses_plain_json():
    result = suggestions.parse_suggestions(_ROUTES_JSON)
    assert result.ok
    assert [s.name for s in result.suggestions] == [
        "Cherry Creek Loop",
        "Lookout Mountain Climb",
    ]
    first = result.suggestions[0]
    assert first.estimated_distance_km == 30
    assert first.key_directions == ["Head south on the Cherry Creek Trail"]


def test_parses_json_inside_markdown_fence():
    text = "Here are your routes:\n```json\n" + _ROUTES_JSON + "\n```\nEnjoy!"
    result = suggestions.parse_suggestions(text)
    assert result.ok
    assert len(result.suggestions) == 2


def test_parses_bare_array():
    text = '[{"name": "Quick Spin", "estimatedDistance": 20}]'
    result = suggestions.parse_suggestions(text)
    assert result.ok
    assert result.suggestions[0].name == "Quick Spin"


def test_skips_leading_non_json_braces():
    text = "Note {not json} then " + _ROUTES_JSON
    result = suggestions.parse_suggestions(text)
    assert len(result.suggestions) == 2


def test_difficulty_aliases_are_normalised():
    result = suggestions.parse_suggestions(_ROUTES_JSON)
    assert result.suggestions[0].difficulty is Difficulty.EASY
    assert result.suggestions[1].difficulty is Difficulty.HARD


def test_unknown_difficulty_defaults_to_moderate():
    result = suggestions.parse_suggestions(
        '{"routes": [{"name": "A", "estimatedDistance": 20, "difficulty": "epic"}]}'
    )
    assert result.suggestions[0].difficulty is Difficulty.MODERATE


def test_estimated_time_is_recomputed():
    result = suggestions.parse_suggestions(_ROUTES_JSON)
    # 30 km at the easy pace of 22 km/h.
    assert result.suggestions[0].estimated_time_min == 82
    # 40 km at the hard pace of 15 km/h.
    assert result.suggestions[1].estimated_time_min == 160


def test_missing_fields_get_defaults():
    result = suggestions.parse_suggestions('{"routes": [{}]}')
    suggestion = result.suggestions[0]
    assert suggestion.name == "AI Route 1"
    assert suggestion.estimated_distance_km == 25
    assert suggestion.estimated_elevation_m == 150


def test_invalid_items_are_skipped():
    text = (
        '{"routes": [{"name": "Bad", "estimatedDistance": -5}, '
        '{"name": "Good", "estimatedDistance": 25, "estimatedTime": "about an hour"}, '
        '"not an object"]}'
    )
    result = suggestions.parse_suggestions(text)
    assert [s.name for s in result.suggestions] == ["Good"]


@pytest.mark.parametrize(
    "text",
    [
        "",
        "   ",
        "I'm sorry, I can't help with that.",
        '{"routes": "none"',
        '{"routes": [{"name": "Bad", "estimatedDistance": -1}]}',
    ],
)
def test_garbage_yields_empty_result_with_error(text):
    result = suggestions.parse_suggestions(text)
    assert result.suggestions == []
    assert not result.ok
    assert result.error


# ---------------------------------------------------------------------------
# build_suggestion_prompt
# ---------------------------------------------------------------------------


def _request(**kwargs):
    return RouteRequest(start=(-104.99, 39.74), time_available_min=90, **kwargs)


def test_prompt_contains_ride_details():
    prompt = suggestions.build_suggestion_prompt(
        _request(training_goal=TrainingGoal.HILLS), 27.0, None, RidingProfile.default()
    )
    assert "39.74000, -104.99000" in prompt
    assert "27.0 km" in prompt
    assert "90 minutes" in prompt
    assert "TRAINING GOAL: hills" in prompt
    assert "Weather data not available" in prompt
    assert "RIDER PREFERENCES" not in prompt


def test_prompt_includes_weather_and_history():
    weather = WeatherConditions(
        temperature_c=18, wind_speed_kmh=12, wind_direction_deg=270, description="clear sky"
    )
    profile = RidingProfile.default().model_copy(update={"has_history": True})
    prompt = suggestions.build_suggestion_prompt(_request(), 37.5, weather, profile)
    assert "Temperature: 18°C" in prompt
    assert "12 km/h from 270°" in prompt
    assert "clear sky" in prompt
    assert "RIDER PREFERENCES" in prompt
    assert "Typical ride distance: 25.0 km" in prompt


def test_realistic_time():
    assert suggestions.realistic_time_min(20, Difficulty.MODERATE) == 60


# ---------------------------------------------------------------------------
# Pattern coaching
# ---------------------------------------------------------------------------


def test_coaching_prompt_describes_history_and_request():
    profile = RidingProfile.default().model_copy(update={"has_history": True})
    prompt = suggestions.build_coaching_prompt(
        _request(training_goal=TrainingGoal.RECOVERY), 30.0, profile
    )
    assert "RIDER PREFERENCES" in prompt
    assert "Training goal: recovery" in prompt
    assert "Target distance: 30.0 km" in prompt
    assert '"progressionSuggestions"' in prompt


def test_parse_coaching_reads_json_after_chatter():
    advice = suggestions.parse_coaching(
        'Here you go: {"personalizedAdvice": "Add one long ride", '
        '"recommendedIntensity": "zone 2"}'
    )
    assert advice is not None
    assert advice.personalized_advice == "Add one long ride"
    assert advice.recommended_intensity == "zone 2"
    assert advice.route_preferences == ""


@pytest.mark.parametrize(
    "text",
    [
        "",
        "No advice today.",
        '{"personalizedAdvice": ',
        "{}",
        '{"personalizedAdvice": ["not", "text"]}',
    ],
)
def test_parse_coaching_returns_none_for_unusable_replies(text):
    assert suggestions.parse_coaching(text) is None


def test_suggestion_prompt_carries_coach_notes():
    advice = CoachingAdvice(personalized_advice="Hold back on climbs", route_preferences="quiet")
    prompt = suggestions.build_suggestion_prompt(
        _request(), 37.5, None, RidingProfile.default(), advice
    )
    assert "COACH'S NOTES:" in prompt
    assert "- Advice: Hold back on climbs" in prompt
    assert "- Route preferences: quiet" in prompt
    assert "Intensity:" not in prompt.split("COACH'S NOTES:")[1].split("Return")[0]


def test_suggestion_prompt_without_coaching_has_no_notes():
    prompt = suggestions.build_suggestion_prompt(_request(), 37.5, None, RidingProfile.default())
    assert "COACH'S NOTES" not in prompt
