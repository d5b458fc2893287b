"""Tests for scoring.py."""

import pytest

import scoring
from geometry import destination_point
from models import (
    FrequentArea,
    QuietnessLevel,
    RidingProfile,
    RouteCandidate,
    RoutePreferences,
    TrafficTolerance,
    TrainingGoal,
    WeatherConditions,
)

_START = (-104.99, 39.74)


def _candidate(distance_km=30.0, gain_m=300.0, **kwargs):
    end = destination_point(_START, distance_km, 45)
    defaults = dict(
        name=f"{distance_km:g} km / {gain_m:g} m",
        distance_meters=distance_km * 1000,
        elevation_gain_m=gain_m,
        coordinates=[_START, end],
        training_goal=TrainingGoal.ENDURANCE,
        pattern_tag="loop",
        confidence=0.9,
        source="procedural",
    )
    defaults.update(kwargs)
    return RouteCandidate(**defaults)


def _criteria(goal=TrainingGoal.ENDURANCE, time_min=90, **kwargs):
    return scoring.ScoringCriteria(training_goal=goal, time_available_min=time_min, **kwargs)


def _history_profile(**kwargs):
    update = {"confidence": 0.8, "has_history": True}
    update.update(kwargs)
    return RidingProfile.default().model_copy(update=update)


# ---------------------------------------------------------------------------
# RouteScorer.score
# ---------------------------------------------------------------------------


def test_scores_are_sorted_and_clamped():
    candidates = [
        _candidate(10, 0),
        _candidate(33, 300),
        _candidate(80, 2500),
        _candidate(30, 0, confidence=0.1, wind_factor=0.0),
    ]
    scored = scoring.RouteScorer().score(candidates, _criteria())
    scores = [c.score for c in scored]
    assert scores == sorted(scores, reverse=True)
    assert all(0.0 <= s <= 1.0 for s in scores)


def test_score_does_not_mutate_inputs():
    candidate = _candidate()
    scored = scoring.RouteScorer().score([candidate], _criteria())
    assert candidate.score is None
    assert scored[0].score is not None
    assert scored[0] is not candidate


def test_empty_pool_scores_empty():
    assert scoring.RouteScorer().score([], _criteria()) == []


def test_candidate_without_geometry_is_rejected():
    broken = _candidate(coordinates=[_START])
    with pytest.raises(ValueError, match="fewer than 2 coordinates"):
        scoring.RouteScorer().score([_candidate(), broken], _criteria())


@pytest.mark.parametrize("profile", [RidingProfile.default(), _history_profile()])
def test_more_climbing_never_hurts_hill_sessions(profile):
    gains = [0, 300, 600, 900, 1500]
    candidates = [_candidate(30, g) for g in gains]
    criteria = _criteria(TrainingGoal.HILLS, 120, profile=profile)
    scorer = scoring.RouteScorer()
    by_gain = [scorer.score([c], criteria)[0].score for c in candidates]
    assert by_gain == sorted(by_gain)
    assert by_gain[-1] > by_gain[0]


def test_recovery_prefers_flat_routes():
    flat, steep = _candidate(25, 100), _candidate(25, 800)
    scored = scoring.RouteScorer().score(
        [steep, flat], _criteria(TrainingGoal.RECOVERY, 90)
    )
    assert scored[0].name == flat.name


# ---------------------------------------------------------------------------
# Signal breakdown
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "candidate",
    [
        _candidate(5, 0, wind_factor=0.0, confidence=0.0),
        _candidate(200, 5000, traffic_exposure=1.0, quietness=0.0),
        _candidate(30, 300, traffic_exposure=0.0, quietness=1.0, wind_factor=1.0),
    ],
)
def test_breakdown_stays_within_signal_bounds(candidate):
    criteria = _criteria(
        profile=_history_profile(),
        weather=WeatherConditions(temperature_c=18),
        preferences=RoutePreferences(
            traffic_tolerance=TrafficTolerance.LOW, quietness_level=QuietnessLevel.HIGH
        ),
    )
    breakdown = scoring.RouteScorer().breakdown(candidate, criteria)
    assert set(breakdown) == set(scoring.SIGNAL_BOUNDS)
    for name, value in breakdown.items():
        low, high = scoring.SIGNAL_BOUNDS[name]
        assert low <= value <= high


def test_default_profile_contributes_no_history():
    breakdown = scoring.RouteScorer().breakdown(_candidate(25, 300), _criteria())
    assert breakdown["history"] == 0.0


def test_history_rewards_familiar_rides():
    profile = _history_profile()
    scorer = scoring.RouteScorer()
    familiar = scorer.breakdown(_candidate(25, 300), _criteria(profile=profile))
    unusual = scorer.breakdown(_candidate(60, 300), _criteria(profile=profile))
    assert familiar["history"] == pytest.approx(0.2)
    assert unusual["history"] == pytest.approx(-0.08)


def test_history_rewards_frequent_areas():
    area = FrequentArea(center=_START, frequency=5, confidence=0.5)
    scorer = scoring.RouteScorer()
    near = scorer.breakdown(
        _candidate(5, 60), _criteria(profile=_history_profile(frequent_areas=[area]))
    )
    away = scorer.breakdown(_candidate(5, 60), _criteria(profile=_history_profile()))
    assert near["history"] - away["history"] == pytest.approx(0.08)


def test_weather_signal():
    scorer = scoring.RouteScorer()
    assert scorer.breakdown(_candidate(), _criteria())["weather"] == 0.0
    ideal = WeatherConditions(temperature_c=18, wind_speed_kmh=5, description="clear sky")
    assert scorer.breakdown(_candidate(), _criteria(weather=ideal))["weather"] == pytest.approx(0.2)


def test_time_signal():
    scorer = scoring.RouteScorer()
    # 22 km at the endurance pace of 22 km/h is an hour.
    route = _candidate(22, 0)
    assert scorer.breakdown(route, _criteria(time_min=60))["time"] == 0.2
    assert scorer.breakdown(route, _criteria(time_min=75))["time"] == 0.1
    assert scorer.breakdown(route, _criteria(time_min=90))["time"] == -0.1


def test_low_traffic_tolerance_prefers_quiet_roads():
    prefs = RoutePreferences(traffic_tolerance=TrafficTolerance.LOW)
    scorer = scoring.RouteScorer()
    calm = scorer.breakdown(_candidate(traffic_exposure=0.2), _criteria(preferences=prefs))
    busy = scorer.breakdown(_candidate(traffic_exposure=0.9), _criteria(preferences=prefs))
    assert calm["traffic"] == pytest.approx(0.35)
    assert busy["traffic"] == pytest.approx(-0.15)


def test_fallback_gets_no_low_traffic_bonus():
    prefs = RoutePreferences(traffic_tolerance=TrafficTolerance.LOW)
    breakdown = scoring.RouteScorer().breakdown(
        _candidate(source="fallback"), _criteria(preferences=prefs)
    )
    assert breakdown["traffic"] == 0.0


def test_medium_traffic_tolerance_needs_known_exposure():
    scorer = scoring.RouteScorer()
    assert scorer.breakdown(_candidate(traffic_exposure=0.5), _criteria())["traffic"] == 0.15
    assert scorer.breakdown(_candidate(), _criteria())["traffic"] == 0.0


def test_quietness_signal():
    prefs = RoutePreferences(quietness_level=QuietnessLevel.HIGH)
    scorer = scoring.RouteScorer()
    quiet = scorer.breakdown(_candidate(quietness=0.9), _criteria(preferences=prefs))
    noisy = scorer.breakdown(_candidate(quietness=0.3), _criteria(preferences=prefs))
    assert quiet["quietness"] == pytest.approx(0.05)
    assert noisy["quietness"] == pytest.approx(-0.15)
    unset = scorer.breakdown(_candidate(quietness=0.9), _criteria())
    assert unset["quietness"] == 0.0


# ---------------------------------------------------------------------------
# estimated_duration_min
# ---------------------------------------------------------------------------


def test_duration_slows_on_steep_routes():
    flat = scoring.estimated_duration_min(_candidate(30, 0), TrainingGoal.ENDURANCE)
    steep = scoring.estimated_duration_min(_candidate(30, 900), TrainingGoal.ENDURANCE)
    assert flat == pytest.approx(30 / 22 * 60)
    assert steep == pytest.approx(30 / (22 * 0.75) * 60)


def test_hills_pace_is_not_slowed():
    duration = scoring.estimated_duration_min(_candidate(30, 900), TrainingGoal.HILLS)
    assert duration == pytest.approx(120)
