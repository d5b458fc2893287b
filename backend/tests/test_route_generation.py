"""Tests for route_generation.py.

Routing, weather, ride history and the reasoning service are all in-memory
mocks. No network access occurs during these tests.
"""

import random

import pytest

import route_generation
from elevation import ElevationProvider
from geometry import polyline_length_km
from models import (
    RideRecord,
    RouteRequest,
    RouteType,
    SnapResult,
    TrainingGoal,
    WeatherConditions,
)
from providers import ServiceBundle
from routing import RoutingProvider

_DENVER = (-104.99, 39.74)

# ---------------------------------------------------------------------------
# Fixtures and helpers
# ---------------------------------------------------------------------------


class _EchoRoutingService:
    """Returns the waypoints with a sideways wiggle on every leg."""

    name = "echo"
    supports_matching = False

    async def route(self, waypoints, profile, options):
        coords = [waypoints[0]]
        for a, b in zip(waypoints, waypoints[1:]):
            dx, dy = b[0] - a[0], b[1] - a[1]
            coords.append((a[0] + dx / 2 - dy * 0.1, a[1] + dy / 2 + dx * 0.1))
            coords.append(b)
        return SnapResult(
            coordinates=coords,
            distance_meters=polyline_length_km(coords) * 1000,
            confidence=0.8,
            provider_tag=self.name,
        )

    async def match_to_roads(self, waypoints, radius_m, profile):
        raise NotImplementedError


class _MockWeatherService:
    name = "mock-weather"

    def __init__(self, conditions=None, error=None):
        self._conditions = conditions or WeatherConditions(
            temperature_c=16, wind_speed_kmh=10, wind_direction_deg=270, description="clear sky"
        )
        self._error = error
        self.calls = []

    async def current_conditions(self, lat, lon):
        self.calls.append((lat, lon))
        if self._error is not None:
            raise self._error
        return self._conditions


class _MockHistoryStore:
    def __init__(self, rides=None, error=None):
        self._rides = rides or []
        self._error = error
        self.calls = []

    async def past_rides(self, user_id, limit=route_generation.PAST_RIDES_LIMIT):
        self.calls.append((user_id, limit))
        if self._error is not None:
            raise self._error
        return self._rides


class _MockReasoningService:
    name = "mock-llm"

    def __init__(self, reply):
        self._reply = reply

    async def suggest_routes(self, prompt):
        return self._reply


def _generator(routing_services=None, seed=7, **kwargs):
    services = [_EchoRoutingService()] if routing_services is None else routing_services
    return route_generation.RouteGenerator(
        RoutingProvider(services),
        ElevationProvider(),
        rng=random.Random(seed),
        **kwargs,
    )


def _request(**kwargs):
    kwargs.setdefault("time_available_min", 90)
    return RouteRequest(start=_DENVER, **kwargs)


def _rides(distance_km=35.0, count=5):
    return [RideRecord(name=f"ride {i}", distance_km=distance_km) for i in range(count)]


# ---------------------------------------------------------------------------
# Full pipeline
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_generate_endurance_loop_near_target():
    """A 90-minute endurance loop from Denver should be about 37.5 km."""
    result = await _generator().generate(_request(training_goal=TrainingGoal.ENDURANCE))

    assert result.target_distance_km == 37.5
    assert not result.used_fallback
    assert result.strategies_run == ["procedural"]
    assert 1 <= len(result.routes) <= 4
    assert any(
        r.distance_km == pytest.approx(37.5, rel=0.2) for r in result.routes
    )
    scores = [r.score for r in result.routes]
    assert scores == sorted(scores, reverse=True)
    for route in result.routes:
        assert route.coordinates[0] == _DENVER
        assert route.source == "procedural"


@pytest.mark.asyncio
async def test_generate_is_reproducible_with_seed():
    first = await _generator(seed=3).generate(_request())
    second = await _generator(seed=3).generate(_request())
    assert first == second


@pytest.mark.asyncio
async def test_generate_out_and_back():
    result = await _generator().generate(_request(route_type=RouteType.OUT_BACK))
    assert result.routes
    for route in result.routes:
        assert route.coordinates[0] == route.coordinates[-1] == _DENVER


@pytest.mark.asyncio
async def test_generate_uses_ai_suggestions_first():
    reply = """{"routes": [
      {"name": "Creek Loop", "estimatedDistance": 36},
      {"name": "Park Loop", "estimatedDistance": 40},
      {"name": "Lake Loop", "estimatedDistance": 34}
    ]}"""
    result = await _generator(reasoning_service=_MockReasoningService(reply)).generate(
        _request()
    )
    assert result.strategies_run == ["ai_suggestion"]
    assert {r.name for r in result.routes} == {"Creek Loop", "Park Loop", "Lake Loop"}


@pytest.mark.asyncio
async def test_generate_falls_back_when_every_provider_fails():
    """With no routing provider the result is a single deterministic loop."""
    result = await _generator(routing_services=[]).generate(_request())

    assert result.used_fallback
    assert len(result.routes) == 1
    route = result.routes[0]
    assert route.source == "fallback"
    assert route.coordinates[0] == route.coordinates[-1]
    assert route.score is not None


# ---------------------------------------------------------------------------
# Weather
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_weather_comes_from_service():
    weather = _MockWeatherService()
    result = await _generator(weather_service=weather).generate(_request())
    assert result.weather == weather._conditions
    # The service takes latitude first.
    assert weather.calls == [(39.74, -104.99)]


@pytest.mark.asyncio
async def test_request_weather_overrides_service():
    override = WeatherConditions(temperature_c=5, description="overcast clouds")
    weather = _MockWeatherService()
    result = await _generator(weather_service=weather).generate(_request(weather=override))
    assert result.weather == override
    assert weather.calls == []


@pytest.mark.asyncio
async def test_weather_failure_is_tolerated():
    weather = _MockWeatherService(error=RuntimeError("service down"))
    result = await _generator(weather_service=weather).generate(_request())
    assert result.weather is None
    assert result.routes


# ---------------------------------------------------------------------------
# Ride history
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_history_store_shapes_target():
    store = _MockHistoryStore(_rides(35.0))
    result = await _generator(history_store=store).generate(_request(user_id="rider-1"))

    assert store.calls == [("rider-1", route_generation.PAST_RIDES_LIMIT)]
    # Endurance rides stretch to 1.2x the rider's usual 35 km.
    assert result.target_distance_km == 42
    assert result.profile_confidence == pytest.approx(0.3)


@pytest.mark.asyncio
async def test_history_store_is_skipped_without_user():
    store = _MockHistoryStore(_rides())
    result = await _generator(history_store=store).generate(_request())
    assert store.calls == []
    assert result.profile_confidence == 0


@pytest.mark.asyncio
async def test_inline_rides_take_precedence_over_store():
    store = _MockHistoryStore(_rides(10.0))
    result = await _generator(history_store=store).generate(
        _request(user_id="rider-1", past_rides=_rides(35.0))
    )
    assert store.calls == []
    assert result.target_distance_km == 42


@pytest.mark.asyncio
async def test_history_store_failure_is_tolerated():
    store = _MockHistoryStore(error=ConnectionError("database offline"))
    result = await _generator(history_store=store).generate(_request(user_id="rider-1"))
    assert result.profile_confidence == 0
    assert result.target_distance_km == 37.5
    assert result.routes


# ---------------------------------------------------------------------------
# Module-level generate()
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_generate_with_service_bundle():
    services = ServiceBundle(
        routing=[_EchoRoutingService()],
        elevation=[],
        weather=_MockWeatherService(),
    )
    result = await route_generation.generate(
        _request(training_goal=TrainingGoal.RECOVERY, time_available_min=60),
        services=services,
        rng=random.Random(1),
    )
    assert result.target_distance_km == 20
    assert result.weather is not None
    assert result.routes


@pytest.mark.asyncio
async def test_generate_builds_services_from_environment(monkeypatch):
    monkeypatch.setattr(
        route_generation,
        "default_services",
        lambda: ServiceBundle(routing=[], elevation=[]),
    )
    result = await route_generation.generate(_request())
    assert result.used_fallback


class _FailingRoutingService:
    name = "broken-router"
    supports_matching = True

    async def route(self, waypoints, profile, options):
        raise ConnectionError("routing offline")

    async def match_to_roads(self, waypoints, radius_m, profile):
        raise ConnectionError("routing offline")


class _FailingElevationService:
    name = "broken-elevation"
    max_locations = None

    async def elevations_for(self, coordinates):
        raise ConnectionError("elevation offline")


@pytest.mark.parametrize("goal", list(TrainingGoal))
@pytest.mark.asyncio
async def test_never_empty_when_every_stub_fails(goal):
    generator = route_generation.RouteGenerator(
        RoutingProvider([_FailingRoutingService()]),
        ElevationProvider([_FailingElevationService()]),
        weather_service=_MockWeatherService(error=TimeoutError()),
        reasoning_service=_MockReasoningService("no JSON here"),
        rng=random.Random(0),
    )
    result = await generator.generate(_request(training_goal=goal, time_available_min=15))

    assert result.used_fallback
    assert [r.source for r in result.routes] == ["fallback"]
    assert result.routes[0].elevation_profile
