"""Cycling route generation pipeline.

Seven-step async pipeline:
  1.  Resolve current weather (request override, weather service, or none).
  2.  Load the rider's past rides (request payload or history store).
  3.  Analyze the rides into a ``RidingProfile``.
  4.  Work out a target distance from the time budget, nudged by habits.
  5.  Synthesize candidates: AI suggestions, personal templates, familiar
      segments, then procedural patterns, stopping once enough exist.
  6.  Fall back to a deterministic loop if nothing survived synthesis.
  7.  Score every candidate and return the best few.

Every external dependency is injected, so the whole pipeline runs offline in
tests. A failing provider degrades the result; it never fails the request.
"""

import logging
import random
from typing import Protocol

from config import EngineConfig
from elevation import ElevationProvider
from history import HistoryAnalyzer, guidance_for
from models import (
    GenerationResult,
    RideRecord,
    RouteCandidate,
    RouteRequest,
    WeatherConditions,
)
from providers import ServiceBundle, default_services
from routing import RoutingProvider
from scoring import RouteScorer, ScoringCriteria
from synthesis import (
    CandidateRouteSynthesizer,
    ReasoningService,
    calculate_target_distance,
    fallback_candidate,
)
from weather import WeatherService

logger = logging.getLogger(__name__)

PAST_RIDES_LIMIT: int = 50


class RideHistoryStore(Protocol):
    """Source of a rider's recorded rides, newest first."""

    async def past_rides(self, user_id: str, limit: int = PAST_RIDES_LIMIT) -> list[RideRecord]:
        ...


class RoutePersistenceStore(Protocol):
    """Somewhere to keep routes a rider chose to save."""

    async def save_route(self, user_id: str, route: RouteCandidate) -> str:
        ...


class RouteGenerator:
    """Runs the full generation pipeline against injected services."""

    def __init__(
        self,
        routing: RoutingProvider,
        elevation: ElevationProvider,
        *,
        history_store: RideHistoryStore | None = None,
        weather_service: WeatherService | None = None,
        reasoning_service: ReasoningService | None = None,
        config: EngineConfig | None = None,
        rng: random.Random | None = None,
    ):
        self._config = config or EngineConfig()
        self._elevation = elevation
        self._history_store = history_store
        self._weather_service = weather_service
        self._analyzer = HistoryAnalyzer()
        self._scorer = RouteScorer()
        self._synthesizer = CandidateRouteSynthesizer(
            routing,
            elevation,
            reasoning_service=reasoning_service,
            config=self._config,
            rng=rng,
        )

    async def generate(self, request: RouteRequest) -> GenerationResult:
        """Generates ranked candidate routes for ``request``.

        Never returns an empty route list: when synthesis yields nothing, a
        single ``fallback`` candidate is returned instead.
        """
        weather = await self._resolve_weather(request)
        rides = await self._load_rides(request)
        profile = self._analyzer.analyze(rides)

        target = calculate_target_distance(
            request.time_available_min, request.training_goal, profile.performance
        )
        if profile.has_history:
            target = guidance_for(
                profile, request.start, target, request.training_goal
            ).adjusted_distance_km
        logger.info(
            "Generating %s %s routes: %.1f km target, %d past rides",
            request.training_goal.value,
            request.route_type.value,
            target,
            len(rides),
        )

        candidates, ran = await self._synthesizer.run_strategies(
            request, profile, target_distance_km=target, weather=weather
        )
        used_fallback = False
        if not candidates:
            logger.warning("No candidates synthesized; using fallback loop")
            candidates = [
                await fallback_candidate(request, target, self._elevation, weather)
            ]
            used_fallback = True

        criteria = ScoringCriteria(
            training_goal=request.training_goal,
            time_available_min=request.time_available_min,
            weather=weather,
            profile=profile,
            preferences=request.preferences,
        )
        ranked = self._scorer.score(candidates, criteria)
        return GenerationResult(
            routes=ranked[: self._config.max_routes_returned],
            target_distance_km=target,
            weather=weather,
            profile_confidence=profile.confidence,
            used_fallback=used_fallback,
            strategies_run=ran,
        )

    async def _resolve_weather(self, request: RouteRequest) -> WeatherConditions | None:
        if request.weather is not None:
            return request.weather
        if self._weather_service is None:
            return None
        lon, lat = request.start
        try:
            return await self._weather_service.current_conditions(lat, lon)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Weather service %s failed: %s", self._weather_service.name, exc)
            return None

    async def _load_rides(self, request: RouteRequest) -> list[RideRecord]:
        if request.past_rides:
            return list(request.past_rides)
        if not request.user_id or self._history_store is None:
            return []
        try:
            return await self._history_store.past_rides(request.user_id, PAST_RIDES_LIMIT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not load ride history for %s: %s", request.user_id, exc)
            return []


async def generate(
    request: RouteRequest,
    *,
    services: ServiceBundle | None = None,
    rng: random.Random | None = None,
    config: EngineConfig | None = None,
) -> GenerationResult:
    """Generates routes for ``request`` using ``services`` or the environment.

    Args:
        request: Start, time budget, goal, route type and preferences.
        services: Provider adapters. Built from environment
            variables when omitted.
        rng: Seeded generator for reproducible waypoint layouts.
        config: Threshold overrides.
    """
    if services is None:
        services = default_services()

    config = config or EngineConfig()
    generator = RouteGenerator(
        RoutingProvider(
            services.routing,
            infrastructure_service=services.infrastructure,
            config=config,
        ),
        ElevationProvider(services.elevation, max_query_points=config.max_elevation_query_points),
        weather_service=services.weather,
        reasoning_service=services.reasoning,
        config=config,
        rng=rng,
    )
    return await generator.generate(request)
