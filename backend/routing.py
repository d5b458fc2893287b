"""Road snapping with provider fallback.

``RoutingProvider.snap_route`` turns an ordered list of waypoints into road
geometry. Strategy order:

  1.  Infrastructure-aware routing (only when the rider asks for low traffic
      or dedicated bike infrastructure and such a service is configured).
  2.  Map matching on every matching-capable service, widening the search
      radius until a match is confident enough.
  3.  Plain directions between the waypoints, service by service.
  4.  The ``unroutable`` sentinel, echoing the waypoints with confidence 0.

Provider exceptions are logged and swallowed; only a malformed call (fewer
than two waypoints) raises.
"""

import logging
from typing import Any, Protocol

from pydantic import BaseModel

from config import (
    DEFAULT_MAX_DETOUR_PERCENT,
    DIRECTIONS_CONFIDENCE,
    GOOD_ROUTE_QUALITY,
    MATCH_DENSITY_RATIO,
    MATCH_MANY_WAYPOINTS,
    MAX_MATCH_WAYPOINTS,
    EngineConfig,
)
from geometry import thin
from models import (
    BikeInfrastructure,
    Coordinate,
    RoutePreferences,
    SnapResult,
    TrafficTolerance,
    TrainingGoal,
)

logger = logging.getLogger(__name__)

# Cycling profiles understood by the routing services.
PROFILE_BIKE = "bike"
PROFILE_RACING = "racingbike"
PROFILE_MTB = "mtb"

_GOAL_PROFILES: dict[TrainingGoal, str] = {
    TrainingGoal.HILLS: PROFILE_RACING,
    TrainingGoal.INTERVALS: PROFILE_RACING,
    TrainingGoal.ENDURANCE: PROFILE_RACING,
    TrainingGoal.RECOVERY: PROFILE_BIKE,
}


class SnapOptions(BaseModel):
    """Rider-level routing options passed through to services."""

    traffic_tolerance: TrafficTolerance = TrafficTolerance.MEDIUM
    bike_infrastructure: BikeInfrastructure = BikeInfrastructure.PREFERRED
    max_detour_percent: float = DEFAULT_MAX_DETOUR_PERCENT
    custom_model: dict[str, Any] | None = None
    """Weighted priority model for infrastructure-aware services."""

    @classmethod
    def from_preferences(cls, prefs: RoutePreferences) -> "SnapOptions":
        return cls(
            traffic_tolerance=prefs.traffic_tolerance,
            bike_infrastructure=prefs.bike_infrastructure,
            max_detour_percent=prefs.max_detour_percent,
        )

    @property
    def prefers_infrastructure(self) -> bool:
        return self.traffic_tolerance is TrafficTolerance.LOW or self.bike_infrastructure in (
            BikeInfrastructure.REQUIRED,
            BikeInfrastructure.STRONGLY_PREFERRED,
        )


class RoutingService(Protocol):
    """A provider that can route and (optionally) map-match waypoints."""

    name: str
    supports_matching: bool

    async def route(
        self, waypoints: list[Coordinate], profile: str, options: SnapOptions
    ) -> SnapResult:
        ...

    async def match_to_roads(
        self, waypoints: list[Coordinate], radius_m: int, profile: str
    ) -> SnapResult:
        ...


def cycling_profile_for(goal: TrainingGoal) -> str:
    return _GOAL_PROFILES.get(goal, PROFILE_BIKE)


def build_custom_model(options: SnapOptions) -> dict[str, Any]:
    """Priority model favouring cycle paths and quiet streets.

    Motorway-class roads are blocked outright; primary roads are heavily
    discounted for low-traffic riders. ``distance_influence`` drops as the
    tolerated detour grows, letting the router trade distance for safety.
    """
    low_traffic = options.traffic_tolerance is TrafficTolerance.LOW
    primary_weight = "0.3" if low_traffic else "0.5"
    distance_influence = max(10, round(100 - 3 * options.max_detour_percent))
    return {
        "priority": [
            {"if": "road_class == MOTORWAY || road_class == TRUNK", "multiply_by": "0"},
            {"else_if": "road_class == PRIMARY", "multiply_by": primary_weight},
            {"else_if": "road_class == SECONDARY", "multiply_by": "0.6"},
            {"else_if": "road_class == CYCLEWAY", "multiply_by": "1.0"},
            {
                "else_if": "road_class == RESIDENTIAL || road_class == LIVING_STREET",
                "multiply_by": "0.9",
            },
        ],
        "distance_influence": distance_influence,
    }


def route_quality(result: SnapResult, options: SnapOptions) -> float:
    """Heuristic quality of an infrastructure-aware route, in [0, 1]."""
    quality = 0.5
    distance_km = result.distance_meters / 1000
    if 1 <= distance_km <= 200:
        quality += 0.2
    if result.confidence > 0.8:
        quality += 0.1
    # Routed with the priority model rather than plain shortest path.
    quality += 0.15
    if result.traffic_exposure is not None and result.traffic_exposure <= 0.3:
        quality += 0.1
    if (
        options.bike_infrastructure is BikeInfrastructure.REQUIRED
        and result.quietness is not None
        and result.quietness < 0.3
    ):
        quality -= 0.3
    return max(0.0, min(1.0, quality))


class RoutingProvider:
    """Snaps waypoint sequences to roads using the configured services."""

    def __init__(
        self,
        services: list[RoutingService] | None = None,
        *,
        infrastructure_service: RoutingService | None = None,
        config: EngineConfig | None = None,
    ):
        self._services = list(services or [])
        self._infrastructure = infrastructure_service
        self._config = config or EngineConfig()

    async def snap_route(
        self,
        waypoints: list[Coordinate],
        profile: str = PROFILE_BIKE,
        options: SnapOptions | None = None,
    ) -> SnapResult:
        """Returns road geometry through ``waypoints``.

        Raises:
            ValueError: If fewer than two waypoints are given.
        """
        if len(waypoints) < 2:
            raise ValueError("snap_route requires at least 2 waypoints.")
        options = options or SnapOptions()
        waypoints = [tuple(w) for w in waypoints]

        if options.prefers_infrastructure and self._infrastructure is not None:
            result = await self._route_with_infrastructure(waypoints, profile, options)
            if result is not None:
                return result

        result = await self._match(waypoints, profile)
        if result is not None:
            return result

        result = await self._directions(waypoints, profile, options)
        if result is not None:
            return result

        logger.warning(
            "All routing providers failed for %d waypoints; returning unroutable",
            len(waypoints),
        )
        return SnapResult.unroutable(waypoints)

    async def _route_with_infrastructure(
        self, waypoints: list[Coordinate], profile: str, options: SnapOptions
    ) -> SnapResult | None:
        service = self._infrastructure
        weighted = options.model_copy(update={"custom_model": build_custom_model(options)})
        try:
            result = await service.route(waypoints, profile, weighted)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Infrastructure routing via %s failed: %s", service.name, exc)
            return None
        if len(result.coordinates) < 2:
            return None

        quality = route_quality(result, options)
        if quality <= GOOD_ROUTE_QUALITY:
            logger.info(
                "Infrastructure route from %s rejected (quality %.2f)", service.name, quality
            )
            return None
        return result.model_copy(
            update={"confidence": min(1.0, result.confidence + 0.1)}
        )

    def _min_match_confidence(self, waypoint_count: int) -> float:
        if waypoint_count > MATCH_MANY_WAYPOINTS:
            return self._config.match_min_confidence_many
        return self._config.match_min_confidence_few

    async def _match(self, waypoints: list[Coordinate], profile: str) -> SnapResult | None:
        query = thin(waypoints, MAX_MATCH_WAYPOINTS)
        min_confidence = self._min_match_confidence(len(query))

        for service in self._services:
            if not service.supports_matching:
                continue
            for radius in self._config.match_radii_m:
                try:
                    result = await service.match_to_roads(query, radius, profile)
                except Exception as exc:  # noqa: BLE001
                    logger.warning(
                        "Map matching via %s at %dm failed: %s", service.name, radius, exc
                    )
                    continue
                if len(result.coordinates) < 2:
                    continue
                denser = len(result.coordinates) > len(query) * MATCH_DENSITY_RATIO
                if result.confidence > min_confidence or denser:
                    logger.info(
                        "Matched %d waypoints via %s at %dm (confidence %.2f)",
                        len(query),
                        service.name,
                        radius,
                        result.confidence,
                    )
                    return result
        return None

    async def _directions(
        self, waypoints: list[Coordinate], profile: str, options: SnapOptions
    ) -> SnapResult | None:
        for service in self._services:
            try:
                result = await service.route(waypoints, profile, options)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Directions via %s failed: %s", service.name, exc)
                continue
            if len(result.coordinates) >= 2:
                return result.model_copy(update={"confidence": DIRECTIONS_CONFIDENCE})
        return None
