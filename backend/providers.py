"""Concrete provider adapters.

Thin wrappers that translate between the engine's ``(longitude, latitude)``
world and each third-party API:

  - Google Maps (``googlemaps``): directions, road snapping, elevation.
  - GraphHopper (``httpx``): infrastructure-aware cycling routes.
  - OpenTopoData / Open-Elevation (``httpx``): free elevation lookups.
  - OpenWeather (``httpx``): current conditions.
  - Claude (``anthropic``): route suggestions.

The ``googlemaps`` client is synchronous, so its calls run in a worker
thread. API keys come from environment variables; ``default_services``
skips any provider whose key is missing.
"""

import asyncio
import logging
import os
from typing import Any, NamedTuple

import googlemaps
import httpx
from anthropic import AsyncAnthropic

from config import (
    COACHING_MAX_TOKENS,
    COACHING_TEMPERATURE,
    ROUTE_MODEL,
    SUGGESTION_MAX_TOKENS,
    SUGGESTION_TEMPERATURE,
)
from elevation import ElevationService
from geometry import distance_km, polyline_length_km, thin
from models import Coordinate, SnapResult, WeatherConditions
from routing import RoutingService, SnapOptions
from suggestions import COACHING_SYSTEM_PROMPT, SUGGESTION_SYSTEM_PROMPT
from synthesis import ReasoningService
from weather import WeatherService

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_S: float = 30.0
GOOGLE_MAX_WAYPOINTS: int = 25      # origin + destination + 23 via points
GOOGLE_DIRECTIONS_CONFIDENCE: float = 0.85
GRAPHHOPPER_CONFIDENCE: float = 0.85

GRAPHHOPPER_URL = "https://graphhopper.com/api/1/route"
OPENTOPODATA_URL = "https://api.opentopodata.org/v1/srtm30m"
OPEN_ELEVATION_URL = "https://api.open-elevation.com/api/v1/lookup"
OPENWEATHER_URL = "https://api.openweathermap.org/data/2.5/weather"

# GraphHopper road classes grouped by how much motor traffic they carry.
_BUSY_ROAD_CLASSES = frozenset({"motorway", "trunk", "primary", "secondary"})
_QUIET_ROAD_CLASSES = frozenset(
    {"cycleway", "residential", "living_street", "track", "path", "service", "footway"}
)


def _latlng(coord: Coordinate) -> tuple[float, float]:
    return (coord[1], coord[0])


def decode_polyline(encoded: str) -> list[Coordinate]:
    """Decodes a Google-encoded polyline into (lng, lat) coordinates.

    Implements the standard Google polyline encoding algorithm.
    See: https://developers.google.com/maps/documentation/utilities/polylinealgorithm
    """
    result: list[Coordinate] = []
    index = 0
    lat = 0
    lng = 0

    while index < len(encoded):
        deltas = []
        for _ in range(2):
            shift = 0
            value = 0
            while True:
                b = ord(encoded[index]) - 63
                index += 1
                value |= (b & 0x1F) << shift
                shift += 5
                if b < 0x20:
                    break
            deltas.append(~(value >> 1) if (value & 1) else (value >> 1))
        lat += deltas[0]
        lng += deltas[1]
        result.append((lng / 1e5, lat / 1e5))

    return result


def _directions_points(route: dict[str, Any]) -> list[Coordinate]:
    """Full-resolution geometry from step-level polylines.

    The overview polyline is heavily simplified, so step polylines are
    concatenated (dropping duplicated step boundaries) and the overview is
    only used when steps carry no geometry.
    """
    points: list[Coordinate] = []
    for leg in route.get("legs", []):
        for step in leg.get("steps", []):
            step_points = decode_polyline(step.get("polyline", {}).get("points", ""))
            if points and step_points and step_points[0] == points[-1]:
                step_points = step_points[1:]
            points.extend(step_points)
    if points:
        return points
    return decode_polyline(route.get("overview_polyline", {}).get("points", ""))


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


class GoogleMapsRoutingService:
    """Bicycling directions and road snapping through ``googlemaps.Client``."""

    name = "google"
    supports_matching = True

    def __init__(self, client: googlemaps.Client):
        self._client = client

    async def route(
        self, waypoints: list[Coordinate], profile: str, options: SnapOptions
    ) -> SnapResult:
        points = thin(waypoints, GOOGLE_MAX_WAYPOINTS)
        result = await asyncio.to_thread(
            self._client.directions,
            origin=_latlng(points[0]),
            destination=_latlng(points[-1]),
            waypoints=[_latlng(p) for p in points[1:-1]],
            mode="bicycling",
            optimize_waypoints=False,
        )
        if not result:
            raise ValueError("Directions API returned no routes.")
        route = result[0]
        legs = route.get("legs", [])
        return SnapResult(
            coordinates=_directions_points(route),
            distance_meters=float(sum(leg["distance"]["value"] for leg in legs)),
            duration_seconds=float(sum(leg["duration"]["value"] for leg in legs)),
            confidence=GOOGLE_DIRECTIONS_CONFIDENCE,
            provider_tag=self.name,
        )

    async def match_to_roads(
        self, waypoints: list[Coordinate], radius_m: int, profile: str
    ) -> SnapResult:
        snapped = await asyncio.to_thread(
            self._client.snap_to_roads,
            [_latlng(w) for w in waypoints],
            interpolate=True,
        )
        coordinates: list[Coordinate] = []
        matched = 0
        for point in snapped:
            location = point["location"]
            coord = (float(location["longitude"]), float(location["latitude"]))
            coordinates.append(coord)
            original = point.get("originalIndex")
            if original is not None and distance_km(coord, waypoints[original]) * 1000 <= radius_m:
                matched += 1
        return SnapResult(
            coordinates=coordinates,
            distance_meters=polyline_length_km(coordinates) * 1000,
            confidence=matched / len(waypoints) if waypoints else 0.0,
            provider_tag=self.name,
        )


class GraphHopperRoutingService:
    """Cycling routes with a custom priority model, via the GraphHopper API."""

    name = "graphhopper"
    supports_matching = False

    def __init__(self, api_key: str, *, client: httpx.AsyncClient | None = None):
        self._api_key = api_key
        self._client = client

    async def route(
        self, waypoints: list[Coordinate], profile: str, options: SnapOptions
    ) -> SnapResult:
        body: dict[str, Any] = {
            "points": [list(w) for w in waypoints],
            "profile": profile,
            "points_encoded": False,
            "instructions": False,
            "details": ["road_class"],
        }
        if options.custom_model:
            body["custom_model"] = options.custom_model
            body["ch.disable"] = True

        data = await self._post(body)
        paths = data.get("paths") or []
        if not paths:
            raise ValueError(f"GraphHopper returned no paths: {data.get('message', '')}")
        path = paths[0]
        coordinates = [(float(c[0]), float(c[1])) for c in path["points"]["coordinates"]]
        exposure, quietness = road_class_shares(
            coordinates, path.get("details", {}).get("road_class", [])
        )
        return SnapResult(
            coordinates=coordinates,
            distance_meters=float(path["distance"]),
            duration_seconds=float(path.get("time", 0)) / 1000,
            confidence=GRAPHHOPPER_CONFIDENCE,
            provider_tag=self.name,
            traffic_exposure=exposure,
            quietness=quietness,
        )

    async def match_to_roads(
        self, waypoints: list[Coordinate], radius_m: int, profile: str
    ) -> SnapResult:
        raise NotImplementedError("GraphHopper map matching is not supported.")

    async def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        params = {"key": self._api_key}
        if self._client is not None:
            response = await self._client.post(GRAPHHOPPER_URL, params=params, json=body)
        else:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_S) as client:
                response = await client.post(GRAPHHOPPER_URL, params=params, json=body)
        response.raise_for_status()
        return response.json()


def road_class_shares(
    coordinates: list[Coordinate], details: list[list[Any]]
) -> tuple[float | None, float | None]:
    """Distance shares of busy and quiet road classes along a path.

    ``details`` is GraphHopper's ``[from_index, to_index, road_class]`` list.
    """
    if not details or len(coordinates) < 2:
        return None, None
    busy = quiet = total = 0.0
    for start, end, road_class in details:
        length = polyline_length_km(coordinates[int(start):int(end) + 1])
        total += length
        road_class = str(road_class).lower()
        if road_class in _BUSY_ROAD_CLASSES:
            busy += length
        elif road_class in _QUIET_ROAD_CLASSES:
            quiet += length
    if total == 0:
        return None, None
    return round(busy / total, 3), round(quiet / total, 3)


# ---------------------------------------------------------------------------
# Elevation
# ---------------------------------------------------------------------------


class GoogleElevationService:
    name = "google"
    max_locations = 512

    def __init__(self, client: googlemaps.Client):
        self._client = client

    async def elevations_for(self, coordinates: list[Coordinate]) -> list[float]:
        results = await asyncio.to_thread(
            self._client.elevation, [_latlng(c) for c in coordinates]
        )
        return [float(r["elevation"]) for r in results]


class OpenTopoDataElevationService:
    """SRTM 30 m elevations from the public OpenTopoData API."""

    name = "opentopodata"
    max_locations = 100

    def __init__(self, *, client: httpx.AsyncClient | None = None, url: str = OPENTOPODATA_URL):
        self._client = client
        self._url = url

    async def elevations_for(self, coordinates: list[Coordinate]) -> list[float]:
        locations = "|".join(f"{lat},{lng}" for lng, lat in coordinates)
        params = {"locations": locations}
        if self._client is not None:
            response = await self._client.get(self._url, params=params)
        else:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_S) as client:
                response = await client.get(self._url, params=params)
        response.raise_for_status()
        data = response.json()
        if data.get("status") != "OK":
            raise ValueError(f"OpenTopoData status {data.get('status')!r}")
        elevations = [r.get("elevation") for r in data.get("results", [])]
        if any(e is None for e in elevations):
            raise ValueError("OpenTopoData returned null elevations.")
        return [float(e) for e in elevations]


class OpenElevationService:
    name = "open-elevation"
    max_locations = None

    def __init__(self, *, client: httpx.AsyncClient | None = None, url: str = OPEN_ELEVATION_URL):
        self._client = client
        self._url = url

    async def elevations_for(self, coordinates: list[Coordinate]) -> list[float]:
        body = {"locations": [{"latitude": lat, "longitude": lng} for lng, lat in coordinates]}
        if self._client is not None:
            response = await self._client.post(self._url, json=body)
        else:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_S) as client:
                response = await client.post(self._url, json=body)
        response.raise_for_status()
        return [float(r["elevation"]) for r in response.json()["results"]]


# ---------------------------------------------------------------------------
# Weather and reasoning
# ---------------------------------------------------------------------------


class OpenWeatherService:
    name = "openweather"

    def __init__(self, api_key: str, *, client: httpx.AsyncClient | None = None):
        self._api_key = api_key
        self._client = client

    async def current_conditions(self, lat: float, lon: float) -> WeatherConditions:
        params = {"lat": lat, "lon": lon, "appid": self._api_key, "units": "metric"}
        if self._client is not None:
            response = await self._client.get(OPENWEATHER_URL, params=params)
        else:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_S) as client:
                response = await client.get(OPENWEATHER_URL, params=params)
        response.raise_for_status()
        data = response.json()
        wind = data.get("wind", {})
        weather = data.get("weather") or [{}]
        return WeatherConditions(
            temperature_c=float(data["main"]["temp"]),
            # OpenWeather reports metric wind speed in m/s.
            wind_speed_kmh=round(float(wind.get("speed", 0.0)) * 3.6, 1),
            wind_direction_deg=float(wind.get("deg", 0.0)),
            description=weather[0].get("description", ""),
            humidity=data["main"].get("humidity"),
        )


class ClaudeReasoningService:
    """Route suggestions and pattern coaching from Claude, returned as raw text."""

    name = "claude"

    def __init__(self, client: AsyncAnthropic, *, model: str = ROUTE_MODEL):
        self._client = client
        self._model = model

    async def suggest_routes(self, prompt: str) -> str:
        response = await self._client.messages.create(
            model=self._model,
            max_tokens=SUGGESTION_MAX_TOKENS,
            temperature=SUGGESTION_TEMPERATURE,
            system=SUGGESTION_SYSTEM_PROMPT,
            messages=[
                {"role": "user", "content": prompt},
                {"role": "assistant", "content": "{"},
            ],
        )
        # Prepend the "{" we used as prefill.
        raw = "{" + response.content[0].text.strip()
        logger.info("Claude suggestion response: %s", raw[:300])
        return raw

    async def analyze_patterns(self, prompt: str) -> str:
        response = await self._client.messages.create(
            model=self._model,
            max_tokens=COACHING_MAX_TOKENS,
            temperature=COACHING_TEMPERATURE,
            system=COACHING_SYSTEM_PROMPT,
            messages=[
                {"role": "user", "content": prompt},
                {"role": "assistant", "content": "{"},
            ],
        )
        raw = "{" + response.content[0].text.strip()
        logger.info("Claude coaching response: %s", raw[:300])
        return raw


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


class ServiceBundle(NamedTuple):
    routing: list[RoutingService]
    elevation: list[ElevationService]
    infrastructure: RoutingService | None = None
    weather: WeatherService | None = None
    reasoning: ReasoningService | None = None


def default_services() -> ServiceBundle:
    """Builds every provider whose API key is present in the environment.

    Keyless public elevation services are always included, after Google.
    """
    routing: list[RoutingService] = []
    elevation: list[ElevationService] = []
    infrastructure: RoutingService | None = None
    weather: WeatherService | None = None
    reasoning: ReasoningService | None = None

    maps_key = os.environ.get("GOOGLE_MAPS_API_KEY", "")
    if maps_key:
        maps_client = googlemaps.Client(key=maps_key)
        routing.append(GoogleMapsRoutingService(maps_client))
        elevation.append(GoogleElevationService(maps_client))
    elevation.extend([OpenTopoDataElevationService(), OpenElevationService()])

    graphhopper_key = os.environ.get("GRAPHHOPPER_API_KEY", "")
    if graphhopper_key:
        infrastructure = GraphHopperRoutingService(graphhopper_key)
        routing.append(infrastructure)

    weather_key = os.environ.get("OPENWEATHER_API_KEY", "")
    if weather_key:
        weather = OpenWeatherService(weather_key)

    anthropic_key = os.environ.get("ANTHROPIC_API_KEY", "")
    if anthropic_key:
        reasoning = ClaudeReasoningService(AsyncAnthropic(api_key=anthropic_key))

    if not routing:
        logger.warning("No routing provider configured; routes will use the fallback")
    return ServiceBundle(
        routing=routing,
        infrastructure=infrastructure,
        elevation=elevation,
        weather=weather,
        reasoning=reasoning,
    )
