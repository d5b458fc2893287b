"""Elevation lookup with provider fallback and deterministic estimation.

``ElevationProvider.fetch_elevation`` never raises: it tries each configured
``ElevationService`` in priority order and, when every one of them fails,
falls back to ``estimate_elevation`` so callers always get a profile.
"""

import bisect
import logging
import math
from typing import Protocol

from config import ELEVATION_NOISE_THRESHOLD_M, MAX_ELEVATION_QUERY_POINTS
from geometry import cumulative_distances_km, even_indices
from models import Coordinate, ElevationPoint, ElevationStats

logger = logging.getLogger(__name__)

# Horizontal spacing below which grade is not computed (avoids huge grades
# from near-duplicate points).
MIN_GRADE_SPACING_KM: float = 0.01


class ElevationService(Protocol):
    """Anything that can look up elevations for a batch of coordinates."""

    name: str
    max_locations: int | None
    """Per-call coordinate limit, or None when unbounded."""

    async def elevations_for(self, coordinates: list[Coordinate]) -> list[float]:
        """Returns one elevation in metres per input coordinate, in order."""
        ...


def estimate_elevation(coordinate: Coordinate) -> float:
    """Synthetic terrain height for ``coordinate``.

    A smooth function of latitude and longitude: broad regional relief, a
    rolling-hill band with a wavelength of roughly 17 km, and small surface
    texture. The same coordinate always yields the same value.
    """
    lng, lat = coordinate
    regional = 400 + 350 * math.sin(math.radians(lat) * 3) * math.cos(math.radians(lng) * 2)
    hills = 40 * math.sin(lat * 40) * math.cos(lng * 40)
    texture = 10 * math.sin(lat * 200) * math.cos(lng * 200)
    return round(max(0.0, regional + hills + texture), 1)


def _interpolate(xs: list[float], ys: list[float], x: float) -> float:
    if x <= xs[0]:
        return ys[0]
    if x >= xs[-1]:
        return ys[-1]
    hi = bisect.bisect_left(xs, x)
    lo = hi - 1
    span = xs[hi] - xs[lo]
    if span <= 0:
        return ys[hi]
    t = (x - xs[lo]) / span
    return ys[lo] + (ys[hi] - ys[lo]) * t


class ElevationProvider:
    """Fetches elevation profiles from services in a fixed priority order."""

    def __init__(
        self,
        services: list[ElevationService] | None = None,
        *,
        max_query_points: int = MAX_ELEVATION_QUERY_POINTS,
    ):
        self._services = list(services or [])
        self._max_query_points = max(2, max_query_points)

    async def fetch_elevation(self, coordinates: list[Coordinate]) -> list[ElevationPoint]:
        """Returns one ``ElevationPoint`` per input coordinate.

        Dense polylines are downsampled before querying; elevations for the
        skipped points are linearly interpolated along cumulative distance.
        """
        if not coordinates:
            return []

        cumulative = cumulative_distances_km(coordinates)
        indices = even_indices(len(coordinates), self._max_query_points)
        query = [coordinates[i] for i in indices]

        elevations = await self._query(query)
        if elevations is None:
            logger.info(
                "Using estimated elevation for %d points", len(query)
            )
            elevations = [estimate_elevation(c) for c in query]

        sample_distances = [cumulative[i] for i in indices]
        return [
            ElevationPoint(
                coordinate=coord,
                elevation_m=round(_interpolate(sample_distances, elevations, dist), 1),
                cumulative_distance_km=dist,
            )
            for coord, dist in zip(coordinates, cumulative)
        ]

    async def _query(self, coordinates: list[Coordinate]) -> list[float] | None:
        for service in self._services:
            try:
                elevations = await self._query_service(service, coordinates)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Elevation service %s failed: %s", service.name, exc)
                continue
            if elevations:
                return elevations
            logger.warning("Elevation service %s returned no data", service.name)
        return None

    async def _query_service(
        self, service: ElevationService, coordinates: list[Coordinate]
    ) -> list[float]:
        batch_size = service.max_locations or len(coordinates)
        result: list[float] = []
        for start in range(0, len(coordinates), batch_size):
            batch = coordinates[start:start + batch_size]
            values = await service.elevations_for(batch)
            if len(values) != len(batch):
                raise ValueError(
                    f"expected {len(batch)} elevations, got {len(values)}"
                )
            result.extend(float(v) for v in values)
        return result


def calculate_elevation_stats(
    profile: list[ElevationPoint],
    threshold_m: float = ELEVATION_NOISE_THRESHOLD_M,
) -> ElevationStats:
    """Gain, loss, extremes and grades for an elevation profile.

    Gain and loss only accumulate once the elevation has moved at least
    ``threshold_m`` away from the last significant value, so DEM jitter
    doesn't inflate the totals.
    """
    if not profile:
        return ElevationStats()

    elevations = [p.elevation_m for p in profile]
    gain = loss = 0.0
    last_significant = elevations[0]
    for elevation in elevations[1:]:
        delta = elevation - last_significant
        if abs(delta) >= threshold_m:
            if delta > 0:
                gain += delta
            else:
                loss -= delta
            last_significant = elevation

    grades: list[float] = []
    for prev, curr in zip(profile, profile[1:]):
        run_km = curr.cumulative_distance_km - prev.cumulative_distance_km
        if run_km >= MIN_GRADE_SPACING_KM:
            grades.append(abs(curr.elevation_m - prev.elevation_m) / (run_km * 1000) * 100)

    return ElevationStats(
        gain=round(gain, 1),
        loss=round(loss, 1),
        min=min(elevations),
        max=max(elevations),
        average_grade=round(sum(grades) / len(grades), 2) if grades else 0.0,
        max_grade=round(max(grades), 2) if grades else 0.0,
    )
