"""Spherical geometry helpers for route synthesis and validation.

Pure functions over ``(longitude, latitude)`` coordinates. No I/O.
"""

import math
from typing import NamedTuple

from config import EARTH_RADIUS_KM, TURN_THRESHOLD_DEG
from models import Coordinate

_KM_PER_DEGREE = math.pi * EARTH_RADIUS_KM / 180


class NearestPoint(NamedTuple):
    point: Coordinate
    segment_index: int
    """Index of the segment's first vertex."""
    distance_km: float


def bearing(a: Coordinate, b: Coordinate) -> float:
    """Returns the initial bearing in degrees (0-360) from a to b."""
    lng1, lat1 = a
    lng2, lat2 = b
    lat1, lat2 = math.radians(lat1), math.radians(lat2)
    dlng = math.radians(lng2 - lng1)
    x = math.sin(dlng) * math.cos(lat2)
    y = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlng)
    return (math.degrees(math.atan2(x, y)) + 360) % 360


def distance_km(a: Coordinate, b: Coordinate) -> float:
    """Returns the great-circle distance in kilometres between two points."""
    lng1, lat1 = a
    lng2, lat2 = b
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = lat2_r - lat1_r
    dlng = math.radians(lng2 - lng1)
    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def destination_point(
    origin: Coordinate, distance: float, bearing_deg: float
) -> Coordinate:
    """Projects ``distance`` km from ``origin`` along ``bearing_deg``."""
    lng, lat = origin
    lat1 = math.radians(lat)
    lng1 = math.radians(lng)
    brng = math.radians(bearing_deg)
    delta = distance / EARTH_RADIUS_KM

    lat2 = math.asin(
        math.sin(lat1) * math.cos(delta)
        + math.cos(lat1) * math.sin(delta) * math.cos(brng)
    )
    lng2 = lng1 + math.atan2(
        math.sin(brng) * math.sin(delta) * math.cos(lat1),
        math.cos(delta) - math.sin(lat1) * math.sin(lat2),
    )
    # Normalise longitude to [-180, 180).
    lng2 = (math.degrees(lng2) + 540) % 360 - 180
    return (lng2, math.degrees(lat2))


def bearing_difference(b1: float, b2: float) -> float:
    """Smallest absolute angle between two bearings, in [0, 180]."""
    diff = abs(b1 - b2) % 360
    return 360 - diff if diff > 180 else diff


def _turn_angles(coordinates: list[Coordinate]) -> list[float]:
    """Bearing change at every interior vertex, skipping zero-length legs."""
    angles: list[float] = []
    for i in range(1, len(coordinates) - 1):
        prev, curr, nxt = coordinates[i - 1], coordinates[i], coordinates[i + 1]
        if prev == curr or curr == nxt:
            continue
        angles.append(bearing_difference(bearing(prev, curr), bearing(curr, nxt)))
    return angles


def route_complexity(coordinates: list[Coordinate]) -> float:
    """Average normalised bearing change per vertex, in [0, 1].

    0 means a perfectly straight path; 1 means every vertex is a full
    reversal. Synthetic routes scoring below ``MIN_ROUTE_COMPLEXITY`` look
    like ruler-drawn geometry rather than roads.
    """
    angles = _turn_angles(coordinates)
    if not angles:
        return 0.0
    return sum(angles) / len(angles) / 180


def turn_density(
    coordinates: list[Coordinate], threshold_deg: float = TURN_THRESHOLD_DEG
) -> float:
    """Fraction of vertices where the path turns by more than ``threshold_deg``."""
    angles = _turn_angles(coordinates)
    if not angles:
        return 0.0
    return sum(1 for a in angles if a > threshold_deg) / len(angles)


def polyline_length_km(coordinates: list[Coordinate]) -> float:
    return sum(
        distance_km(coordinates[i - 1], coordinates[i])
        for i in range(1, len(coordinates))
    )


def cumulative_distances_km(coordinates: list[Coordinate]) -> list[float]:
    """Running distance from the first point; same length as the input."""
    if not coordinates:
        return []
    totals = [0.0]
    for i in range(1, len(coordinates)):
        totals.append(totals[-1] + distance_km(coordinates[i - 1], coordinates[i]))
    return totals


def centroid(coordinates: list[Coordinate]) -> Coordinate:
    if not coordinates:
        raise ValueError("centroid requires at least one coordinate.")
    n = len(coordinates)
    return (
        sum(c[0] for c in coordinates) / n,
        sum(c[1] for c in coordinates) / n,
    )


def interpolate(a: Coordinate, b: Coordinate, fraction: float) -> Coordinate:
    """Linear interpolation in degree space; adequate for short legs."""
    return (a[0] + (b[0] - a[0]) * fraction, a[1] + (b[1] - a[1]) * fraction)


# ---------------------------------------------------------------------------
# Planar helpers (local equirectangular projection, kilometres)
# ---------------------------------------------------------------------------


def _project(point: Coordinate, origin: Coordinate) -> tuple[float, float]:
    cos_lat = math.cos(math.radians(origin[1]))
    return (
        (point[0] - origin[0]) * cos_lat * _KM_PER_DEGREE,
        (point[1] - origin[1]) * _KM_PER_DEGREE,
    )


def _unproject(xy: tuple[float, float], origin: Coordinate) -> Coordinate:
    cos_lat = math.cos(math.radians(origin[1]))
    return (
        origin[0] + xy[0] / (cos_lat * _KM_PER_DEGREE),
        origin[1] + xy[1] / _KM_PER_DEGREE,
    )


def _closest_on_segment(
    p: tuple[float, float], a: tuple[float, float], b: tuple[float, float]
) -> tuple[float, float]:
    dx, dy = b[0] - a[0], b[1] - a[1]
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return a
    t = ((p[0] - a[0]) * dx + (p[1] - a[1]) * dy) / length_sq
    t = max(0.0, min(1.0, t))
    return (a[0] + t * dx, a[1] + t * dy)


def _perpendicular_km(
    p: tuple[float, float], a: tuple[float, float], b: tuple[float, float]
) -> float:
    c = _closest_on_segment(p, a, b)
    return math.hypot(p[0] - c[0], p[1] - c[1])


def simplify(coordinates: list[Coordinate], tolerance_km: float) -> list[Coordinate]:
    """Douglas-Peucker simplification with the tolerance in kilometres.

    The first and last points are always kept.
    """
    if len(coordinates) < 3:
        return list(coordinates)

    origin = coordinates[0]
    projected = [_project(c, origin) for c in coordinates]
    keep = [False] * len(coordinates)
    keep[0] = keep[-1] = True

    stack = [(0, len(coordinates) - 1)]
    while stack:
        first, last = stack.pop()
        max_dist = 0.0
        index = first
        for i in range(first + 1, last):
            d = _perpendicular_km(projected[i], projected[first], projected[last])
            if d > max_dist:
                max_dist = d
                index = i
        if max_dist > tolerance_km:
            keep[index] = True
            stack.append((first, index))
            stack.append((index, last))

    return [c for c, k in zip(coordinates, keep) if k]


def even_indices(length: int, limit: int) -> list[int]:
    """At most ``limit`` evenly spaced indices into a sequence of ``length``.

    The first and last index are always kept.
    """
    limit = max(2, limit)
    if length <= limit:
        return list(range(length))
    step = (length - 1) / (limit - 1)
    return sorted({round(i * step) for i in range(limit)})


def thin(coordinates: list[Coordinate], limit: int) -> list[Coordinate]:
    return [coordinates[i] for i in even_indices(len(coordinates), limit)]


def simplify_to(coordinates: list[Coordinate], max_points: int) -> list[Coordinate]:
    """Simplifies with a growing tolerance until at most ``max_points`` remain."""
    max_points = max(2, max_points)
    if len(coordinates) <= max_points:
        return list(coordinates)
    tolerance = 0.005
    simplified = simplify(coordinates, tolerance)
    while len(simplified) > max_points:
        tolerance *= 2
        simplified = simplify(coordinates, tolerance)
    return simplified


def nearest_point_on_polyline(
    coordinates: list[Coordinate], point: Coordinate
) -> NearestPoint:
    """Projects ``point`` onto the closest segment of the polyline.

    Raises:
        ValueError: If the polyline is empty.
    """
    if not coordinates:
        raise ValueError("nearest_point_on_polyline requires a non-empty polyline.")
    if len(coordinates) == 1:
        return NearestPoint(coordinates[0], 0, distance_km(coordinates[0], point))

    p = _project(point, point)
    best: NearestPoint | None = None
    for i in range(len(coordinates) - 1):
        a = _project(coordinates[i], point)
        b = _project(coordinates[i + 1], point)
        closest = _closest_on_segment(p, a, b)
        d = math.hypot(closest[0] - p[0], closest[1] - p[1])
        if best is None or d < best.distance_km:
            best = NearestPoint(_unproject(closest, point), i, d)
    return best
