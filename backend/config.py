"""Engine configuration.

Tunable constants live at module level so they can be read at a glance;
``EngineConfig`` copies them as defaults so a caller (or a test) can override
individual thresholds per generator instance without touching module state.
"""

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Route-generation rules: all tuneable constants in one place.
# ---------------------------------------------------------------------------

# Claude model used for route suggestions.
ROUTE_MODEL: str = "claude-sonnet-4-6"
SUGGESTION_MAX_TOKENS: int = 2000
SUGGESTION_TEMPERATURE: float = 0.7
COACHING_MAX_TOKENS: int = 600
COACHING_TEMPERATURE: float = 0.5

# -- Geometry -------------------------------------------------------------
EARTH_RADIUS_KM: float = 6371.0
# Routes whose average normalised bearing change falls below this are
# rejected as unrealistically straight.
MIN_ROUTE_COMPLEXITY: float = 0.03
TURN_THRESHOLD_DEG: float = 30.0    # bearing change counted as a "turn"

# -- Elevation -------------------------------------------------------------
# Changes smaller than this (relative to the last significant elevation)
# are treated as DEM/GPS noise and do not count towards gain or loss.
ELEVATION_NOISE_THRESHOLD_M: float = 3.0
MAX_ELEVATION_QUERY_POINTS: int = 50

# -- Routing ---------------------------------------------------------------
MATCH_RADII_M: tuple[int, ...] = (15, 25, 50)
MATCH_MIN_CONFIDENCE_MANY: float = 0.15   # more than MATCH_MANY_WAYPOINTS
MATCH_MIN_CONFIDENCE_FEW: float = 0.25
MATCH_MANY_WAYPOINTS: int = 4
MATCH_DENSITY_RATIO: float = 1.5    # snapped geometry this much denser = success
MAX_MATCH_WAYPOINTS: int = 100
DIRECTIONS_CONFIDENCE: float = 0.9
GOOD_ROUTE_QUALITY: float = 0.7     # infrastructure-aware result accepted above this
DEFAULT_MAX_DETOUR_PERCENT: float = 20.0

# -- Synthesis -------------------------------------------------------------
MIN_CANDIDATES: int = 3             # stop running strategies once reached
MAX_CONCURRENT_CANDIDATES: int = 3  # bounded fan-out within a strategy
MAX_SUGGESTIONS: int = 4
DISTANCE_DIVERGENCE_FACTOR: float = 2.0
DISTANCE_CORRECTION_TOLERANCE: float = 0.15
TEMPLATE_DISTANCE_TOLERANCE: float = 0.3
TEMPLATE_SCALE_BOUNDS: tuple[float, float] = (0.7, 1.3)
MAX_TEMPLATES_TRIED: int = 3
SEGMENT_SEARCH_RADIUS_KM: float = 5.0
SEGMENT_CHAIN_GAP_KM: float = 2.0
MAX_SEGMENT_TARGET_RATIO: float = 1.5
MAX_CHAINED_SEGMENTS: int = 6
FALLBACK_CONFIDENCE: float = 0.25

# Average speeds (km/h) used to turn a time budget into a target distance.
TARGET_SPEEDS_KMH: dict[str, float] = {
    "recovery": 20.0,
    "endurance": 25.0,
    "intervals": 22.0,
    "hills": 18.0,
}
DEFAULT_TARGET_SPEED_KMH: float = 23.0

# -- Scoring ---------------------------------------------------------------
BASE_SCORE: float = 0.5
MAX_ROUTES_RETURNED: int = 4
# Average speeds (km/h) used to estimate ride duration while scoring.
SCORING_SPEEDS_KMH: dict[str, float] = {
    "recovery": 18.0,
    "endurance": 22.0,
    "intervals": 20.0,
    "hills": 15.0,
}
FREQUENT_AREA_BONUS_RADIUS_KM: float = 5.0

# -- History ---------------------------------------------------------------
SEGMENT_LENGTH_KM: float = 2.0
MIN_SEGMENT_POINTS: int = 5
MIN_TRACK_POINTS: int = 10
SEGMENT_MATCH_RADIUS_KM: float = 0.5
SEGMENT_BEARING_TOLERANCE_DEG: float = 30.0
FREQUENT_AREA_RADIUS_KM: float = 1.0
MIN_AREA_VISITS: int = 3
MAX_FREQUENT_AREAS: int = 5
MAX_PREFERRED_DIRECTIONS: int = 3
MAX_TEMPLATES: int = 10
LOOP_CLOSURE_KM: float = 0.5
NEARBY_AREA_RADIUS_KM: float = 20.0


class EngineConfig(BaseModel):
    """Per-generator overrides for the thresholds above."""

    min_route_complexity: float = MIN_ROUTE_COMPLEXITY
    """Geometric-rejection threshold for synthesised candidates."""

    elevation_noise_threshold_m: float = ELEVATION_NOISE_THRESHOLD_M
    max_elevation_query_points: int = MAX_ELEVATION_QUERY_POINTS

    match_radii_m: tuple[int, ...] = MATCH_RADII_M
    """Map-matching search radii, tried in order."""

    match_min_confidence_many: float = MATCH_MIN_CONFIDENCE_MANY
    match_min_confidence_few: float = MATCH_MIN_CONFIDENCE_FEW

    min_candidates: int = Field(default=MIN_CANDIDATES, ge=1)
    """Synthesis stops running further strategies once this many exist."""

    max_concurrent_candidates: int = Field(default=MAX_CONCURRENT_CANDIDATES, ge=1)
    max_routes_returned: int = Field(default=MAX_ROUTES_RETURNED, ge=1)
    distance_divergence_factor: float = DISTANCE_DIVERGENCE_FACTOR
