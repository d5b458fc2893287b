"""Pydantic data models for the cycling route engine.

Coordinates are always ``(longitude, latitude)`` tuples in WGS84 degrees.
Provider adapters convert to and from their own axis order at the boundary;
nothing inside the engine swaps the order.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

Coordinate = tuple[float, float]


# ---------------------------------------------------------------------------
# Tagged variants
# ---------------------------------------------------------------------------


class RouteType(str, Enum):
    LOOP = "loop"
    OUT_BACK = "out_back"
    POINT_TO_POINT = "point_to_point"


class TrainingGoal(str, Enum):
    RECOVERY = "recovery"
    ENDURANCE = "endurance"
    INTERVALS = "intervals"
    HILLS = "hills"


class TrafficTolerance(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class QuietnessLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class BikeInfrastructure(str, Enum):
    REQUIRED = "required"
    STRONGLY_PREFERRED = "strongly_preferred"
    PREFERRED = "preferred"
    FLEXIBLE = "flexible"


class Difficulty(str, Enum):
    EASY = "easy"
    MODERATE = "moderate"
    HARD = "hard"


class TemplateDifficulty(str, Enum):
    EASY = "easy"
    MODERATE = "moderate"
    CHALLENGING = "challenging"
    HARD = "hard"


class WaypointRole(str, Enum):
    START = "start"
    END = "end"
    WAYPOINT = "waypoint"


# ---------------------------------------------------------------------------
# Waypoints and route geometry
# ---------------------------------------------------------------------------


class Waypoint(BaseModel):
    """A user- or system-placed point the route must pass through."""

    model_config = ConfigDict(frozen=True)

    id: str
    position: Coordinate
    role: WaypointRole = WaypointRole.WAYPOINT
    label: str = ""


class ElevationPoint(BaseModel):
    """Elevation sample along a route."""

    coordinate: Coordinate
    elevation_m: float
    cumulative_distance_km: float
    """Distance from the first point; monotonically non-decreasing."""


class ElevationStats(BaseModel):
    gain: float = 0.0
    loss: float = 0.0
    min: float = 0.0
    max: float = 0.0
    average_grade: float = 0.0
    """Mean absolute grade in percent."""
    max_grade: float = 0.0


class SnapResult(BaseModel):
    """Road-snapped geometry returned by the routing layer."""

    coordinates: list[Coordinate]
    distance_meters: float
    duration_seconds: float = 0.0
    confidence: float = Field(ge=0.0, le=1.0)
    provider_tag: str

    traffic_exposure: float | None = None
    """Share of distance on busy road classes (0..1), when the provider knows."""

    quietness: float | None = None
    """Share of distance on quiet roads and cycle paths (0..1)."""

    @property
    def is_routable(self) -> bool:
        return self.confidence > 0 and len(self.coordinates) >= 2

    @classmethod
    def unroutable(cls, waypoints: list[Coordinate]) -> "SnapResult":
        """Sentinel for 'every provider failed': echoes the raw waypoints."""
        return cls(
            coordinates=list(waypoints),
            distance_meters=0.0,
            duration_seconds=0.0,
            confidence=0.0,
            provider_tag="unroutable",
        )


class RouteCandidate(BaseModel):
    """A complete candidate route. Frozen once accepted into the pool."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    distance_meters: float
    elevation_gain_m: float = 0.0
    elevation_loss_m: float = 0.0
    coordinates: list[Coordinate]
    difficulty: Difficulty = Difficulty.MODERATE
    training_goal: TrainingGoal
    pattern_tag: str
    confidence: float = Field(ge=0.0, le=1.0)
    source: str
    """Strategy that produced the route; ``fallback`` marks the last resort."""

    provider_tag: str = ""
    elevation_profile: list[ElevationPoint] = Field(default_factory=list)
    wind_factor: float = Field(default=0.8, ge=0.0, le=1.0)
    traffic_exposure: float | None = None
    quietness: float | None = None
    key_directions: list[str] = Field(default_factory=list)
    estimated_time_min: int | None = None
    score: float | None = None

    @property
    def distance_km(self) -> float:
        return self.distance_meters / 1000


# ---------------------------------------------------------------------------
# Riding history
# ---------------------------------------------------------------------------


class TrackPoint(BaseModel):
    latitude: float
    longitude: float
    elevation: float | None = None
    time_seconds: float | None = None


class RideRecord(BaseModel):
    """A past ride as returned by the ride-history store."""

    id: str = ""
    name: str = ""
    distance_km: float = 0.0
    elevation_gain_m: float = 0.0
    elevation_loss_m: float = 0.0
    duration_seconds: float | None = None
    recorded_at: datetime | None = None
    track_points: list[TrackPoint] = Field(default_factory=list)


class DistanceStats(BaseModel):
    mean: float
    median: float
    percentiles: dict[str, float]
    """Keys ``p25``, ``p50``, ``p75``, ``p90``."""

    min: float
    max: float
    most_common_range: str
    """One of short | medium | long | very_long."""

    distribution: dict[str, float]
    """Fraction of rides per bucket: short, medium, long, very_long."""


class ElevationTolerance(BaseModel):
    min: float
    max: float
    mean: float
    preferred: float
    """60th percentile of elevation gain per ride."""

    tolerance: float
    """80th percentile of elevation gain per ride."""

    style: str
    """flat | rolling | hilly | mountainous."""


class PreferredDirection(BaseModel):
    direction: str
    """Compass sector name, e.g. ``NE``."""

    bearing: float
    """Centre bearing of the sector in degrees."""

    preference: float
    """Share of ride legs falling into this sector."""


class FrequentArea(BaseModel):
    center: Coordinate
    frequency: int
    confidence: float


class RouteSegment(BaseModel):
    """A sub-polyline the rider has ridden at least twice."""

    coordinates: list[Coordinate]
    start_point: Coordinate
    end_point: Coordinate
    distance_km: float
    bearing: float
    frequency: int
    confidence: float


class RouteTemplate(BaseModel):
    """A whole-route shape derived from one past ride."""

    key_points: list[Coordinate]
    start_area: Coordinate
    end_area: Coordinate
    route_type: RouteType
    pattern: str
    difficulty: TemplateDifficulty
    base_distance_km: float
    base_elevation_m: float
    confidence: float
    timestamp: datetime | None = None


class PerformanceMetrics(BaseModel):
    average_speed_kmh: float
    confidence: float


class RidingProfile(BaseModel):
    """Read-only summary of a rider's history, rebuilt on every request."""

    distance_stats: DistanceStats
    preferred_directions: list[PreferredDirection] = Field(default_factory=list)
    frequent_areas: list[FrequentArea] = Field(default_factory=list)
    elevation_tolerance: ElevationTolerance
    route_segments: list[RouteSegment] = Field(default_factory=list)
    route_templates: list[RouteTemplate] = Field(default_factory=list)
    performance: PerformanceMetrics | None = None
    confidence: float = 0.0
    has_history: bool = False

    @classmethod
    def default(cls) -> "RidingProfile":
        """Profile for riders with no usable history.

        Medium-distance bias, no directional preference, moderate elevation
        tolerance and zero confidence, so history-based scoring contributes
        nothing.
        """
        return cls(
            distance_stats=DistanceStats(
                mean=25.0,
                median=20.0,
                percentiles={"p25": 15.0, "p50": 20.0, "p75": 30.0, "p90": 40.0},
                min=10.0,
                max=50.0,
                most_common_range="medium",
                distribution={
                    "short": 0.3,
                    "medium": 0.5,
                    "long": 0.2,
                    "very_long": 0.0,
                },
            ),
            elevation_tolerance=ElevationTolerance(
                min=0.0,
                max=1000.0,
                mean=300.0,
                preferred=300.0,
                tolerance=1000.0,
                style="rolling",
            ),
        )


# ---------------------------------------------------------------------------
# Weather and requests
# ---------------------------------------------------------------------------


class WeatherConditions(BaseModel):
    temperature_c: float
    wind_speed_kmh: float = 0.0
    wind_direction_deg: float = 0.0
    """Direction the wind blows *from*, in degrees."""

    description: str = ""
    humidity: float | None = None


class RoutePreferences(BaseModel):
    """Traffic and infrastructure preferences saved by the rider."""

    traffic_tolerance: TrafficTolerance = TrafficTolerance.MEDIUM
    quietness_level: QuietnessLevel | None = None
    bike_infrastructure: BikeInfrastructure = BikeInfrastructure.PREFERRED
    max_detour_percent: float = Field(default=20.0, ge=0.0, le=100.0)
    """Extra distance tolerated in exchange for safer roads."""

    prefer_walking_profile: bool = False


class RouteRequest(BaseModel):
    """A single route-generation request."""

    start: Coordinate
    """Start position as (longitude, latitude)."""

    time_available_min: int = Field(ge=15, le=240)
    training_goal: TrainingGoal = TrainingGoal.ENDURANCE
    route_type: RouteType = RouteType.LOOP
    preferences: RoutePreferences = Field(default_factory=RoutePreferences)
    user_id: str | None = None
    past_rides: list[RideRecord] | None = None
    """Inline history; takes precedence over the history store."""

    weather: WeatherConditions | None = None
    """Inline weather; takes precedence over the weather service."""


class RouteSuggestion(BaseModel):
    """One route idea returned by the reasoning service."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    description: str = "AI-generated cycling route"
    estimated_distance_km: float = Field(default=25.0, alias="estimatedDistance", gt=0)
    estimated_elevation_m: float = Field(default=150.0, alias="estimatedElevation", ge=0)
    difficulty: Difficulty = Difficulty.MODERATE
    key_directions: list[str] = Field(default_factory=list, alias="keyDirections")
    training_focus: str = Field(default="", alias="trainingFocus")
    weather_considerations: str = Field(default="", alias="weatherConsiderations")
    estimated_time_min: int | None = Field(default=None, alias="estimatedTime")


class CoachingAdvice(BaseModel):
    """The reasoning service's read of a rider's history, fed into suggestions."""

    model_config = ConfigDict(populate_by_name=True)

    personalized_advice: str = Field(default="", alias="personalizedAdvice")
    recommended_intensity: str = Field(default="", alias="recommendedIntensity")
    route_preferences: str = Field(default="", alias="routePreferences")
    progression_suggestions: str = Field(default="", alias="progressionSuggestions")

    @property
    def is_empty(self) -> bool:
        return not any(
            (
                self.personalized_advice,
                self.recommended_intensity,
                self.route_preferences,
                self.progression_suggestions,
            )
        )


class GenerationResult(BaseModel):
    """The ranked output of one generation request."""

    routes: list[RouteCandidate]
    target_distance_km: float
    weather: WeatherConditions | None = None
    profile_confidence: float = 0.0
    used_fallback: bool = False
    strategies_run: list[str] = Field(default_factory=list)


class SnapRouteRequest(BaseModel):
    """Request body for the /snap-route endpoint."""

    waypoints: list[Coordinate] = Field(min_length=2)
    training_goal: TrainingGoal = TrainingGoal.ENDURANCE
    preferences: RoutePreferences = Field(default_factory=RoutePreferences)


class SnapRouteResponse(BaseModel):
    waypoints: list[Waypoint]
    route: SnapResult
    elevation_profile: list[ElevationPoint]
    elevation_stats: ElevationStats
