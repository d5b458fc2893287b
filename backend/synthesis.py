"""Candidate route synthesis.

Strategies run in priority order and append to a shared candidate pool:

  1.  AI suggestions: the reasoning service proposes routes, each turned
      into waypoints by the generators below.
  2.  Personal templates: shapes of the rider's past rides, translated to
      the new start.
  3.  Segment reuse: stretches the rider has ridden repeatedly, chained
      into a route.
  4.  Procedural: loop, out-and-back or point-to-point waypoint patterns.

Synthesis stops once ``min_candidates`` exist. Within a strategy every
candidate is snapped and profiled concurrently (bounded fan-out). All
randomness comes from the injected ``random.Random`` and is drawn before any
request is issued, so a seeded generator reproduces the same waypoints.
"""

import asyncio
import logging
import math
import random
from datetime import datetime, timezone
from typing import NamedTuple, Protocol

from config import (
    DEFAULT_TARGET_SPEED_KMH,
    DISTANCE_CORRECTION_TOLERANCE,
    FALLBACK_CONFIDENCE,
    MAX_CHAINED_SEGMENTS,
    MAX_SEGMENT_TARGET_RATIO,
    MAX_SUGGESTIONS,
    MAX_TEMPLATES_TRIED,
    SEGMENT_CHAIN_GAP_KM,
    SEGMENT_SEARCH_RADIUS_KM,
    TARGET_SPEEDS_KMH,
    TEMPLATE_DISTANCE_TOLERANCE,
    TEMPLATE_SCALE_BOUNDS,
    EngineConfig,
)
from elevation import ElevationProvider, calculate_elevation_stats
from geometry import (
    bearing,
    bearing_difference,
    destination_point,
    distance_km,
    polyline_length_km,
    route_complexity,
    simplify_to,
)
from history import PatternGuidance, guidance_for, recency_score
from models import (
    CoachingAdvice,
    Coordinate,
    Difficulty,
    FrequentArea,
    PerformanceMetrics,
    RidingProfile,
    RouteCandidate,
    RouteRequest,
    RouteSegment,
    RouteTemplate,
    RouteType,
    SnapResult,
    TemplateDifficulty,
    TrainingGoal,
    WeatherConditions,
)
from routing import RoutingProvider, SnapOptions, cycling_profile_for
from suggestions import (
    build_coaching_prompt,
    build_suggestion_prompt,
    parse_coaching,
    parse_suggestions,
)
from weather import wind_factor

logger = logging.getLogger(__name__)

# (name, bearing, radius factor) for procedural loops.
LOOP_PATTERNS: tuple[tuple[str, float, float], ...] = (
    ("North", 0.0, 0.7),
    ("East", 90.0, 0.8),
    ("South", 180.0, 0.7),
    ("West", 270.0, 0.8),
)
# (name, bearing) for out-and-back and point-to-point routes.
HEADINGS: tuple[tuple[str, float], ...] = (
    ("North", 0.0),
    ("Northeast", 45.0),
    ("East", 90.0),
    ("Southeast", 135.0),
)
PROCEDURAL_VARIANTS: int = 3
# Share of loops laid out around the rider's favourite bearing when one exists.
PREFERRED_DIRECTION_CHANCE: float = 0.7
AREA_BEARING_TOLERANCE_DEG: float = 45.0
# Most routing services cap the number of via points in one request.
MAX_ROUTE_WAYPOINTS: int = 25
MAX_SEGMENT_WAYPOINTS: int = 98

_COMPATIBLE_DIFFICULTIES: dict[TrainingGoal, frozenset] = {
    TrainingGoal.RECOVERY: frozenset({TemplateDifficulty.EASY}),
    TrainingGoal.ENDURANCE: frozenset(
        {TemplateDifficulty.EASY, TemplateDifficulty.MODERATE, TemplateDifficulty.CHALLENGING}
    ),
    TrainingGoal.INTERVALS: frozenset({TemplateDifficulty.EASY, TemplateDifficulty.MODERATE}),
    TrainingGoal.HILLS: frozenset({TemplateDifficulty.CHALLENGING, TemplateDifficulty.HARD}),
}

_ROUTE_TYPE_LABELS = {
    RouteType.LOOP: "Loop",
    RouteType.OUT_BACK: "Out & Back",
    RouteType.POINT_TO_POINT: "Point-to-Point",
}


class ReasoningService(Protocol):
    """External LLM that proposes routes as free text."""

    name: str

    async def suggest_routes(self, prompt: str) -> str:
        ...

    async def analyze_patterns(self, prompt: str) -> str:
        ...


class RoutePlan(NamedTuple):
    """Waypoints plus the metadata a finished candidate will carry."""

    name: str
    waypoints: list[Coordinate]
    source: str
    pattern_tag: str
    target_km: float
    description: str = ""
    mirror: bool = False
    """Snap the waypoints as an outbound leg and ride it back."""

    correct_distance: bool = False
    confidence: float | None = None
    """Fixed confidence; otherwise the snap confidence times ``confidence_scale``."""

    confidence_scale: float = 1.0
    confidence_cap: float = 1.0
    template_distance_km: float | None = None
    key_directions: tuple[str, ...] = ()
    estimated_time_min: int | None = None


class _Context(NamedTuple):
    request: RouteRequest
    profile: RidingProfile
    target_km: float
    weather: WeatherConditions | None
    guidance: PatternGuidance
    snap_options: SnapOptions
    routing_profile: str


# ---------------------------------------------------------------------------
# Distance and difficulty
# ---------------------------------------------------------------------------


def calculate_target_distance(
    time_available_min: float,
    goal: TrainingGoal,
    performance: PerformanceMetrics | None = None,
) -> float:
    """Distance (km) a rider can cover in the time budget for ``goal``."""
    speed = TARGET_SPEEDS_KMH.get(goal.value, DEFAULT_TARGET_SPEED_KMH)
    if performance is not None and performance.confidence > 0.5:
        speed = speed * 0.7 + performance.average_speed_kmh * 0.3
    return round(time_available_min / 60 * speed, 2)


def classify_difficulty(distance: float, elevation_gain_m: float) -> Difficulty:
    """Difficulty from climbing per kilometre."""
    if distance <= 0:
        return Difficulty.EASY
    per_km = elevation_gain_m / distance
    if per_km < 10:
        return Difficulty.EASY
    if per_km < 25:
        return Difficulty.MODERATE
    return Difficulty.HARD


# ---------------------------------------------------------------------------
# Waypoint generators
# ---------------------------------------------------------------------------


def _area_near(
    start: Coordinate,
    areas: list[FrequentArea],
    target_bearing: float,
    target_distance: float,
    used: set[int],
) -> Coordinate | None:
    """A frequently visited area lying roughly where a waypoint would go."""
    for i, area in enumerate(areas):
        if i in used:
            continue
        area_distance = distance_km(start, area.center)
        if not 0.5 * target_distance <= area_distance <= 1.5 * target_distance:
            continue
        if (
            bearing_difference(bearing(start, area.center), target_bearing)
            <= AREA_BEARING_TOLERANCE_DEG
        ):
            used.add(i)
            return area.center
    return None


def generate_loop_waypoints(
    start: Coordinate,
    target_km: float,
    rng: random.Random,
    *,
    bearing_offset: float = 0.0,
    radius_factor: float = 0.8,
    preferred_bearing: float | None = None,
    areas: list[FrequentArea] | None = None,
) -> list[Coordinate]:
    """Waypoints circling the start; the list begins and ends at ``start``."""
    count = min(6, max(3, math.floor(target_km / 12)))
    base_radius = target_km / (2 * math.pi) * radius_factor
    use_preferred = preferred_bearing is not None and rng.random() < PREFERRED_DIRECTION_CHANCE
    used: set[int] = set()

    points = [start]
    for i in range(count):
        progress = i / count
        if use_preferred:
            angle = preferred_bearing + i * 360 / count + rng.uniform(-20, 20)
        else:
            angle = (
                bearing_offset
                + progress * 360
                + math.sin(progress * 2 * math.pi) * 30
                + rng.uniform(-12.5, 12.5)
            )
        angle %= 360
        radius = base_radius * (math.sin(i * math.pi / 2) * 0.3 + 1) * rng.uniform(0.9, 1.1)
        area = _area_near(start, areas or [], angle, radius, used)
        points.append(area or destination_point(start, radius, angle))
    points.append(start)
    return points


def generate_out_and_back_waypoints(
    start: Coordinate,
    target_km: float,
    rng: random.Random,
    *,
    heading: float = 0.0,
    areas: list[FrequentArea] | None = None,
) -> list[Coordinate]:
    """The outbound leg only: start, 1-3 via points, then the turnaround.

    Longer outbound legs get more via points, one per 10 km, capped at 3.
    """
    outbound = target_km / 2
    turnaround = _area_near(start, areas or [], heading, outbound, set())
    if turnaround is not None:
        heading = bearing(start, turnaround)
        outbound = distance_km(start, turnaround)
    else:
        turnaround = destination_point(start, outbound, heading)

    # One via point per 10 km of outbound leg.
    via_count = min(3, max(1, math.floor(outbound / 10)))
    points = [start]
    for k in range(1, via_count + 1):
        points.append(
            destination_point(
                start, outbound * k / (via_count + 1), heading + rng.uniform(-10, 10)
            )
        )
    points.append(turnaround)
    return points


def generate_point_to_point_waypoints(
    start: Coordinate,
    target_km: float,
    rng: random.Random,
    *,
    heading: float = 0.0,
) -> list[Coordinate]:
    """Waypoints progressing away from the start to a destination ``target_km`` out."""
    count = min(4, max(2, math.floor(target_km / 15)))
    points = [start]
    for k in range(1, count + 1):
        points.append(
            destination_point(
                start, target_km * k / (count + 1), heading + rng.uniform(-15, 15)
            )
        )
    points.append(destination_point(start, target_km, heading))
    return points


def rescale_waypoints(
    start: Coordinate, waypoints: list[Coordinate], factor: float
) -> list[Coordinate]:
    """Pushes every waypoint except the start ``factor`` times further out."""
    return [
        wp
        if wp == start
        else destination_point(start, distance_km(start, wp) * factor, bearing(start, wp))
        for wp in waypoints
    ]


def translate_template(template: RouteTemplate, start: Coordinate) -> list[Coordinate]:
    """Moves a template's key points so it begins at ``start`` (no rotation)."""
    dx = start[0] - template.start_area[0]
    dy = start[1] - template.start_area[1]
    inner = [(lng + dx, lat + dy) for lng, lat in template.key_points[1:-1]]
    if template.route_type is RouteType.LOOP:
        end = start
    else:
        end = (template.end_area[0] + dx, template.end_area[1] + dy)
    return [start, *inner, end]


def compatible_templates(
    templates: list[RouteTemplate],
    route_type: RouteType,
    target_km: float,
    goal: TrainingGoal,
    now: datetime | None = None,
) -> list[RouteTemplate]:
    """Templates worth adapting, best first."""
    allowed = _COMPATIBLE_DIFFICULTIES.get(goal, frozenset(TemplateDifficulty))
    matches = [
        t
        for t in templates
        if t.route_type is route_type
        and abs(t.base_distance_km - target_km) <= target_km * TEMPLATE_DISTANCE_TOLERANCE
        and t.difficulty in allowed
    ]
    now = now or datetime.now(timezone.utc)
    matches.sort(
        key=lambda t: t.confidence * 0.6 + recency_score(t.timestamp, now) * 0.4,
        reverse=True,
    )
    return matches[:MAX_TEMPLATES_TRIED]


def _oriented(segment: RouteSegment, anchor: Coordinate) -> list[Coordinate]:
    """Segment coordinates ordered to begin at the end nearest ``anchor``."""
    if distance_km(anchor, segment.end_point) < distance_km(anchor, segment.start_point):
        return list(reversed(segment.coordinates))
    return list(segment.coordinates)


def _gap(anchor: Coordinate, segment: RouteSegment) -> float:
    return min(distance_km(anchor, segment.start_point), distance_km(anchor, segment.end_point))


def chain_segments(
    start: Coordinate,
    segments: list[RouteSegment],
    chain_km: float,
    *,
    max_segment_km: float | None = None,
) -> list[Coordinate]:
    """Greedily links familiar segments into one path starting near ``start``.

    The first segment is the closest one within the search radius; further
    segments are appended while they start within a short ride of the
    current end and the chain is still shorter than ``chain_km``. Segments
    longer than ``max_segment_km`` are never used.
    """
    if max_segment_km is not None:
        segments = [s for s in segments if s.distance_km <= max_segment_km]
    usable = [s for s in segments if _gap(start, s) <= SEGMENT_SEARCH_RADIUS_KM]
    if not usable:
        return []

    first = min(usable, key=lambda s: _gap(start, s))
    path = _oriented(first, start)
    used = {id(first)}
    total = first.distance_km

    while total < chain_km and len(used) < MAX_CHAINED_SEGMENTS:
        tail = path[-1]
        nearby = [
            s for s in segments if id(s) not in used and _gap(tail, s) <= SEGMENT_CHAIN_GAP_KM
        ]
        if not nearby:
            break
        nxt = min(nearby, key=lambda s: _gap(tail, s))
        total += _gap(tail, nxt) + nxt.distance_km
        path.extend(_oriented(nxt, tail))
        used.add(id(nxt))
    return path


# ---------------------------------------------------------------------------
# Synthesizer
# ---------------------------------------------------------------------------


class CandidateRouteSynthesizer:
    """Builds candidate routes for a request using every available strategy."""

    def __init__(
        self,
        routing: RoutingProvider,
        elevation: ElevationProvider,
        *,
        reasoning_service: ReasoningService | None = None,
        config: EngineConfig | None = None,
        rng: random.Random | None = None,
    ):
        self._routing = routing
        self._elevation = elevation
        self._reasoning = reasoning_service
        self._config = config or EngineConfig()
        self._rng = rng or random.Random()

    async def synthesize(
        self,
        request: RouteRequest,
        profile: RidingProfile,
        *,
        target_distance_km: float | None = None,
        weather: WeatherConditions | None = None,
    ) -> list[RouteCandidate]:
        candidates, _ = await self.run_strategies(
            request, profile, target_distance_km=target_distance_km, weather=weather
        )
        return candidates

    async def run_strategies(
        self,
        request: RouteRequest,
        profile: RidingProfile,
        *,
        target_distance_km: float | None = None,
        weather: WeatherConditions | None = None,
    ) -> tuple[list[RouteCandidate], list[str]]:
        """Runs strategies until enough candidates exist.

        Returns:
            The accepted candidates and the names of the strategies that ran.
        """
        target = target_distance_km or calculate_target_distance(
            request.time_available_min, request.training_goal, profile.performance
        )
        ctx = _Context(
            request=request,
            profile=profile,
            target_km=target,
            weather=weather,
            guidance=guidance_for(profile, request.start, target, request.training_goal),
            snap_options=SnapOptions.from_preferences(request.preferences),
            routing_profile=cycling_profile_for(request.training_goal),
        )

        strategies = [
            ("ai_suggestion", self._reasoning is not None, self._suggestion_plans),
            ("personal_template", bool(profile.route_templates), self._template_plans),
            ("segments", bool(profile.route_segments), self._segment_plans),
            ("procedural", True, self._procedural_plans),
        ]

        candidates: list[RouteCandidate] = []
        ran: list[str] = []
        for name, available, make_plans in strategies:
            if len(candidates) >= self._config.min_candidates:
                break
            if not available:
                continue
            ran.append(name)
            plans = await make_plans(ctx)
            built = await self._build_all(plans, ctx)
            logger.info(
                "Strategy %s produced %d of %d candidates", name, len(built), len(plans)
            )
            candidates.extend(built)
        return candidates, ran

    # -- Plans ------------------------------------------------------------

    async def _coaching(self, ctx: _Context) -> CoachingAdvice | None:
        if not ctx.profile.has_history:
            return None
        prompt = build_coaching_prompt(ctx.request, ctx.target_km, ctx.profile)
        try:
            text = await self._reasoning.analyze_patterns(prompt)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Pattern analysis by %s failed: %s", self._reasoning.name, exc)
            return None
        return parse_coaching(text)

    async def _suggestion_plans(self, ctx: _Context) -> list[RoutePlan]:
        coaching = await self._coaching(ctx)
        prompt = build_suggestion_prompt(
            ctx.request, ctx.target_km, ctx.weather, ctx.profile, coaching
        )
        try:
            text = await self._reasoning.suggest_routes(prompt)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Reasoning service %s failed: %s", self._reasoning.name, exc)
            return []

        parsed = parse_suggestions(text)
        if not parsed.ok:
            logger.warning("Ignoring route suggestions: %s", parsed.error)
            return []

        headings = self._ranked_headings(ctx)
        plans = []
        for i, suggestion in enumerate(parsed.suggestions[:MAX_SUGGESTIONS]):
            distance = max(
                ctx.target_km * 0.5, min(ctx.target_km * 1.5, suggestion.estimated_distance_km)
            )
            heading = headings[i % len(headings)]
            waypoints, mirror = self._waypoints_for(ctx, distance, heading)
            plans.append(
                RoutePlan(
                    name=suggestion.name,
                    description=suggestion.description,
                    waypoints=waypoints,
                    mirror=mirror,
                    source="ai_suggestion",
                    pattern_tag="ai_suggested",
                    target_km=distance,
                    correct_distance=True,
                    confidence_scale=0.9,
                    key_directions=tuple(suggestion.key_directions),
                    estimated_time_min=suggestion.estimated_time_min,
                )
            )
        return plans

    async def _template_plans(self, ctx: _Context) -> list[RoutePlan]:
        templates = compatible_templates(
            ctx.profile.route_templates,
            ctx.request.route_type,
            ctx.target_km,
            ctx.request.training_goal,
        )
        plans = []
        for template in templates:
            waypoints = simplify_to(
                translate_template(template, ctx.request.start), MAX_ROUTE_WAYPOINTS
            )
            plans.append(
                RoutePlan(
                    name=f"Familiar {template.pattern.replace('_', ' ')} "
                    f"{_ROUTE_TYPE_LABELS[template.route_type]}",
                    description=(
                        f"Adapted from a {template.base_distance_km:.0f} km ride you've "
                        "done before."
                    ),
                    waypoints=waypoints,
                    source="personal_template",
                    pattern_tag=template.pattern,
                    target_km=ctx.target_km,
                    confidence=template.confidence * 0.9,
                    template_distance_km=template.base_distance_km,
                )
            )
        return plans

    async def _segment_plans(self, ctx: _Context) -> list[RoutePlan]:
        route_type = ctx.request.route_type
        chain_km = ctx.target_km if route_type is RouteType.POINT_TO_POINT else ctx.target_km / 2
        path = chain_segments(
            ctx.request.start,
            ctx.profile.route_segments,
            chain_km,
            max_segment_km=ctx.target_km * MAX_SEGMENT_TARGET_RATIO,
        )
        if not path:
            return []

        start = ctx.request.start
        waypoints = [start, *path]
        if route_type is RouteType.LOOP:
            waypoints.append(start)
        return [
            RoutePlan(
                name="Familiar Roads",
                description="Built from road segments you ride regularly.",
                waypoints=simplify_to(waypoints, MAX_SEGMENT_WAYPOINTS),
                mirror=route_type is RouteType.OUT_BACK,
                source="segments",
                pattern_tag="historical",
                target_km=ctx.target_km,
                confidence_cap=0.95,
            )
        ]

    async def _procedural_plans(self, ctx: _Context) -> list[RoutePlan]:
        route_type = ctx.request.route_type
        label = _ROUTE_TYPE_LABELS[route_type]
        plans = []
        for name, heading in self._ranked_headings(ctx)[:PROCEDURAL_VARIANTS]:
            waypoints, mirror = self._waypoints_for(ctx, ctx.target_km, (name, heading))
            plans.append(
                RoutePlan(
                    name=f"{name} {label}",
                    description=(
                        f"A {ctx.target_km:.0f} km {label.lower()} heading {name.lower()} "
                        f"for {ctx.request.training_goal.value} training."
                    ),
                    waypoints=waypoints,
                    mirror=mirror,
                    source="procedural",
                    pattern_tag=f"{route_type.value}_{name.lower()}",
                    target_km=ctx.target_km,
                    correct_distance=True,
                )
            )
        return plans

    def _ranked_headings(self, ctx: _Context) -> list[tuple[str, float]]:
        """Headings ordered by closeness to the preferred bearing."""
        preferred = ctx.guidance.preferred_bearing
        if ctx.request.route_type is RouteType.LOOP:
            options = [(name, b) for name, b, _ in LOOP_PATTERNS]
        else:
            options = list(HEADINGS)
        return sorted(options, key=lambda o: bearing_difference(o[1], preferred))

    def _waypoints_for(
        self, ctx: _Context, distance: float, heading: tuple[str, float]
    ) -> tuple[list[Coordinate], bool]:
        start = ctx.request.start
        areas = ctx.guidance.nearby_areas
        name, heading_deg = heading
        route_type = ctx.request.route_type
        if route_type is RouteType.LOOP:
            radius_factor = next((r for n, _, r in LOOP_PATTERNS if n == name), 0.8)
            preferred = (
                ctx.guidance.preferred_bearing
                if ctx.guidance.bearing_source == "historical"
                else None
            )
            return (
                generate_loop_waypoints(
                    start,
                    distance,
                    self._rng,
                    bearing_offset=heading_deg,
                    radius_factor=radius_factor,
                    preferred_bearing=preferred,
                    areas=areas,
                ),
                False,
            )
        if route_type is RouteType.OUT_BACK:
            return (
                generate_out_and_back_waypoints(
                    start, distance, self._rng, heading=heading_deg, areas=areas
                ),
                True,
            )
        return (
            generate_point_to_point_waypoints(start, distance, self._rng, heading=heading_deg),
            False,
        )

    # -- Building ---------------------------------------------------------

    async def _build_all(self, plans: list[RoutePlan], ctx: _Context) -> list[RouteCandidate]:
        if not plans:
            return []
        semaphore = asyncio.Semaphore(self._config.max_concurrent_candidates)

        async def bounded(plan: RoutePlan) -> RouteCandidate | None:
            async with semaphore:
                return await self._build(plan, ctx)

        results = await asyncio.gather(*(bounded(p) for p in plans))
        return [c for c in results if c is not None]

    async def _snap(self, plan: RoutePlan, waypoints: list[Coordinate], ctx: _Context) -> SnapResult:
        result = await self._routing.snap_route(waypoints, ctx.routing_profile, ctx.snap_options)
        if not result.is_routable:
            return result
        distance_m = result.distance_meters or polyline_length_km(result.coordinates) * 1000
        result = result.model_copy(update={"distance_meters": distance_m})
        if not plan.mirror:
            return result
        back = list(reversed(result.coordinates))[1:]
        return result.model_copy(
            update={
                "coordinates": result.coordinates + back,
                "distance_meters": result.distance_meters * 2,
                "duration_seconds": result.duration_seconds * 2,
            }
        )

    def _rejection_reason(
        self, snap: SnapResult, plan_km: float, requested_km: float
    ) -> str | None:
        if not snap.is_routable:
            return "unroutable"
        complexity = route_complexity(snap.coordinates)
        if complexity < self._config.min_route_complexity:
            return f"too straight (complexity {complexity:.3f})"
        distance = snap.distance_meters / 1000
        factor = self._config.distance_divergence_factor
        # Plans may aim off the requested distance, but never beyond the
        # divergence factor of what the rider asked for.
        for target_km in (plan_km, requested_km):
            if not target_km / factor <= distance <= target_km * factor:
                return f"distance {distance:.1f} km too far from {target_km:.1f} km"
        return None

    async def _build(self, plan: RoutePlan, ctx: _Context) -> RouteCandidate | None:
        snap = await self._snap(plan, plan.waypoints, ctx)
        if not snap.is_routable:
            logger.debug("Plan %r unroutable", plan.name)
            return None

        distance = snap.distance_meters / 1000
        if (
            plan.correct_distance
            and distance > 0
            and abs(distance - plan.target_km) / plan.target_km > DISTANCE_CORRECTION_TOLERANCE
        ):
            rescaled = rescale_waypoints(
                ctx.request.start, plan.waypoints, plan.target_km / distance
            )
            retry = await self._snap(plan, rescaled, ctx)
            if retry.is_routable and abs(retry.distance_meters / 1000 - plan.target_km) < abs(
                distance - plan.target_km
            ):
                snap = retry

        reason = self._rejection_reason(snap, plan.target_km, ctx.target_km)
        if reason:
            logger.debug("Rejected %r: %s", plan.name, reason)
            return None

        if plan.template_distance_km is not None:
            scale = plan.template_distance_km / (snap.distance_meters / 1000)
            low, high = TEMPLATE_SCALE_BOUNDS
            if not low <= scale <= high:
                logger.debug("Rejected %r: template scale %.2f", plan.name, scale)
                return None

        profile = await self._elevation.fetch_elevation(snap.coordinates)
        stats = calculate_elevation_stats(profile, self._config.elevation_noise_threshold_m)

        if plan.confidence is not None:
            confidence = plan.confidence
        else:
            confidence = snap.confidence * plan.confidence_scale
        confidence = max(0.0, min(plan.confidence_cap, confidence))

        return RouteCandidate(
            name=plan.name,
            description=plan.description,
            distance_meters=round(snap.distance_meters, 1),
            elevation_gain_m=stats.gain,
            elevation_loss_m=stats.loss,
            coordinates=snap.coordinates,
            difficulty=classify_difficulty(snap.distance_meters / 1000, stats.gain),
            training_goal=ctx.request.training_goal,
            pattern_tag=plan.pattern_tag,
            confidence=round(confidence, 3),
            source=plan.source,
            provider_tag=snap.provider_tag,
            elevation_profile=profile,
            wind_factor=wind_factor(snap.coordinates, ctx.weather),
            traffic_exposure=snap.traffic_exposure,
            quietness=snap.quietness,
            key_directions=list(plan.key_directions),
            estimated_time_min=plan.estimated_time_min,
        )


async def fallback_candidate(
    request: RouteRequest,
    target_km: float,
    elevation: ElevationProvider,
    weather: WeatherConditions | None = None,
) -> RouteCandidate:
    """Deterministic last-resort loop: an octagon centred on the start.

    Skips road snapping and geometric rejection; tagged ``fallback`` so the
    caller can warn the rider.
    """
    radius = target_km / (2 * math.pi)
    ring = [destination_point(request.start, radius, i * 45.0) for i in range(8)]
    coordinates = [*ring, ring[0]]
    profile = await elevation.fetch_elevation(coordinates)
    stats = calculate_elevation_stats(profile)
    distance = polyline_length_km(coordinates)
    return RouteCandidate(
        name="Fallback Loop",
        description="Approximate loop around the start; not snapped to roads.",
        distance_meters=round(distance * 1000, 1),
        elevation_gain_m=stats.gain,
        elevation_loss_m=stats.loss,
        coordinates=coordinates,
        difficulty=classify_difficulty(distance, stats.gain),
        training_goal=request.training_goal,
        pattern_tag="fallback_loop",
        confidence=FALLBACK_CONFIDENCE,
        source="fallback",
        provider_tag="fallback",
        elevation_profile=profile,
        wind_factor=wind_factor(coordinates, weather),
    )
