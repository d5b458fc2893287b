"""Prompt construction and response parsing for AI route suggestions.

The reasoning service answers in free text that *should* contain a JSON
object of the form ``{"routes": [...]}``. ``parse_suggestions`` never raises:
anything it cannot understand becomes an empty suggestion list with an
``error`` explaining why.
"""

import json
import logging

from pydantic import BaseModel, Field, ValidationError

from models import (
    CoachingAdvice,
    Difficulty,
    RidingProfile,
    RouteRequest,
    RouteSuggestion,
    WeatherConditions,
)

logger = logging.getLogger(__name__)

# Average speeds (km/h) used to sanity-check a suggestion's riding time.
_DIFFICULTY_SPEEDS_KMH: dict[Difficulty, float] = {
    Difficulty.EASY: 22.0,
    Difficulty.MODERATE: 20.0,
    Difficulty.HARD: 15.0,
}

_DIFFICULTY_ALIASES = {
    "easy": "easy",
    "moderate": "moderate",
    "medium": "moderate",
    "hard": "hard",
    "challenging": "hard",
    "difficult": "hard",
}

_GOAL_DESCRIPTIONS = {
    "endurance": (
        "- Focus: Aerobic base building, steady effort\n"
        "- Intensity: Moderate, sustainable pace\n"
        "- Route needs: Consistent terrain, minimal stops"
    ),
    "intervals": (
        "- Focus: High-intensity efforts with recovery periods\n"
        "- Intensity: Alternating hard efforts and easy recovery\n"
        "- Route needs: Safe sections for hard efforts, good visibility"
    ),
    "recovery": (
        "- Focus: Active recovery, easy spinning\n"
        "- Intensity: Very easy, conversational pace\n"
        "- Route needs: Flat terrain, scenic/enjoyable, minimal traffic"
    ),
    "hills": (
        "- Focus: Climbing strength and power development\n"
        "- Intensity: Sustained efforts on climbs\n"
        "- Route needs: Significant elevation gain, varied gradients"
    ),
}

SUGGESTION_SYSTEM_PROMPT = (
    "You are a cycling route planning API. You respond with ONLY valid JSON "
    "- no markdown, no explanation, no commentary. Your entire response must "
    'be a single JSON object with a "routes" array.'
)

_SUGGESTION_PROMPT = """\
You are an expert cycling coach and route planner. Generate 3-4 cycling \
route suggestions for the following ride.

LOCATION & DISTANCE:
- Start coordinates: {lat:.5f}, {lng:.5f}
- Target distance: {target_km:.1f} km
- Time available: {time_min} minutes
- Route type: {route_type}

TRAINING GOAL: {goal}
{goal_description}

WEATHER CONDITIONS:
{weather_block}
{profile_block}{coaching_block}
Return the suggestions in this JSON format:
{{
  "routes": [
    {{
      "name": "descriptive route name",
      "description": "why this route fits the training goal",
      "estimatedDistance": distance_in_km,
      "estimatedElevation": elevation_gain_in_meters,
      "difficulty": "easy|moderate|hard",
      "keyDirections": ["turn-by-turn directions"],
      "trainingFocus": "what makes this route good for the goal",
      "weatherConsiderations": "how the route works with current weather",
      "estimatedTime": time_in_minutes
    }}
  ]
}}

IMPORTANT:
- Focus on realistic, rideable routes on real roads
- Consider safety (bike lanes, traffic levels)
- Match difficulty to the training goal
- Account for the weather when choosing a direction
- Keep every route within 20% of the target distance
"""

COACHING_SYSTEM_PROMPT = (
    "You are a cycling coach API. You respond with ONLY a single valid JSON "
    "object - no markdown, no explanation."
)

_COACHING_PROMPT = """\
You are a cycling coach analyzing a rider's patterns. Based on this riding \
history, provide personalized recommendations.
{profile_block}
CURRENT REQUEST:
- Training goal: {goal}
- Time available: {time_min} minutes
- Target distance: {target_km:.1f} km

Analyze their patterns and respond in this JSON format:
{{
  "personalizedAdvice": "coaching advice based on their history",
  "recommendedIntensity": "suggested intensity level",
  "routePreferences": "what type of routes they seem to prefer",
  "progressionSuggestions": "how to progress their training"
}}
"""


class SuggestionParseResult(BaseModel):
    """Outcome of parsing a reasoning-service reply."""

    suggestions: list[RouteSuggestion] = Field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def realistic_time_min(distance_km: float, difficulty: Difficulty) -> int:
    return round(distance_km / _DIFFICULTY_SPEEDS_KMH[difficulty] * 60)


def _weather_block(weather: WeatherConditions | None) -> str:
    if weather is None:
        return "- Weather data not available"
    lines = [
        f"- Temperature: {weather.temperature_c:.0f}°C",
        f"- Wind: {weather.wind_speed_kmh:.0f} km/h from {weather.wind_direction_deg:.0f}°",
    ]
    if weather.description:
        lines.append(f"- Conditions: {weather.description}")
    if weather.humidity is not None:
        lines.append(f"- Humidity: {weather.humidity:.0f}%")
    return "\n".join(lines)


def _profile_block(profile: RidingProfile) -> str:
    if not profile.has_history:
        return ""
    stats = profile.distance_stats
    lines = [
        "",
        "RIDER PREFERENCES (based on past rides):",
        f"- Typical ride distance: {stats.mean:.1f} km "
        f"(range {stats.min:.1f}-{stats.max:.1f} km)",
        f"- Preferred elevation gain: {profile.elevation_tolerance.preferred:.0f} m "
        f"(tolerance up to {profile.elevation_tolerance.tolerance:.0f} m)",
    ]
    if profile.frequent_areas:
        lines.append(f"- Frequently visited areas: {len(profile.frequent_areas)} known locations")
    if profile.preferred_directions:
        directions = ", ".join(
            f"{d.direction} ({d.preference:.0%} of rides)"
            for d in profile.preferred_directions[:2]
        )
        lines.append(f"- Preferred directions: {directions}")
    if profile.route_templates:
        lines.append(f"- Past route patterns: {len(profile.route_templates)} templates")
    dist = stats.distribution
    lines.append(
        f"- Distance mix: {dist.get('short', 0):.0%} short, "
        f"{dist.get('medium', 0):.0%} medium, {dist.get('long', 0):.0%} long"
    )
    return "\n".join(lines) + "\n"


def _coaching_block(coaching: CoachingAdvice | None) -> str:
    if coaching is None or coaching.is_empty:
        return ""
    lines = ["", "COACH'S NOTES:"]
    for label, text in (
        ("Advice", coaching.personalized_advice),
        ("Intensity", coaching.recommended_intensity),
        ("Route preferences", coaching.route_preferences),
        ("Progression", coaching.progression_suggestions),
    ):
        if text:
            lines.append(f"- {label}: {text}")
    return "\n".join(lines) + "\n"


def build_coaching_prompt(
    request: RouteRequest, target_distance_km: float, profile: RidingProfile
) -> str:
    """Asks the reasoning service to read the rider's history before planning."""
    return _COACHING_PROMPT.format(
        profile_block=_profile_block(profile),
        goal=request.training_goal.value,
        time_min=request.time_available_min,
        target_km=target_distance_km,
    )


def parse_coaching(text: str) -> CoachingAdvice | None:
    """Coaching advice from a reasoning-service reply, or None if unusable."""
    if not text or not text.strip():
        return None
    decoder = json.JSONDecoder()
    index = text.find("{")
    while index != -1:
        try:
            value, _ = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            index = text.find("{", index + 1)
            continue
        if isinstance(value, dict):
            try:
                advice = CoachingAdvice.model_validate(value)
            except ValidationError as exc:
                logger.debug("Ignoring invalid coaching reply: %s", exc)
                return None
            return None if advice.is_empty else advice
        index = text.find("{", index + 1)
    return None


def build_suggestion_prompt(
    request: RouteRequest,
    target_distance_km: float,
    weather: WeatherConditions | None,
    profile: RidingProfile,
    coaching: CoachingAdvice | None = None,
) -> str:
    """Structured natural-language description of the ride for the reasoning service."""
    lng, lat = request.start
    goal = request.training_goal.value
    return _SUGGESTION_PROMPT.format(
        lat=lat,
        lng=lng,
        target_km=target_distance_km,
        time_min=request.time_available_min,
        route_type=request.route_type.value,
        goal=goal,
        goal_description=_GOAL_DESCRIPTIONS.get(goal, "General fitness and enjoyment"),
        weather_block=_weather_block(weather),
        profile_block=_profile_block(profile),
        coaching_block=_coaching_block(coaching),
    )


def _find_routes_payload(text: str) -> list | None:
    """Scans ``text`` for the first JSON value that carries route items."""
    decoder = json.JSONDecoder()
    index = 0
    while True:
        starts = [i for i in (text.find("{", index), text.find("[", index)) if i != -1]
        if not starts:
            return None
        index = min(starts)
        try:
            value, end = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            index += 1
            continue
        if isinstance(value, dict):
            if isinstance(value.get("routes"), list):
                return value["routes"]
            if "name" in value or "estimatedDistance" in value:
                return [value]
        elif isinstance(value, list) and any(isinstance(v, dict) for v in value):
            return value
        index = end


def _normalise_item(item: dict, position: int) -> dict:
    item = dict(item)
    if not item.get("name"):
        item["name"] = f"AI Route {position + 1}"
    difficulty = str(item.get("difficulty") or "moderate").strip().lower()
    item["difficulty"] = _DIFFICULTY_ALIASES.get(difficulty, "moderate")
    if item.get("estimatedDistance") in (None, "", 0):
        item.pop("estimatedDistance", None)
    if item.get("estimatedElevation") in (None, ""):
        item.pop("estimatedElevation", None)
    # Recomputed from distance and difficulty after validation.
    if not isinstance(item.get("estimatedTime"), (int, float)):
        item.pop("estimatedTime", None)
    if not isinstance(item.get("keyDirections", []), list):
        item["keyDirections"] = [str(item["keyDirections"])]
    return item


def parse_suggestions(text: str) -> SuggestionParseResult:
    """Parses a reasoning-service reply into validated suggestions.

    Items that fail validation are skipped; a reply with no usable items
    yields an empty list and an error message.
    """
    if not text or not text.strip():
        return SuggestionParseResult(error="empty response")

    items = _find_routes_payload(text)
    if items is None:
        return SuggestionParseResult(error="no JSON route list found in response")

    suggestions: list[RouteSuggestion] = []
    for position, item in enumerate(items):
        if not isinstance(item, dict):
            continue
        try:
            suggestion = RouteSuggestion.model_validate(_normalise_item(item, position))
        except ValidationError as exc:
            logger.debug("Skipping invalid suggestion %d: %s", position, exc)
            continue
        # Replace the model's own time guess with one consistent with the
        # distance and difficulty we will actually route.
        suggestion = suggestion.model_copy(
            update={
                "estimated_time_min": realistic_time_min(
                    suggestion.estimated_distance_km, suggestion.difficulty
                )
            }
        )
        suggestions.append(suggestion)

    if not suggestions:
        return SuggestionParseResult(error="response contained no valid routes")
    return SuggestionParseResult(suggestions=suggestions)
