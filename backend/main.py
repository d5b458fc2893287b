"""Cycling route engine backend service.

Exposes endpoints for training-route generation and for snapping a
hand-drawn waypoint list to roads.
"""

import logging

from fastapi import FastAPI, HTTPException

import route_generation
from elevation import ElevationProvider, calculate_elevation_stats
from models import (
    GenerationResult,
    RouteRequest,
    SnapRouteRequest,
    SnapRouteResponse,
)
from providers import default_services
from routing import RoutingProvider, SnapOptions, cycling_profile_for
from waypoints import waypoints_from_coordinates

logging.basicConfig(level=logging.INFO)

app = FastAPI(
    title="Cycling Route Engine",
    description="AI-assisted cycling training-route generation and scoring.",
    version="0.1.0",
)


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint used by the platform to verify the service is live."""
    return {"status": "ok"}


@app.post("/generate-routes", response_model=GenerationResult)
async def generate_routes(request: RouteRequest) -> GenerationResult:
    """Generates ranked cycling routes for a time budget and training goal.

    Runs the generation pipeline:
    1. Resolves weather and loads ride history.
    2. Derives a riding profile and a target distance.
    3. Synthesizes candidates from AI suggestions, personal templates,
       familiar segments and procedural patterns.
    4. Snaps each candidate to roads and fetches its elevation profile.
    5. Scores and ranks the candidates.

    Args:
        request: ``RouteRequest`` with start, time budget, training goal,
            route type and routing preferences.

    Returns:
        ``GenerationResult`` with up to four ranked routes. Never empty; a
        ``fallback`` route is returned when nothing else could be built.

    Raises:
        HTTPException 400: If the request is invalid.
        HTTPException 502: If route generation fails unexpectedly.
    """
    try:
        return await route_generation.generate(request)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:  # noqa: BLE001
        logging.exception("route_generation.generate failed")
        raise HTTPException(
            status_code=502,
            detail="Failed to generate routes. Please try again.",
        ) from exc


@app.post("/snap-route", response_model=SnapRouteResponse)
async def snap_route(request: SnapRouteRequest) -> SnapRouteResponse:
    """Snaps an ordered waypoint list to roads and profiles its elevation.

    Args:
        request: ``SnapRouteRequest`` with at least two ``(lon, lat)``
            waypoints, a training goal and routing preferences.

    Returns:
        ``SnapRouteResponse`` with the normalized waypoints (roles and labels
        reassigned), the snapped route and its elevation profile and stats.

    Raises:
        HTTPException 400: If the waypoints cannot be snapped.
        HTTPException 502: If snapping fails unexpectedly.
    """
    try:
        services = default_services()
        routing = RoutingProvider(
            services.routing, infrastructure_service=services.infrastructure
        )
        elevation = ElevationProvider(services.elevation)

        waypoints = waypoints_from_coordinates(list(request.waypoints))
        snapped = await routing.snap_route(
            [w.position for w in waypoints],
            cycling_profile_for(request.training_goal),
            SnapOptions.from_preferences(request.preferences),
        )
        profile = await elevation.fetch_elevation(snapped.coordinates)
        return SnapRouteResponse(
            waypoints=waypoints,
            route=snapped,
            elevation_profile=profile,
            elevation_stats=calculate_elevation_stats(profile),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:  # noqa: BLE001
        logging.exception("snap_route failed")
        raise HTTPException(
            status_code=502,
            detail="Failed to snap the route. Please try again.",
        ) from exc
