"""Waypoint list editing.

Every edit returns a new list with roles recomputed: the first waypoint is
always ``start``, the last is ``end`` once there are two or more, and
everything in between is a plain ``waypoint``.
"""

import uuid

from geometry import nearest_point_on_polyline
from models import Coordinate, Waypoint, WaypointRole

# A clicked point further than this from every leg is appended as the new
# end rather than inserted mid-route.
INSERT_THRESHOLD_KM: float = 0.5


def _new_id() -> str:
    return f"wp-{uuid.uuid4().hex[:8]}"


def _role_for(index: int, length: int) -> WaypointRole:
    if index == 0:
        return WaypointRole.START
    if index == length - 1:
        return WaypointRole.END
    return WaypointRole.WAYPOINT


def _default_label(role: WaypointRole, index: int) -> str:
    if role is WaypointRole.START:
        return "Start"
    if role is WaypointRole.END:
        return "End"
    return f"Waypoint {index}"


def assign_roles(waypoints: list[Waypoint]) -> list[Waypoint]:
    """Returns a copy of ``waypoints`` with start/end/waypoint roles reassigned.

    Labels that were generated from a previous role are regenerated too, so
    a waypoint promoted to ``end`` stops being called "Waypoint 2".
    """
    n = len(waypoints)
    result = []
    for i, wp in enumerate(waypoints):
        role = _role_for(i, n)
        label = wp.label
        if not label or label in ("Start", "End") or label.startswith("Waypoint "):
            label = _default_label(role, i)
        result.append(wp.model_copy(update={"role": role, "label": label}))
    return result


def waypoints_from_coordinates(coordinates: list[Coordinate]) -> list[Waypoint]:
    return assign_roles(
        [Waypoint(id=_new_id(), position=tuple(c)) for c in coordinates]
    )


def add_waypoint(
    waypoints: list[Waypoint], position: Coordinate, label: str = ""
) -> list[Waypoint]:
    """Appends a waypoint, which becomes the new end."""
    return assign_roles(
        [*waypoints, Waypoint(id=_new_id(), position=position, label=label)]
    )


def insert_waypoint(
    waypoints: list[Waypoint], index: int, position: Coordinate, label: str = ""
) -> list[Waypoint]:
    """Inserts a waypoint at ``index`` (clamped to the list bounds)."""
    index = max(0, min(index, len(waypoints)))
    new = Waypoint(id=_new_id(), position=position, label=label)
    return assign_roles([*waypoints[:index], new, *waypoints[index:]])


def insert_waypoint_on_route(
    waypoints: list[Waypoint],
    position: Coordinate,
    threshold_km: float = INSERT_THRESHOLD_KM,
) -> list[Waypoint]:
    """Inserts ``position`` into the leg it lies closest to.

    Points further than ``threshold_km`` from every leg are appended instead.
    """
    if len(waypoints) < 2:
        return add_waypoint(waypoints, position)

    best_index = None
    best_distance = float("inf")
    for i in range(len(waypoints) - 1):
        leg = [waypoints[i].position, waypoints[i + 1].position]
        nearest = nearest_point_on_polyline(leg, position)
        if nearest.distance_km < best_distance:
            best_distance = nearest.distance_km
            best_index = i + 1

    if best_index is None or best_distance > threshold_km:
        return add_waypoint(waypoints, position)
    return insert_waypoint(waypoints, best_index, position)


def remove_waypoint(waypoints: list[Waypoint], waypoint_id: str) -> list[Waypoint]:
    """Removes the waypoint with ``waypoint_id``.

    Raises:
        ValueError: If no waypoint has that id.
    """
    remaining = [wp for wp in waypoints if wp.id != waypoint_id]
    if len(remaining) == len(waypoints):
        raise ValueError(f"Unknown waypoint id: {waypoint_id!r}")
    return assign_roles(remaining)


def reverse_waypoints(waypoints: list[Waypoint]) -> list[Waypoint]:
    return assign_roles(list(reversed(waypoints)))
