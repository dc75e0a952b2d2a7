"""
Read-time views over a route's persisted fields.

Queries past the last stop return None or an empty list, never an error.
"""

from datetime import datetime
from typing import List, Optional

from backend.app.core.clock import utcnow, as_utc, minutes_between
from backend.app.core.config import settings
from backend.app.models.route import Route
from backend.app.models.route_enums import RouteStatus
from backend.app.models.route_stop import RouteStop

RUNNING_STATUSES = frozenset({RouteStatus.ACTIVE, RouteStatus.PAUSED})


def ordered_stops(route: Route) -> List[RouteStop]:
    """Stops in traversal order."""
    return sorted(route.stops, key=lambda stop: stop.order)


def current_stop(route: Route) -> Optional[RouteStop]:
    stops = ordered_stops(route)
    if route.current_stop_index < len(stops):
        return stops[route.current_stop_index]
    return None


def next_stop(route: Route) -> Optional[RouteStop]:
    stops = ordered_stops(route)
    index = route.current_stop_index + 1
    if index < len(stops):
        return stops[index]
    return None


def remaining_stops(route: Route) -> List[RouteStop]:
    return ordered_stops(route)[route.current_stop_index:]


def is_active(route: Route) -> bool:
    return route.status == RouteStatus.ACTIVE


def is_completed(route: Route) -> bool:
    return route.status == RouteStatus.COMPLETED


def progress_percentage(route: Route) -> float:
    total = len(route.stops)
    if total == 0:
        return 0.0
    processed = route.completed_stops + route.failed_stops + route.skipped_stops
    return round(processed / total * 100, 2)


def is_delayed(route: Route, now: Optional[datetime] = None) -> bool:
    """Running past the scheduled end, or finished after it."""
    now = now or utcnow()
    if route.status in RUNNING_STATUSES:
        return now > as_utc(route.scheduled_end)
    if route.status == RouteStatus.COMPLETED and route.actual_end is not None:
        return as_utc(route.actual_end) > as_utc(route.scheduled_end)
    return False


def estimated_time_remaining(route: Route, now: Optional[datetime] = None) -> Optional[float]:
    """Minutes left against the planned duration."""
    if route.status in (RouteStatus.COMPLETED, RouteStatus.CANCELLED):
        return None
    if route.actual_start is None:
        return float(route.estimated_time)
    elapsed = minutes_between(route.actual_start, now or utcnow())
    return max(0.0, round(route.estimated_time - elapsed, 2))


def total_packages(route: Route) -> int:
    return sum(len(stop.package_ids) for stop in route.stops)


def completed_packages(route: Route) -> int:
    return sum(len(stop.completed_packages) for stop in route.stops)


def on_time_performance(stops: List[RouteStop]) -> float:
    """
    Percentage of stops reached within the on-time threshold.

    A stop without both an expected and an actual arrival counts as late.
    """
    if not stops:
        return 0.0
    threshold = settings.on_time_threshold_minutes
    on_time = sum(
        1 for stop in stops
        if stop.expected_arrival is not None
        and stop.actual_arrival is not None
        and minutes_between(stop.expected_arrival, stop.actual_arrival) <= threshold
    )
    return round(on_time / len(stops) * 100, 2)


def derived_views(route: Route, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    return {
        "is_active": is_active(route),
        "is_completed": is_completed(route),
        "is_delayed": is_delayed(route, now),
        "progress_percentage": progress_percentage(route),
        "estimated_time_remaining": estimated_time_remaining(route, now),
        "current_stop": current_stop(route),
        "next_stop": next_stop(route),
        "remaining_stops": remaining_stops(route),
        "total_packages": total_packages(route),
        "completed_packages": completed_packages(route),
    }
