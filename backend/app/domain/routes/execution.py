"""
Route execution engine.

Drives a route through planned → assigned → active ⇄ paused → completed (or
cancelled) and its stops through strict in-order processing. Stop outcomes
are recorded on the route_stop_packages rows; package statuses are not
touched here (see backend.app.domain.dispatch for that coordination).
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import utcnow, minutes_between
from backend.app.core.config import settings
from backend.app.core.exceptions import (
    ConcurrentModificationError,
    ResourceNotFoundError,
    ValidationFailedError,
    PreconditionFailedError,
    InvalidStatusTransitionError,
    StopOutOfOrderError,
)
from backend.app.db.transaction import atomic
from backend.app.domain.branches.capacity_ledger import get_branch
from backend.app.domain.routes.derived import ordered_stops, on_time_performance
from backend.app.models.package import Package
from backend.app.models.route import Route
from backend.app.models.route_enums import RouteStatus, StopStatus, StopPackageOutcome
from backend.app.models.route_stop import RouteStop
from backend.app.models.route_stop_package import RouteStopPackage
from backend.app.schemas.route import RouteCreate
from backend.app.services.audit import log_event, AuditAction, Actor

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({RouteStatus.COMPLETED, RouteStatus.CANCELLED})
STARTABLE_STATUSES = frozenset({RouteStatus.PLANNED, RouteStatus.ASSIGNED})


async def load_route(db: AsyncSession, route_id: int) -> Route:
    """
    Load a route with fresh column values and its stops.

    Raises:
        ResourceNotFoundError: route does not exist
    """
    result = await db.execute(
        select(Route)
        .where(Route.id == route_id)
        .execution_options(populate_existing=True)
    )
    route = result.scalar_one_or_none()
    if route is None:
        raise ResourceNotFoundError("Route", route_id)
    return route


def _unique(values: Iterable[int]) -> List[int]:
    return list(dict.fromkeys(values))


async def _next_route_number(db: AsyncSession, now: datetime) -> str:
    """One past the highest suffix issued today, explicit numbers included."""
    prefix = f"R-{now:%Y%m%d}-"
    result = await db.execute(
        select(Route.route_number).where(Route.route_number.like(f"{prefix}%"))
    )
    suffixes = [
        int(number[len(prefix):])
        for number in result.scalars().all()
        if number[len(prefix):].isdigit()
    ]
    return f"{prefix}{max(suffixes, default=0) + 1:03d}"


class RouteExecutionEngine:
    """Route lifecycle and stop progression."""

    @staticmethod
    def _prime(stop: RouteStop, expected_arrival: datetime) -> None:
        stop.status = StopStatus.PENDING
        if stop.expected_arrival is None:
            stop.expected_arrival = expected_arrival

    @staticmethod
    def _advance(route: Route, stops: List[RouteStop], now: datetime) -> None:
        route.current_stop_index += 1
        if route.current_stop_index < len(stops):
            leg = timedelta(minutes=settings.stop_leg_estimate_minutes)
            RouteExecutionEngine._prime(stops[route.current_stop_index], now + leg)
        route.updated_at = now

    @staticmethod
    def locate_stop(route: Route, stop_index: int, action: str) -> RouteStop:
        """
        Return the stop at ``stop_index`` if it is the one to process next.

        Raises:
            InvalidStatusTransitionError: route not active
            ResourceNotFoundError: no stop at that index
            StopOutOfOrderError: index is not the current stop
        """
        if route.status != RouteStatus.ACTIVE:
            raise InvalidStatusTransitionError("route", route.status.value, action)
        if stop_index != route.current_stop_index:
            logger.warning(
                "Route %s: stop %s requested out of order (current %s)",
                route.route_number, stop_index, route.current_stop_index
            )
            raise StopOutOfOrderError(route.id, stop_index, route.current_stop_index)
        stops = ordered_stops(route)
        if stop_index >= len(stops):
            raise ResourceNotFoundError("Route stop", stop_index)
        return stops[stop_index]

    @staticmethod
    def _check_packages(stop: RouteStop, *groups: List[int]) -> None:
        on_stop = set(stop.package_ids)
        unknown = sorted({pid for group in groups for pid in group} - on_stop)
        if unknown:
            raise ValidationFailedError(
                "Packages are not listed on this stop",
                details={"stop_id": stop.id, "package_ids": unknown}
            )

    @staticmethod
    def _set_outcome(stop: RouteStop, package_ids: Iterable[int], outcome: StopPackageOutcome) -> None:
        targets = set(package_ids)
        for link in stop.package_links:
            if link.package_id in targets:
                link.outcome = outcome

    @staticmethod
    def apply_stop_completion(
        route: Route,
        stop_index: int,
        completed_packages: Iterable[int] = (),
        failed_packages: Iterable[int] = (),
        notes: Optional[str] = None
    ) -> RouteStop:
        """
        Mark the current stop completed and advance. No commit.

        Raises:
            ValidationFailedError: unknown package ids, or a package listed
                both completed and failed
        """
        stop = RouteExecutionEngine.locate_stop(route, stop_index, "complete stop")
        completed = _unique(completed_packages)
        failed = _unique(failed_packages)
        both = sorted(set(completed) & set(failed))
        if both:
            raise ValidationFailedError(
                "A package cannot be both completed and failed on the same stop",
                details={"package_ids": both}
            )
        RouteExecutionEngine._check_packages(stop, completed, failed)

        now = utcnow()
        RouteExecutionEngine._set_outcome(stop, completed, StopPackageOutcome.COMPLETED)
        RouteExecutionEngine._set_outcome(stop, failed, StopPackageOutcome.FAILED)
        stop.status = StopStatus.COMPLETED
        if stop.actual_arrival is None:
            stop.actual_arrival = now
        stop.actual_departure = now
        if notes:
            stop.notes = notes
        route.completed_stops += 1
        RouteExecutionEngine._advance(route, ordered_stops(route), now)
        return stop

    @staticmethod
    def apply_stop_failure(
        route: Route,
        stop_index: int,
        reason: str,
        skipped_packages: Iterable[int] = ()
    ) -> RouteStop:
        """Mark the current stop failed and advance. No commit."""
        stop = RouteExecutionEngine.locate_stop(route, stop_index, "fail stop")
        skipped = _unique(skipped_packages)
        RouteExecutionEngine._check_packages(stop, skipped)

        now = utcnow()
        RouteExecutionEngine._set_outcome(stop, skipped, StopPackageOutcome.SKIPPED)
        stop.status = StopStatus.FAILED
        stop.issues = [*(stop.issues or []), reason]
        stop.actual_departure = now
        route.failed_stops += 1
        RouteExecutionEngine._advance(route, ordered_stops(route), now)
        return stop

    @staticmethod
    async def get(db: AsyncSession, route_id: int) -> Route:
        return await load_route(db, route_id)

    @staticmethod
    async def create(db: AsyncSession, data: RouteCreate, actor: Optional[Actor] = None) -> Route:
        """
        Create a route and its stops in ``order`` sequence.

        Raises:
            ValidationFailedError: duplicate stop orders or route number
            ResourceNotFoundError: referenced branch or package missing
            ConcurrentModificationError: generated route number taken concurrently
        """
        orders = [stop.order for stop in data.stops]
        duplicates = sorted({order for order in orders if orders.count(order) > 1})
        if duplicates:
            raise ValidationFailedError(
                "Stop order values must be unique within a route",
                details={"duplicate_orders": duplicates}
            )

        async with atomic(db):
            for branch_id in (data.origin_branch_id, data.destination_branch_id):
                if branch_id is not None:
                    await get_branch(db, branch_id)

            package_ids = _unique(pid for stop in data.stops for pid in stop.package_ids)
            if package_ids:
                result = await db.execute(select(Package.id).where(Package.id.in_(package_ids)))
                missing = sorted(set(package_ids) - set(result.scalars().all()))
                if missing:
                    raise ResourceNotFoundError("Package", missing[0])

            now = utcnow()
            route_number = data.route_number
            if route_number:
                existing = await db.execute(select(Route.id).where(Route.route_number == route_number))
                if existing.scalar_one_or_none() is not None:
                    raise ValidationFailedError(
                        f"Route number '{route_number}' already exists",
                        details={"route_number": route_number}
                    )
            else:
                route_number = await _next_route_number(db, now)

            route = Route(
                route_number=route_number,
                company_id=data.company_id,
                name=data.name,
                type=data.type,
                origin_branch_id=data.origin_branch_id,
                destination_branch_id=data.destination_branch_id,
                assigned_vehicle_id=data.assigned_vehicle_id,
                assigned_transporter_id=data.assigned_transporter_id,
                assigned_deliverer_id=data.assigned_deliverer_id,
                distance=data.distance,
                estimated_time=data.estimated_time,
                fuel_estimate=data.fuel_estimate,
                cost_estimate=data.cost_estimate,
                status=RouteStatus.PLANNED,
                current_stop_index=0,
                completed_stops=0,
                failed_stops=0,
                skipped_stops=0,
                on_time_performance=0,
                scheduled_start=data.scheduled_start,
                scheduled_end=data.scheduled_end,
                stops=[
                    RouteStop(
                        order=stop.order,
                        action=stop.action,
                        latitude=stop.location.latitude,
                        longitude=stop.location.longitude,
                        address=stop.address,
                        branch_id=stop.branch_id,
                        client_id=stop.client_id,
                        expected_arrival=stop.expected_arrival,
                        expected_departure=stop.expected_departure,
                        stop_duration=stop.stop_duration,
                        status=StopStatus.PENDING,
                        notes=stop.notes,
                        contact_person=stop.contact_person,
                        contact_phone=stop.contact_phone,
                        issues=[],
                        package_links=[],
                    )
                    for stop in sorted(data.stops, key=lambda s: s.order)
                ],
            )
            db.add(route)
            try:
                await db.flush()
            except IntegrityError as exc:
                # Another writer inserted the same number after it was chosen
                if "route_number" not in str(exc.orig):
                    raise
                logger.warning("Route number %s taken concurrently", route_number)
                raise ConcurrentModificationError(
                    f"Route number '{route_number}' was taken by another request, please retry"
                ) from exc

            # Association rows need the route id
            for stop, stop_data in zip(ordered_stops(route), sorted(data.stops, key=lambda s: s.order)):
                for package_id in _unique(stop_data.package_ids):
                    stop.package_links.append(
                        RouteStopPackage(route_id=route.id, package_id=package_id)
                    )
            await db.flush()

            await log_event(
                db=db,
                action=AuditAction.ROUTE_CREATED,
                actor=actor,
                entity_type="route",
                entity_id=route.id,
                metadata={"route_number": route_number, "stops": len(data.stops)}
            )

        logger.info("Route %s created with %s stops", route.route_number, len(route.stops))
        return route

    @staticmethod
    async def assign(
        db: AsyncSession,
        route_id: int,
        vehicle_id: Optional[int] = None,
        deliverer_id: Optional[int] = None,
        transporter_id: Optional[int] = None,
        actor: Optional[Actor] = None
    ) -> Route:
        """
        Assign a vehicle, deliverer or transporter to a planned route.

        Raises:
            ValidationFailedError: nothing to assign
            InvalidStatusTransitionError: route not planned or assigned
        """
        if vehicle_id is None and deliverer_id is None and transporter_id is None:
            raise ValidationFailedError("At least one of vehicle, deliverer or transporter is required")

        async with atomic(db):
            route = await load_route(db, route_id)
            if route.status not in STARTABLE_STATUSES:
                raise InvalidStatusTransitionError("route", route.status.value, "assign")

            if vehicle_id is not None:
                route.assigned_vehicle_id = vehicle_id
            if deliverer_id is not None:
                route.assigned_deliverer_id = deliverer_id
            if transporter_id is not None:
                route.assigned_transporter_id = transporter_id
            route.status = RouteStatus.ASSIGNED
            route.updated_at = utcnow()
            await db.flush()

            await log_event(
                db=db,
                action=AuditAction.ROUTE_ASSIGNED,
                actor=actor,
                entity_type="route",
                entity_id=route.id,
                metadata={
                    "vehicle_id": vehicle_id,
                    "deliverer_id": deliverer_id,
                    "transporter_id": transporter_id,
                }
            )

        return route

    @staticmethod
    async def start(db: AsyncSession, route_id: int, actor: Optional[Actor] = None) -> Route:
        """
        Start a planned or assigned route at its first stop.

        Raises:
            InvalidStatusTransitionError: route not planned or assigned
        """
        async with atomic(db):
            route = await load_route(db, route_id)
            if route.status not in STARTABLE_STATUSES:
                raise InvalidStatusTransitionError("route", route.status.value, "start")

            now = utcnow()
            route.status = RouteStatus.ACTIVE
            route.actual_start = now
            route.current_stop_index = 0
            route.updated_at = now
            stops = ordered_stops(route)
            if stops:
                RouteExecutionEngine._prime(stops[0], now)
            await db.flush()

            await log_event(
                db=db,
                action=AuditAction.ROUTE_STARTED,
                actor=actor,
                entity_type="route",
                entity_id=route.id,
            )

        logger.info("Route %s started", route.route_number)
        return route

    @staticmethod
    async def arrive_at_stop(
        db: AsyncSession,
        route_id: int,
        stop_index: int,
        actor: Optional[Actor] = None
    ) -> Route:
        """
        Record arrival at the current stop.

        Raises:
            StopOutOfOrderError: not the current stop
            InvalidStatusTransitionError: route not active or stop not pending
        """
        async with atomic(db):
            route = await load_route(db, route_id)
            stop = RouteExecutionEngine.locate_stop(route, stop_index, "arrive at stop")
            if stop.status != StopStatus.PENDING:
                raise InvalidStatusTransitionError("route stop", stop.status.value, "arrive")

            now = utcnow()
            stop.status = StopStatus.ARRIVED
            stop.actual_arrival = now
            route.updated_at = now
            await db.flush()

            await log_event(
                db=db,
                action=AuditAction.STOP_ARRIVED,
                actor=actor,
                entity_type="route",
                entity_id=route.id,
                metadata={"stop_index": stop_index, "stop_id": stop.id}
            )

        return route

    @staticmethod
    async def complete_stop(
        db: AsyncSession,
        route_id: int,
        stop_index: int,
        completed_packages: Iterable[int] = (),
        failed_packages: Iterable[int] = (),
        notes: Optional[str] = None,
        actor: Optional[Actor] = None
    ) -> Route:
        """
        Complete the current stop. Package statuses are not changed.

        Raises:
            StopOutOfOrderError: not the current stop
            InvalidStatusTransitionError: route not active
            ValidationFailedError: package ids not on the stop
        """
        async with atomic(db):
            route = await load_route(db, route_id)
            stop = RouteExecutionEngine.apply_stop_completion(
                route, stop_index, completed_packages, failed_packages, notes
            )
            await db.flush()

            await log_event(
                db=db,
                action=AuditAction.STOP_COMPLETED,
                actor=actor,
                entity_type="route",
                entity_id=route.id,
                metadata={
                    "stop_index": stop_index,
                    "completed_packages": stop.completed_packages,
                    "failed_packages": stop.failed_packages,
                }
            )

        logger.info("Route %s: stop %s completed", route.route_number, stop_index)
        return route

    @staticmethod
    async def fail_stop(
        db: AsyncSession,
        route_id: int,
        stop_index: int,
        reason: str,
        skipped_packages: Iterable[int] = (),
        actor: Optional[Actor] = None
    ) -> Route:
        """Fail the current stop and move on to the next."""
        async with atomic(db):
            route = await load_route(db, route_id)
            stop = RouteExecutionEngine.apply_stop_failure(route, stop_index, reason, skipped_packages)
            await db.flush()

            await log_event(
                db=db,
                action=AuditAction.STOP_FAILED,
                actor=actor,
                entity_type="route",
                entity_id=route.id,
                metadata={"stop_index": stop_index, "reason": reason, "skipped_packages": stop.skipped_packages}
            )

        logger.info("Route %s: stop %s failed: %s", route.route_number, stop_index, reason)
        return route

    @staticmethod
    async def skip_stop(
        db: AsyncSession,
        route_id: int,
        stop_index: int,
        reason: str,
        actor: Optional[Actor] = None
    ) -> Route:
        """Skip the current stop and move on to the next."""
        async with atomic(db):
            route = await load_route(db, route_id)
            stop = RouteExecutionEngine.locate_stop(route, stop_index, "skip stop")

            now = utcnow()
            stop.status = StopStatus.SKIPPED
            stop.actual_departure = now
            stop.issues = [*(stop.issues or []), reason]
            route.skipped_stops += 1
            RouteExecutionEngine._advance(route, ordered_stops(route), now)
            await db.flush()

            await log_event(
                db=db,
                action=AuditAction.STOP_SKIPPED,
                actor=actor,
                entity_type="route",
                entity_id=route.id,
                metadata={"stop_index": stop_index, "reason": reason}
            )

        logger.info("Route %s: stop %s skipped: %s", route.route_number, stop_index, reason)
        return route

    @staticmethod
    async def pause(db: AsyncSession, route_id: int, actor: Optional[Actor] = None) -> Route:
        async with atomic(db):
            route = await load_route(db, route_id)
            if route.status != RouteStatus.ACTIVE:
                raise InvalidStatusTransitionError("route", route.status.value, "pause")

            now = utcnow()
            route.status = RouteStatus.PAUSED
            route.paused_at = now
            route.updated_at = now
            await db.flush()
            await log_event(db=db, action=AuditAction.ROUTE_PAUSED, actor=actor, entity_type="route", entity_id=route.id)

        return route

    @staticmethod
    async def resume(db: AsyncSession, route_id: int, actor: Optional[Actor] = None) -> Route:
        async with atomic(db):
            route = await load_route(db, route_id)
            if route.status != RouteStatus.PAUSED:
                raise InvalidStatusTransitionError("route", route.status.value, "resume")

            now = utcnow()
            route.status = RouteStatus.ACTIVE
            route.resumed_at = now
            route.updated_at = now
            await db.flush()
            await log_event(db=db, action=AuditAction.ROUTE_RESUMED, actor=actor, entity_type="route", entity_id=route.id)

        return route

    @staticmethod
    async def complete(
        db: AsyncSession,
        route_id: int,
        notes: Optional[str] = None,
        actor: Optional[Actor] = None
    ) -> Route:
        """
        Complete an active route once every stop is resolved.

        Raises:
            InvalidStatusTransitionError: route not active
            PreconditionFailedError: stops remain unprocessed
        """
        async with atomic(db):
            route = await load_route(db, route_id)
            if route.status != RouteStatus.ACTIVE:
                raise InvalidStatusTransitionError("route", route.status.value, "complete")
            stops = ordered_stops(route)
            if route.current_stop_index < len(stops):
                raise PreconditionFailedError(
                    f"Route has {len(stops) - route.current_stop_index} unprocessed stops",
                    error_code="ERR_ROUTE_INCOMPLETE",
                    details={"route_id": route.id, "current_stop_index": route.current_stop_index}
                )

            now = utcnow()
            route.status = RouteStatus.COMPLETED
            route.actual_end = now
            route.actual_time = round(minutes_between(route.actual_start or now, now), 2)
            route.on_time_performance = on_time_performance(stops)
            route.completion_notes = notes
            route.updated_at = now
            await db.flush()

            await log_event(
                db=db,
                action=AuditAction.ROUTE_COMPLETED,
                actor=actor,
                entity_type="route",
                entity_id=route.id,
                metadata={
                    "actual_time": route.actual_time,
                    "on_time_performance": route.on_time_performance,
                }
            )

        logger.info(
            "Route %s completed in %.1f min, on-time %.0f%%",
            route.route_number, route.actual_time, route.on_time_performance
        )
        return route

    @staticmethod
    async def cancel(
        db: AsyncSession,
        route_id: int,
        reason: str,
        actor: Optional[Actor] = None
    ) -> Route:
        async with atomic(db):
            route = await load_route(db, route_id)
            if route.status in TERMINAL_STATUSES:
                raise InvalidStatusTransitionError("route", route.status.value, "cancel")

            now = utcnow()
            route.status = RouteStatus.CANCELLED
            route.cancellation_reason = reason
            if route.actual_start is not None:
                route.actual_end = now
            route.updated_at = now
            await db.flush()

            await log_event(
                db=db,
                action=AuditAction.ROUTE_CANCELLED,
                actor=actor,
                entity_type="route",
                entity_id=route.id,
                metadata={"reason": reason}
            )

        logger.info("Route %s cancelled: %s", route.route_number, reason)
        return route

    @staticmethod
    async def reorder_stops(
        db: AsyncSession,
        route_id: int,
        stop_ids: List[int],
        actor: Optional[Actor] = None
    ) -> Route:
        """
        Reorder the stops of a route.

        ``stop_ids`` must list every stop exactly once. Stops already
        processed (and the current stop once arrived at) keep their position.

        Raises:
            ValidationFailedError: not a permutation of the route's stops
            InvalidStatusTransitionError: route completed or cancelled
            PreconditionFailedError: a processed stop would move
        """
        async with atomic(db):
            route = await load_route(db, route_id)
            if route.status in TERMINAL_STATUSES:
                raise InvalidStatusTransitionError("route", route.status.value, "reorder stops")

            stops = ordered_stops(route)
            current_ids = [stop.id for stop in stops]
            if len(stop_ids) != len(current_ids) or sorted(stop_ids) != sorted(current_ids):
                raise ValidationFailedError(
                    "New order must list every stop of the route exactly once",
                    details={"stop_ids": stop_ids, "route_stop_ids": current_ids}
                )

            fixed = 0
            if route.status in (RouteStatus.ACTIVE, RouteStatus.PAUSED):
                fixed = route.current_stop_index
                if fixed < len(stops) and stops[fixed].status != StopStatus.PENDING:
                    fixed += 1
            if stop_ids[:fixed] != current_ids[:fixed]:
                raise PreconditionFailedError(
                    "Stops already processed cannot be reordered",
                    error_code="ERR_STOP_ORDER",
                    details={"route_id": route.id, "locked_stop_ids": current_ids[:fixed]}
                )

            # Two passes keep (route_id, stop_order) unique at every flush
            for position, stop in enumerate(stops, start=1):
                stop.order = -position
            await db.flush()
            by_id = {stop.id: stop for stop in stops}
            for position, stop_id in enumerate(stop_ids, start=1):
                by_id[stop_id].order = position

            now = utcnow()
            if route.status in (RouteStatus.ACTIVE, RouteStatus.PAUSED) and route.current_stop_index < len(stops):
                current = by_id[stop_ids[route.current_stop_index]]
                if current.status == StopStatus.PENDING:
                    RouteExecutionEngine._prime(current, now)
            route.updated_at = now
            await db.flush()

            await log_event(
                db=db,
                action=AuditAction.ROUTE_STOPS_REORDERED,
                actor=actor,
                entity_type="route",
                entity_id=route.id,
                metadata={"stop_ids": stop_ids}
            )

        return route
