"""
Stop outcome dispatch.

Completes or fails a route stop and, in the same transaction, moves every
affected package through the package state machine according to the stop
action:

    delivery  completed → delivered, failed → failed_delivery
    pickup    completed → at_origin_branch
    transfer  completed → at_destination_branch (current branch = stop branch)
    service   no package change

Packages that can no longer move (delivered, cancelled, returned, lost) are
left untouched and reported back.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import InvalidStatusTransitionError
from backend.app.db.transaction import atomic
from backend.app.domain.packages.state_machine import PackageStateMachine, load_package, AUTO_RETURN_REASON
from backend.app.domain.routes.execution import RouteExecutionEngine, load_route
from backend.app.models.package_enums import PackageStatus
from backend.app.models.route import Route
from backend.app.models.route_enums import StopAction
from backend.app.models.route_stop import RouteStop
from backend.app.services.audit import log_event, AuditAction, Actor, SYSTEM_ACTOR

logger = logging.getLogger(__name__)

COMPLETED_STATUS = {
    StopAction.DELIVERY: PackageStatus.DELIVERED,
    StopAction.PICKUP: PackageStatus.AT_ORIGIN_BRANCH,
    StopAction.TRANSFER: PackageStatus.AT_DESTINATION_BRANCH,
}

FAILED_STATUS = {
    StopAction.DELIVERY: PackageStatus.FAILED_DELIVERY,
}


@dataclass
class SkippedPackage:
    package_id: int
    status: PackageStatus
    reason: str


@dataclass
class StopDispatchResult:
    route: Route
    updated_packages: List[int] = field(default_factory=list)
    skipped_packages: List[SkippedPackage] = field(default_factory=list)


async def _move_packages(
    db: AsyncSession,
    route: Route,
    stop: RouteStop,
    package_ids: Iterable[int],
    new_status: Optional[PackageStatus],
    actor: Optional[Actor],
    result: StopDispatchResult
) -> None:
    if new_status is None:
        return

    branch_id = stop.branch_id if stop.action == StopAction.TRANSFER else None
    for package_id in package_ids:
        package = await load_package(db, package_id)
        try:
            PackageStateMachine.ensure_can_transition(package, new_status)
        except InvalidStatusTransitionError as exc:
            logger.warning(
                "Route %s stop %s: package %s left as %s",
                route.route_number, stop.order, package.tracking_number, package.status.value
            )
            result.skipped_packages.append(
                SkippedPackage(package_id=package.id, status=package.status, reason=exc.message)
            )
            continue

        previous = package.status
        escalated = PackageStateMachine.apply_transition(
            package,
            new_status,
            actor,
            notes=f"Route {route.route_number}, stop {stop.order} ({stop.action.value})",
            branch_id=branch_id,
            location=stop.address,
        )
        result.updated_packages.append(package.id)

        await log_event(
            db=db,
            action=AuditAction.PACKAGE_STATUS_CHANGED,
            actor=actor,
            entity_type="package",
            entity_id=package.id,
            metadata={
                "from": previous.value,
                "to": new_status.value,
                "route_id": route.id,
                "stop_id": stop.id,
            }
        )
        if escalated:
            await log_event(
                db=db,
                action=AuditAction.PACKAGE_AUTO_RETURNED,
                actor=SYSTEM_ACTOR,
                entity_type="package",
                entity_id=package.id,
                metadata={"attempt_count": package.attempt_count, "reason": AUTO_RETURN_REASON}
            )


async def dispatch_stop_completion(
    db: AsyncSession,
    route_id: int,
    stop_index: int,
    completed_packages: Iterable[int] = (),
    failed_packages: Iterable[int] = (),
    notes: Optional[str] = None,
    actor: Optional[Actor] = None
) -> StopDispatchResult:
    """
    Complete a stop and apply the resulting package transitions.

    Raises the same errors as RouteExecutionEngine.complete_stop; any failure
    leaves the route and every package unchanged.
    """
    async with atomic(db):
        route = await load_route(db, route_id)
        stop = RouteExecutionEngine.apply_stop_completion(
            route, stop_index, completed_packages, failed_packages, notes
        )
        await db.flush()

        result = StopDispatchResult(route=route)
        await _move_packages(
            db, route, stop, stop.completed_packages,
            COMPLETED_STATUS.get(stop.action), actor, result
        )
        await _move_packages(
            db, route, stop, stop.failed_packages,
            FAILED_STATUS.get(stop.action), actor, result
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
                "updated_packages": result.updated_packages,
                "skipped_packages": [item.package_id for item in result.skipped_packages],
            }
        )

    logger.info(
        "Route %s: stop %s dispatched, %s packages moved, %s skipped",
        route.route_number, stop_index, len(result.updated_packages), len(result.skipped_packages)
    )
    return result


async def dispatch_stop_failure(
    db: AsyncSession,
    route_id: int,
    stop_index: int,
    reason: str,
    skipped_packages: Iterable[int] = (),
    actor: Optional[Actor] = None
) -> StopDispatchResult:
    """
    Fail a stop. On a delivery stop every package not explicitly skipped
    counts a failed delivery attempt.
    """
    async with atomic(db):
        route = await load_route(db, route_id)
        stop = RouteExecutionEngine.apply_stop_failure(route, stop_index, reason, skipped_packages)
        await db.flush()

        result = StopDispatchResult(route=route)
        skipped = set(stop.skipped_packages)
        attempted = [pid for pid in stop.package_ids if pid not in skipped]
        await _move_packages(
            db, route, stop, attempted,
            FAILED_STATUS.get(stop.action), actor, result
        )
        await db.flush()

        await log_event(
            db=db,
            action=AuditAction.STOP_FAILED,
            actor=actor,
            entity_type="route",
            entity_id=route.id,
            metadata={
                "stop_index": stop_index,
                "reason": reason,
                "updated_packages": result.updated_packages,
            }
        )

    logger.info("Route %s: stop %s failed and dispatched: %s", route.route_number, stop_index, reason)
    return result
