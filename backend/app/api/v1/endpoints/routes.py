"""
Route API Endpoints.

Route lifecycle and in-order stop execution. Stop completion and failure go
through the stop outcome dispatch so package statuses follow the stop.
"""

from fastapi import APIRouter, Depends, Path, Body, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.models.enums import UserRole
from backend.app.schemas.route import (
    RouteCreate, RouteResponse, RouteAssignRequest, StopCompleteRequest, StopFailRequest,
    StopSkipRequest, RouteCompleteRequest, RouteCancelRequest, StopReorderRequest,
    StopDispatchResponse, SkippedPackage
)
from backend.app.core.dependencies import get_current_user, actor_from
from backend.app.core.guards import require_role
from backend.app.domain.routes.execution import RouteExecutionEngine
from backend.app.domain.dispatch.stop_outcomes import (
    StopDispatchResult, dispatch_stop_completion, dispatch_stop_failure
)

router = APIRouter(prefix="/routes", tags=["Routes"])

PLANNERS = [UserRole.MANAGER, UserRole.SUPERVISOR]
CREW = [UserRole.SUPERVISOR, UserRole.DELIVERER, UserRole.TRANSPORTER]


def _dispatch_response(result: StopDispatchResult) -> StopDispatchResponse:
    return StopDispatchResponse(
        route=RouteResponse.from_route(result.route),
        updated_packages=result.updated_packages,
        skipped_packages=[SkippedPackage.model_validate(item) for item in result.skipped_packages],
    )


@router.post("", response_model=RouteResponse, status_code=status.HTTP_201_CREATED)
async def create_route(
    data: RouteCreate = Body(...),
    current_user: dict = Depends(require_role(PLANNERS)),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a route with its stops.

    Stop ``order`` values must be unique; stops are stored in that order.
    """
    route = await RouteExecutionEngine.create(db, data, actor_from(current_user))
    return RouteResponse.from_route(route)


@router.get("/{route_id}", response_model=RouteResponse)
async def get_route(
    route_id: int = Path(..., description="Route ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    route = await RouteExecutionEngine.get(db, route_id)
    return RouteResponse.from_route(route)


@router.post("/{route_id}/assign", response_model=RouteResponse)
async def assign_route(
    route_id: int = Path(..., description="Route ID"),
    data: RouteAssignRequest = Body(...),
    current_user: dict = Depends(require_role(PLANNERS)),
    db: AsyncSession = Depends(get_db)
):
    route = await RouteExecutionEngine.assign(
        db,
        route_id,
        vehicle_id=data.vehicle_id,
        deliverer_id=data.deliverer_id,
        transporter_id=data.transporter_id,
        actor=actor_from(current_user),
    )
    return RouteResponse.from_route(route)


@router.post("/{route_id}/start", response_model=RouteResponse)
async def start_route(
    route_id: int = Path(..., description="Route ID"),
    current_user: dict = Depends(require_role(CREW)),
    db: AsyncSession = Depends(get_db)
):
    route = await RouteExecutionEngine.start(db, route_id, actor_from(current_user))
    return RouteResponse.from_route(route)


@router.post("/{route_id}/stops/{stop_index}/arrive", response_model=RouteResponse)
async def arrive_at_stop(
    route_id: int = Path(..., description="Route ID"),
    stop_index: int = Path(..., ge=0, description="Position of the stop in traversal order"),
    current_user: dict = Depends(require_role(CREW)),
    db: AsyncSession = Depends(get_db)
):
    route = await RouteExecutionEngine.arrive_at_stop(db, route_id, stop_index, actor_from(current_user))
    return RouteResponse.from_route(route)


@router.post("/{route_id}/stops/{stop_index}/complete", response_model=StopDispatchResponse)
async def complete_stop(
    route_id: int = Path(..., description="Route ID"),
    stop_index: int = Path(..., ge=0, description="Position of the stop in traversal order"),
    data: StopCompleteRequest = Body(...),
    current_user: dict = Depends(require_role(CREW)),
    db: AsyncSession = Depends(get_db)
):
    """
    Complete the current stop.

    Listed packages move according to the stop action; packages that can no
    longer move are reported under ``skippedPackages``.
    """
    result = await dispatch_stop_completion(
        db,
        route_id,
        stop_index,
        completed_packages=data.completed_packages,
        failed_packages=data.failed_packages,
        notes=data.notes,
        actor=actor_from(current_user),
    )
    return _dispatch_response(result)


@router.post("/{route_id}/stops/{stop_index}/fail", response_model=StopDispatchResponse)
async def fail_stop(
    route_id: int = Path(..., description="Route ID"),
    stop_index: int = Path(..., ge=0, description="Position of the stop in traversal order"),
    data: StopFailRequest = Body(...),
    current_user: dict = Depends(require_role(CREW)),
    db: AsyncSession = Depends(get_db)
):
    result = await dispatch_stop_failure(
        db,
        route_id,
        stop_index,
        data.reason,
        skipped_packages=data.skipped_packages,
        actor=actor_from(current_user),
    )
    return _dispatch_response(result)


@router.post("/{route_id}/stops/{stop_index}/skip", response_model=RouteResponse)
async def skip_stop(
    route_id: int = Path(..., description="Route ID"),
    stop_index: int = Path(..., ge=0, description="Position of the stop in traversal order"),
    data: StopSkipRequest = Body(...),
    current_user: dict = Depends(require_role(CREW)),
    db: AsyncSession = Depends(get_db)
):
    route = await RouteExecutionEngine.skip_stop(
        db, route_id, stop_index, data.reason, actor_from(current_user)
    )
    return RouteResponse.from_route(route)


@router.post("/{route_id}/stops/reorder", response_model=RouteResponse)
async def reorder_stops(
    route_id: int = Path(..., description="Route ID"),
    data: StopReorderRequest = Body(...),
    current_user: dict = Depends(require_role(PLANNERS)),
    db: AsyncSession = Depends(get_db)
):
    route = await RouteExecutionEngine.reorder_stops(db, route_id, data.stop_ids, actor_from(current_user))
    return RouteResponse.from_route(route)


@router.post("/{route_id}/pause", response_model=RouteResponse)
async def pause_route(
    route_id: int = Path(..., description="Route ID"),
    current_user: dict = Depends(require_role(CREW)),
    db: AsyncSession = Depends(get_db)
):
    route = await RouteExecutionEngine.pause(db, route_id, actor_from(current_user))
    return RouteResponse.from_route(route)


@router.post("/{route_id}/resume", response_model=RouteResponse)
async def resume_route(
    route_id: int = Path(..., description="Route ID"),
    current_user: dict = Depends(require_role(CREW)),
    db: AsyncSession = Depends(get_db)
):
    route = await RouteExecutionEngine.resume(db, route_id, actor_from(current_user))
    return RouteResponse.from_route(route)


@router.post("/{route_id}/complete", response_model=RouteResponse)
async def complete_route(
    route_id: int = Path(..., description="Route ID"),
    data: RouteCompleteRequest = Body(...),
    current_user: dict = Depends(require_role(CREW)),
    db: AsyncSession = Depends(get_db)
):
    route = await RouteExecutionEngine.complete(db, route_id, notes=data.notes, actor=actor_from(current_user))
    return RouteResponse.from_route(route)


@router.post("/{route_id}/cancel", response_model=RouteResponse)
async def cancel_route(
    route_id: int = Path(..., description="Route ID"),
    data: RouteCancelRequest = Body(...),
    current_user: dict = Depends(require_role(PLANNERS)),
    db: AsyncSession = Depends(get_db)
):
    route = await RouteExecutionEngine.cancel(db, route_id, data.reason, actor_from(current_user))
    return RouteResponse.from_route(route)
