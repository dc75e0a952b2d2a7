"""
Package API Endpoints.

Package lifecycle, issues and tracking history. Every handler delegates to
the package state machine; errors surface through the global handlers.
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Path, Body, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.models.enums import UserRole
from backend.app.schemas.package import (
    PackageCreate, PackageResponse, StatusTransitionRequest, CancelToggleRequest,
    DeliveryAssignmentRequest, PaymentRequest, ReturnRequest, RefundSettlementRequest,
    IssueReportRequest, IssueResolveRequest, IssueResponse, IssueReportResponse,
    TrackingEventResponse
)
from backend.app.schemas.audit import AuditLogResponse, AuditTrailResponse
from backend.app.core.dependencies import get_current_user, actor_from
from backend.app.core.guards import require_role
from backend.app.domain.packages.state_machine import PackageStateMachine
from backend.app.domain.packages import issues as issue_service
from backend.app.services.audit import get_audit_trail

router = APIRouter(prefix="/packages", tags=["Packages"])
branch_router = APIRouter(prefix="/branches", tags=["Packages"])

BRANCH_STAFF = [UserRole.MANAGER, UserRole.SUPERVISOR]
FIELD_STAFF = [UserRole.SUPERVISOR, UserRole.DELIVERER, UserRole.TRANSPORTER]


@branch_router.post(
    "/{branch_id}/packages",
    response_model=PackageResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_package(
    branch_id: int = Path(..., description="Origin branch ID"),
    data: PackageCreate = Body(...),
    current_user: dict = Depends(require_role(BRANCH_STAFF)),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a package at its origin branch.

    The branch must be active and below its capacity limit.
    """
    package = await PackageStateMachine.create(db, branch_id, data, actor_from(current_user))
    return PackageResponse.from_package(package)


@router.get("/tracking/{tracking_number}", response_model=PackageResponse)
async def get_package_by_tracking_number(
    tracking_number: str = Path(..., description="Tracking number"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    package = await PackageStateMachine.get_by_tracking_number(db, tracking_number)
    return PackageResponse.from_package(package)


@router.get("/{package_id}", response_model=PackageResponse)
async def get_package(
    package_id: int = Path(..., description="Package ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    package = await PackageStateMachine.get(db, package_id)
    return PackageResponse.from_package(package)


@router.get("/{package_id}/tracking", response_model=List[TrackingEventResponse])
async def get_tracking_history(
    package_id: int = Path(..., description="Package ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Tracking history, oldest first."""
    package = await PackageStateMachine.get(db, package_id)
    return package.tracking_history


@router.get("/{package_id}/audit", response_model=AuditTrailResponse)
async def get_package_audit_trail(
    package_id: int = Path(..., description="Package ID"),
    limit: int = Query(100, ge=1, le=500, description="Maximum entries"),
    current_user: dict = Depends(require_role(BRANCH_STAFF)),
    db: AsyncSession = Depends(get_db)
):
    """Audit entries for a package, most recent first."""
    await PackageStateMachine.get(db, package_id)
    logs = await get_audit_trail(db, entity_type="package", entity_id=package_id, limit=limit)
    return AuditTrailResponse(
        logs=[AuditLogResponse.model_validate(log) for log in logs],
        total=len(logs)
    )


@router.post("/{package_id}/status", response_model=PackageResponse)
async def transition_status(
    package_id: int = Path(..., description="Package ID"),
    data: StatusTransitionRequest = Body(...),
    current_user: dict = Depends(require_role(FIELD_STAFF)),
    db: AsyncSession = Depends(get_db)
):
    """
    Move a package to a new status.

    cancelled, returned, damaged and lost are reached through their own
    endpoints.
    """
    package = await PackageStateMachine.transition_status(
        db,
        package_id,
        data.status,
        actor_from(current_user),
        notes=data.notes,
        branch_id=data.branch_id,
        location=data.location,
    )
    return PackageResponse.from_package(package)


@router.post("/{package_id}/cancel-toggle", response_model=PackageResponse)
async def toggle_cancel(
    package_id: int = Path(..., description="Package ID"),
    data: Optional[CancelToggleRequest] = Body(None),
    current_user: dict = Depends(require_role(BRANCH_STAFF)),
    db: AsyncSession = Depends(get_db)
):
    """Cancel a package, or reactivate a cancelled one."""
    package = await PackageStateMachine.toggle_cancel(
        db, package_id, actor_from(current_user), notes=data.notes if data else None
    )
    return PackageResponse.from_package(package)


@router.post("/{package_id}/assign", response_model=PackageResponse)
async def assign_delivery(
    package_id: int = Path(..., description="Package ID"),
    data: DeliveryAssignmentRequest = Body(...),
    current_user: dict = Depends(require_role(BRANCH_STAFF)),
    db: AsyncSession = Depends(get_db)
):
    package = await PackageStateMachine.assign_delivery(
        db,
        package_id,
        data.deliverer_id,
        vehicle_id=data.vehicle_id,
        transporter_id=data.transporter_id,
        actor=actor_from(current_user),
    )
    return PackageResponse.from_package(package)


@router.post("/{package_id}/payment", response_model=PackageResponse)
async def record_payment(
    package_id: int = Path(..., description="Package ID"),
    data: PaymentRequest = Body(...),
    current_user: dict = Depends(require_role(BRANCH_STAFF + [UserRole.DELIVERER])),
    db: AsyncSession = Depends(get_db)
):
    package = await PackageStateMachine.record_payment(
        db, package_id, data.payment_method, actor_from(current_user)
    )
    return PackageResponse.from_package(package)


@router.post("/{package_id}/return", response_model=PackageResponse)
async def initiate_return(
    package_id: int = Path(..., description="Package ID"),
    data: ReturnRequest = Body(...),
    current_user: dict = Depends(require_role(BRANCH_STAFF)),
    db: AsyncSession = Depends(get_db)
):
    package = await PackageStateMachine.initiate_return(
        db,
        package_id,
        data.reason,
        actor_from(current_user),
        refund_amount=data.refund_amount,
        notes=data.notes,
    )
    return PackageResponse.from_package(package)


@router.post("/{package_id}/refund", response_model=PackageResponse)
async def settle_refund(
    package_id: int = Path(..., description="Package ID"),
    data: RefundSettlementRequest = Body(...),
    current_user: dict = Depends(require_role([UserRole.MANAGER])),
    db: AsyncSession = Depends(get_db)
):
    package = await PackageStateMachine.settle_refund(
        db, package_id, data.refund_status, actor_from(current_user)
    )
    return PackageResponse.from_package(package)


@router.get("/{package_id}/issues", response_model=List[IssueResponse])
async def list_issues(
    package_id: int = Path(..., description="Package ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Issues in the order they were reported."""
    package = await PackageStateMachine.get(db, package_id)
    return package.issues


@router.post(
    "/{package_id}/issues",
    response_model=IssueReportResponse,
    status_code=status.HTTP_201_CREATED
)
async def report_issue(
    package_id: int = Path(..., description="Package ID"),
    data: IssueReportRequest = Body(...),
    current_user: dict = Depends(require_role(FIELD_STAFF + [UserRole.MANAGER])),
    db: AsyncSession = Depends(get_db)
):
    package, issue = await issue_service.report_issue(
        db,
        package_id,
        data.type,
        data.description,
        actor_from(current_user),
        priority=data.priority,
    )
    return IssueReportResponse(
        issue=IssueResponse.model_validate(issue),
        package=PackageResponse.from_package(package),
    )


@router.post("/{package_id}/issues/{issue_id}/resolve", response_model=PackageResponse)
async def resolve_issue(
    package_id: int = Path(..., description="Package ID"),
    issue_id: int = Path(..., description="Issue ID"),
    data: IssueResolveRequest = Body(...),
    current_user: dict = Depends(require_role(BRANCH_STAFF)),
    db: AsyncSession = Depends(get_db)
):
    package = await issue_service.resolve_issue(
        db, package_id, issue_id, data.resolution, actor_from(current_user)
    )
    return PackageResponse.from_package(package)
