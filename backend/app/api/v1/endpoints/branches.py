"""
Branch API Endpoints.

Read the branch load ledger and change capacity limits.
"""

from fastapi import APIRouter, Depends, Path, Body
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.models.enums import UserRole
from backend.app.schemas.branch import BranchResponse, CapacityLimitUpdate
from backend.app.core.dependencies import get_current_user, actor_from
from backend.app.core.guards import require_role
from backend.app.domain.branches import capacity_ledger

router = APIRouter(prefix="/branches", tags=["Branches"])


@router.get("/{branch_id}", response_model=BranchResponse)
async def get_branch_load(
    branch_id: int = Path(..., description="Branch ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    branch = await capacity_ledger.get_branch(db, branch_id)
    return BranchResponse.from_branch(branch)


@router.patch("/{branch_id}/capacity", response_model=BranchResponse)
async def update_capacity_limit(
    branch_id: int = Path(..., description="Branch ID"),
    data: CapacityLimitUpdate = Body(...),
    current_user: dict = Depends(require_role([UserRole.MANAGER])),
    db: AsyncSession = Depends(get_db)
):
    """
    Change the branch capacity limit.

    Send ``capacityLimit: null`` to remove the limit. A limit below the
    current load is rejected.
    """
    branch = await capacity_ledger.update_capacity_limit(
        db, branch_id, data.capacity_limit, actor_from(current_user)
    )
    return BranchResponse.from_branch(branch)
