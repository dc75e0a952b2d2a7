"""
Branch capacity ledger.

Tracks ``current_load`` against an optional ``capacity_limit`` per branch and
gates package admission. The counter is contended by every package admitted
to the branch, so it is only mutated through conditional UPDATE statements
(check and increment in one statement), never load-then-save.
"""

import logging
from typing import Optional

from sqlalchemy import update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import utcnow
from backend.app.core.exceptions import (
    ResourceNotFoundError,
    BranchInactiveError,
    BranchCapacityExceededError,
    PreconditionFailedError,
    ValidationFailedError,
)
from backend.app.db.transaction import atomic
from backend.app.models.branch import Branch
from backend.app.models.branch_enums import BranchStatus
from backend.app.services.audit import log_event, AuditAction, Actor

logger = logging.getLogger(__name__)

MIN_CAPACITY_LIMIT = 1
MAX_CAPACITY_LIMIT = 100000


async def get_branch(db: AsyncSession, branch_id: int) -> Branch:
    """
    Load a branch with fresh ledger values.

    Raises:
        ResourceNotFoundError: branch does not exist
    """
    branch = await db.get(Branch, branch_id, populate_existing=True)
    if branch is None:
        raise ResourceNotFoundError("Branch", branch_id)
    return branch


async def try_admit(db: AsyncSession, branch_id: int) -> None:
    """
    Admit one package into a branch.

    Runs inside the caller's transaction. The status check, the capacity check
    and the increment happen in a single UPDATE; when no row matches, the
    branch is re-read only to report why.

    Raises:
        ResourceNotFoundError: branch does not exist
        BranchInactiveError: branch status is not active
        BranchCapacityExceededError: current_load already reached capacity_limit
    """
    result = await db.execute(
        update(Branch)
        .where(
            Branch.id == branch_id,
            Branch.status == BranchStatus.ACTIVE,
            or_(
                Branch.capacity_limit.is_(None),
                Branch.current_load < Branch.capacity_limit,
            ),
        )
        .values(current_load=Branch.current_load + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 1:
        logger.info("Admitted package into branch %s", branch_id)
        return

    branch = await get_branch(db, branch_id)
    if branch.status != BranchStatus.ACTIVE:
        logger.warning("Admission refused, branch %s is %s", branch_id, branch.status.value)
        raise BranchInactiveError(branch_id, branch.status.value)

    logger.warning("Admission refused, branch %s is full", branch_id)
    raise BranchCapacityExceededError(branch_id, branch.capacity_limit, branch.current_load)


async def release(db: AsyncSession, branch_id: int) -> bool:
    """
    Release one unit of load from a branch.

    Runs inside the caller's transaction. The decrement is guarded by
    ``current_load > 0``; callers must only release packages that hold an
    admission (see Package.admitted_branch_id).

    Returns:
        True if the counter was decremented, False if it was already at zero

    Raises:
        ResourceNotFoundError: branch does not exist
    """
    result = await db.execute(
        update(Branch)
        .where(Branch.id == branch_id, Branch.current_load > 0)
        .values(current_load=Branch.current_load - 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 1:
        logger.info("Released package load from branch %s", branch_id)
        return True

    # Distinguish a dangling reference from a clamped decrement
    await get_branch(db, branch_id)
    logger.warning("Release on branch %s clamped at zero", branch_id)
    return False


async def update_capacity_limit(
    db: AsyncSession,
    branch_id: int,
    capacity_limit: Optional[int],
    actor: Optional[Actor] = None
) -> Branch:
    """
    Change a branch capacity limit (None removes the limit).

    A new limit lower than the current load is rejected; the comparison is
    part of the UPDATE so a concurrent admission cannot slip in between.

    Raises:
        ValidationFailedError: limit outside 1..100000
        ResourceNotFoundError: branch does not exist
        PreconditionFailedError: limit lower than current load
    """
    if capacity_limit is not None and not (MIN_CAPACITY_LIMIT <= capacity_limit <= MAX_CAPACITY_LIMIT):
        raise ValidationFailedError(
            f"Capacity limit must be between {MIN_CAPACITY_LIMIT} and {MAX_CAPACITY_LIMIT}",
            details={"capacity_limit": capacity_limit}
        )

    async with atomic(db):
        stmt = update(Branch).where(Branch.id == branch_id)
        if capacity_limit is not None:
            stmt = stmt.where(Branch.current_load <= capacity_limit)
        result = await db.execute(
            stmt.values(capacity_limit=capacity_limit, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

        branch = await get_branch(db, branch_id)
        if result.rowcount != 1:
            raise PreconditionFailedError(
                f"Capacity limit {capacity_limit} is lower than current load {branch.current_load}",
                error_code="ERR_CAPACITY_BELOW_LOAD",
                details={
                    "branch_id": branch_id,
                    "capacity_limit": capacity_limit,
                    "current_load": branch.current_load
                }
            )

        await log_event(
            db=db,
            action=AuditAction.BRANCH_CAPACITY_CHANGED,
            actor=actor,
            entity_type="branch",
            entity_id=branch_id,
            metadata={"capacity_limit": capacity_limit, "current_load": branch.current_load}
        )

    return branch
