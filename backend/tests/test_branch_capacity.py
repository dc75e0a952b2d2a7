"""
Branch capacity ledger tests.

Admission, release and capacity limit changes against the load counter.
"""

import math
import pytest
from sqlalchemy import select, func

from backend.app.core.exceptions import (
    BranchCapacityExceededError,
    BranchInactiveError,
    PreconditionFailedError,
    ResourceNotFoundError,
    ValidationFailedError,
)
from backend.app.db.transaction import atomic
from backend.app.domain.branches import capacity_ledger, derived
from backend.app.domain.packages.state_machine import PackageStateMachine
from backend.app.models.branch_enums import BranchStatus
from backend.app.models.package import Package
from backend.tests.factories import package_data


@pytest.mark.asyncio
async def test_capacity_limit_refuses_third_package(db_session, make_branch, actor):
    """A branch with limit 2 admits two packages and refuses the third."""
    branch = await make_branch(capacity_limit=2)
    branch_id = branch.id

    await PackageStateMachine.create(db_session, branch_id, package_data(), actor)
    await PackageStateMachine.create(db_session, branch_id, package_data(), actor)

    with pytest.raises(BranchCapacityExceededError) as exc_info:
        await PackageStateMachine.create(db_session, branch_id, package_data(), actor)

    assert exc_info.value.error_code == "ERR_BRANCH_FULL"
    refreshed = await capacity_ledger.get_branch(db_session, branch_id)
    assert refreshed.current_load == 2

    count = await db_session.execute(select(func.count(Package.id)))
    assert count.scalar_one() == 2


@pytest.mark.asyncio
async def test_admit_without_limit(db_session, make_branch):
    branch = await make_branch()
    branch_id = branch.id

    for _ in range(5):
        async with atomic(db_session):
            await capacity_ledger.try_admit(db_session, branch_id)

    refreshed = await capacity_ledger.get_branch(db_session, branch_id)
    assert refreshed.current_load == 5
    assert derived.available_capacity(refreshed) == math.inf
    assert derived.is_full(refreshed) is False


@pytest.mark.asyncio
async def test_admit_inactive_branch(db_session, make_branch):
    branch = await make_branch(status=BranchStatus.MAINTENANCE)
    branch_id = branch.id

    with pytest.raises(BranchInactiveError):
        async with atomic(db_session):
            await capacity_ledger.try_admit(db_session, branch_id)

    refreshed = await capacity_ledger.get_branch(db_session, branch_id)
    assert refreshed.current_load == 0


@pytest.mark.asyncio
async def test_admit_unknown_branch(db_session):
    with pytest.raises(ResourceNotFoundError):
        async with atomic(db_session):
            await capacity_ledger.try_admit(db_session, 9999)


@pytest.mark.asyncio
async def test_release_clamps_at_zero(db_session, make_branch):
    branch = await make_branch(current_load=1)
    branch_id = branch.id

    async with atomic(db_session):
        assert await capacity_ledger.release(db_session, branch_id) is True
    async with atomic(db_session):
        assert await capacity_ledger.release(db_session, branch_id) is False

    refreshed = await capacity_ledger.get_branch(db_session, branch_id)
    assert refreshed.current_load == 0


@pytest.mark.asyncio
async def test_capacity_limit_below_load_rejected(db_session, make_branch, actor):
    branch = await make_branch(capacity_limit=10, current_load=4)
    branch_id = branch.id

    with pytest.raises(PreconditionFailedError) as exc_info:
        await capacity_ledger.update_capacity_limit(db_session, branch_id, 3, actor)
    assert exc_info.value.error_code == "ERR_CAPACITY_BELOW_LOAD"

    refreshed = await capacity_ledger.get_branch(db_session, branch_id)
    assert refreshed.capacity_limit == 10


@pytest.mark.asyncio
async def test_capacity_limit_update_and_removal(db_session, make_branch, actor):
    branch = await make_branch(capacity_limit=10, current_load=4)
    branch_id = branch.id

    updated = await capacity_ledger.update_capacity_limit(db_session, branch_id, 4, actor)
    assert updated.capacity_limit == 4
    assert derived.is_full(updated) is True
    assert derived.can_accept_packages(updated) is False

    unlimited = await capacity_ledger.update_capacity_limit(db_session, branch_id, None, actor)
    assert unlimited.capacity_limit is None
    assert derived.can_accept_packages(unlimited, count=1000) is True


@pytest.mark.asyncio
async def test_capacity_limit_out_of_range(db_session, make_branch, actor):
    branch = await make_branch()
    branch_id = branch.id

    with pytest.raises(ValidationFailedError):
        await capacity_ledger.update_capacity_limit(db_session, branch_id, 0, actor)
    with pytest.raises(ValidationFailedError):
        await capacity_ledger.update_capacity_limit(db_session, branch_id, 100001, actor)


@pytest.mark.asyncio
async def test_can_accept_packages_counts(db_session, make_branch):
    branch = await make_branch(capacity_limit=5, current_load=3)

    assert derived.available_capacity(branch) == 2
    assert derived.can_accept_packages(branch, count=2) is True
    assert derived.can_accept_packages(branch, count=3) is False
