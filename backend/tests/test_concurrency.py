"""
Concurrency Tests.

Validates that stale writers are rejected and that history records are
append-only.
"""

import pytest

from backend.app.core.clock import utcnow
from backend.app.core.exceptions import ConcurrentModificationError, PreconditionFailedError
from backend.app.db.transaction import atomic
from backend.app.domain.packages.state_machine import PackageStateMachine
from backend.app.domain.routes.execution import RouteExecutionEngine
from backend.app.models.package_enums import PackageStatus
from backend.app.models.route_enums import RouteStatus
from backend.tests.factories import package_data, route_data, stop_payload


@pytest.mark.asyncio
async def test_stale_package_write_conflicts(db_session, session_factory, make_branch, actor):
    """A writer holding an old package version loses against a newer commit."""
    branch = await make_branch()
    package = await PackageStateMachine.create(db_session, branch.id, package_data(), actor)
    package_id = package.id

    async with session_factory() as other_session:
        stale = await PackageStateMachine.get(other_session, package_id)

        await PackageStateMachine.transition_status(db_session, package_id, PackageStatus.ACCEPTED, actor)

        with pytest.raises(ConcurrentModificationError):
            async with atomic(other_session):
                stale.status = PackageStatus.ON_HOLD
                stale.updated_at = utcnow()
                await other_session.flush()

    package = await PackageStateMachine.get(db_session, package_id)
    assert package.status == PackageStatus.ACCEPTED
    assert package.version_id == 2


@pytest.mark.asyncio
async def test_stale_route_write_conflicts(db_session, session_factory, actor):
    route = await RouteExecutionEngine.create(db_session, route_data([stop_payload(1)]), actor)
    route_id = route.id

    async with session_factory() as other_session:
        stale = await RouteExecutionEngine.get(other_session, route_id)

        await RouteExecutionEngine.start(db_session, route_id, actor)

        with pytest.raises(ConcurrentModificationError):
            async with atomic(other_session):
                stale.status = RouteStatus.CANCELLED
                stale.cancellation_reason = "stale"
                await other_session.flush()

    route = await RouteExecutionEngine.get(db_session, route_id)
    assert route.status == RouteStatus.ACTIVE


@pytest.mark.asyncio
async def test_tracking_events_cannot_be_edited(db_session, make_branch, actor):
    branch = await make_branch()
    package = await PackageStateMachine.create(db_session, branch.id, package_data(), actor)
    package_id = package.id

    with pytest.raises(PreconditionFailedError) as exc_info:
        async with atomic(db_session):
            package.tracking_history[0].notes = "rewritten"
            await db_session.flush()
    assert exc_info.value.error_code == "ERR_IMMUTABLE_RECORD"

    package = await PackageStateMachine.get(db_session, package_id)
    assert package.tracking_history[0].notes != "rewritten"


@pytest.mark.asyncio
async def test_tracking_events_cannot_be_deleted(db_session, make_branch, actor):
    branch = await make_branch()
    package = await PackageStateMachine.create(db_session, branch.id, package_data(), actor)
    package_id = package.id

    with pytest.raises(PreconditionFailedError):
        async with atomic(db_session):
            await db_session.delete(package.tracking_history[0])
            await db_session.flush()

    package = await PackageStateMachine.get(db_session, package_id)
    assert len(package.tracking_history) == 1
