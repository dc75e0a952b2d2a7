"""
Issue subsystem tests.

Reporting forces exception statuses by severity; resolving the last open
issue returns the package to its destination branch.
"""

import pytest

from backend.app.core.exceptions import (
    InvalidStatusTransitionError,
    IssueAlreadyResolvedError,
    ResourceNotFoundError,
)
from backend.app.domain.packages import derived
from backend.app.domain.packages.issues import report_issue, resolve_issue, resolve_issue_by_index
from backend.app.domain.packages.state_machine import PackageStateMachine
from backend.app.models.package_enums import PackageStatus, IssueType, IssuePriority
from backend.tests.factories import package_data


@pytest.fixture
async def package_id(db_session, make_branch, actor):
    branch = await make_branch()
    package = await PackageStateMachine.create(db_session, branch.id, package_data(), actor)
    await PackageStateMachine.transition_status(
        db_session, package.id, PackageStatus.IN_TRANSIT_TO_BRANCH, actor
    )
    return package.id


@pytest.mark.asyncio
async def test_damage_then_delay_resolved_in_order(db_session, actor, package_id):
    package, damage = await report_issue(
        db_session, package_id, IssueType.DAMAGE, "Crushed corner", actor, priority=IssuePriority.HIGH
    )
    assert package.status == PackageStatus.DAMAGED

    package, delay = await report_issue(db_session, package_id, IssueType.DELAY, "Truck breakdown", actor)
    assert package.status == PackageStatus.DAMAGED
    assert derived.needs_attention(package) is True

    package = await resolve_issue(db_session, package_id, damage.id, "Repacked", actor)
    assert package.status == PackageStatus.DAMAGED
    assert package.issues[0].resolved is True
    assert package.issues[0].resolved_by == actor.user_id

    history_before = len(package.tracking_history)
    package = await resolve_issue(db_session, package_id, delay.id, "Back on schedule", actor)
    assert package.status == PackageStatus.AT_DESTINATION_BRANCH
    assert len(package.tracking_history) == history_before + 1
    assert package.tracking_history[-1].status == PackageStatus.AT_DESTINATION_BRANCH
    assert derived.needs_attention(package) is False


@pytest.mark.asyncio
async def test_report_always_records_tracking_event(db_session, actor, package_id):
    package, _ = await report_issue(db_session, package_id, IssueType.WRONG_ADDRESS, "Unit missing", actor)

    assert package.status == PackageStatus.IN_TRANSIT_TO_BRANCH
    last = package.tracking_history[-1]
    assert last.status == PackageStatus.IN_TRANSIT_TO_BRANCH
    assert "wrong_address" in last.notes


@pytest.mark.asyncio
async def test_system_report_has_no_reporter(db_session, package_id):
    package, issue = await report_issue(db_session, package_id, IssueType.DELAY, "Depot backlog")

    assert issue.reported_by is None
    assert package.issues[-1].reported_by is None


@pytest.mark.asyncio
async def test_lost_is_not_downgraded(db_session, actor, package_id):
    await report_issue(db_session, package_id, IssueType.LOST, "Missing at hub", actor)
    package, _ = await report_issue(db_session, package_id, IssueType.DAMAGE, "Found torn", actor)

    assert package.status == PackageStatus.LOST
    assert package.tracking_history[-1].status == PackageStatus.LOST


@pytest.mark.asyncio
async def test_customer_unavailable_puts_on_hold(db_session, actor, package_id):
    package, _ = await report_issue(
        db_session, package_id, IssueType.CUSTOMER_UNAVAILABLE, "No answer", actor
    )
    assert package.status == PackageStatus.ON_HOLD

    package, _ = await report_issue(db_session, package_id, IssueType.DAMAGE, "Wet box", actor)
    assert package.status == PackageStatus.DAMAGED


@pytest.mark.asyncio
async def test_returned_package_keeps_status(db_session, actor, package_id):
    await PackageStateMachine.initiate_return(db_session, package_id, "Sender request", actor)

    package, _ = await report_issue(db_session, package_id, IssueType.DAMAGE, "Damaged on way back", actor)

    assert package.status == PackageStatus.RETURNED


@pytest.mark.asyncio
async def test_report_rejected_on_delivered(db_session, actor, package_id):
    await PackageStateMachine.transition_status(db_session, package_id, PackageStatus.DELIVERED, actor)

    with pytest.raises(InvalidStatusTransitionError):
        await report_issue(db_session, package_id, IssueType.DELAY, "Late", actor)

    package = await PackageStateMachine.get(db_session, package_id)
    assert package.issues == []


@pytest.mark.asyncio
async def test_resolve_twice_rejected(db_session, actor, package_id):
    _, issue = await report_issue(db_session, package_id, IssueType.TRAFFIC, "Jam", actor)
    issue_id = issue.id
    await resolve_issue(db_session, package_id, issue_id, "Cleared", actor)

    with pytest.raises(IssueAlreadyResolvedError):
        await resolve_issue(db_session, package_id, issue_id, "Cleared again", actor)


@pytest.mark.asyncio
async def test_resolve_unknown_issue(db_session, actor, package_id):
    with pytest.raises(ResourceNotFoundError):
        await resolve_issue(db_session, package_id, 999, "n/a", actor)


@pytest.mark.asyncio
async def test_resolve_by_index(db_session, actor, package_id):
    await report_issue(db_session, package_id, IssueType.DELAY, "Weather front", actor)
    await report_issue(db_session, package_id, IssueType.WEATHER, "Storm", actor)

    package = await resolve_issue_by_index(db_session, package_id, 1, "Storm passed", actor)
    assert package.issues[1].resolved is True
    assert package.status == PackageStatus.ON_HOLD

    with pytest.raises(ResourceNotFoundError):
        await resolve_issue_by_index(db_session, package_id, 2, "n/a", actor)

    package = await resolve_issue_by_index(db_session, package_id, 0, "Weather cleared", actor)
    assert package.status == PackageStatus.AT_DESTINATION_BRANCH
