"""
Route execution engine tests.

Lifecycle guards, strict in-order stop processing, completion metrics and
stop reordering.
"""

import re
import pytest
from sqlalchemy import select, func

from backend.app.core.clock import utcnow
from backend.app.core.exceptions import (
    ConcurrentModificationError,
    InvalidStatusTransitionError,
    PreconditionFailedError,
    StopOutOfOrderError,
    ValidationFailedError,
)
from backend.app.domain.packages.state_machine import PackageStateMachine
from backend.app.domain.routes import derived
from backend.app.domain.routes.derived import ordered_stops
from backend.app.domain.routes.execution import RouteExecutionEngine
from backend.app.models.package_enums import PackageStatus
from backend.app.models.route import Route
from backend.app.models.route_enums import RouteStatus, StopStatus, StopAction
from backend.tests.factories import package_data, route_data, stop_payload


@pytest.fixture
async def packages(db_session, make_branch, actor):
    branch = await make_branch()
    created = []
    for _ in range(3):
        package = await PackageStateMachine.create(db_session, branch.id, package_data(), actor)
        created.append(package.id)
    return created


@pytest.fixture
async def route_id(db_session, actor, packages):
    route = await RouteExecutionEngine.create(
        db_session,
        route_data([
            stop_payload(1, package_ids=[packages[0], packages[1]]),
            stop_payload(2, package_ids=[packages[2]]),
            stop_payload(3, action=StopAction.SERVICE),
        ]),
        actor,
    )
    return route.id


@pytest.mark.asyncio
async def test_create_route(db_session, actor, packages, route_id):
    route = await RouteExecutionEngine.get(db_session, route_id)

    assert route.status == RouteStatus.PLANNED
    assert re.fullmatch(r"R-\d{8}-001", route.route_number)
    stops = ordered_stops(route)
    assert [stop.order for stop in stops] == [1, 2, 3]
    assert stops[0].package_ids == [packages[0], packages[1]]
    assert derived.total_packages(route) == 3
    assert derived.current_stop(route).id == stops[0].id


@pytest.mark.asyncio
async def test_create_stores_stops_in_order(db_session, actor):
    route = await RouteExecutionEngine.create(
        db_session,
        route_data([stop_payload(3), stop_payload(1), stop_payload(2)]),
        actor,
    )

    assert [stop.address for stop in ordered_stops(route)] == ["Stop 1", "Stop 2", "Stop 3"]


@pytest.mark.asyncio
async def test_duplicate_stop_orders_rejected(db_session, actor):
    with pytest.raises(ValidationFailedError):
        await RouteExecutionEngine.create(
            db_session, route_data([stop_payload(1), stop_payload(1)]), actor
        )


@pytest.mark.asyncio
async def test_generated_number_follows_explicit_numbers(db_session, actor):
    prefix = f"R-{utcnow():%Y%m%d}-"
    await RouteExecutionEngine.create(
        db_session, route_data([stop_payload(1)], route_number=f"{prefix}002"), actor
    )

    route = await RouteExecutionEngine.create(db_session, route_data([stop_payload(1)]), actor)
    assert route.route_number == f"{prefix}003"

    route = await RouteExecutionEngine.create(db_session, route_data([stop_payload(1)]), actor)
    assert route.route_number == f"{prefix}004"


@pytest.mark.asyncio
async def test_explicit_duplicate_route_number_rejected(db_session, actor):
    number = f"R-{utcnow():%Y%m%d}-010"
    await RouteExecutionEngine.create(db_session, route_data([stop_payload(1)], route_number=number), actor)

    with pytest.raises(ValidationFailedError):
        await RouteExecutionEngine.create(
            db_session, route_data([stop_payload(1)], route_number=number), actor
        )


@pytest.mark.asyncio
async def test_generated_number_taken_concurrently(db_session, actor, mocker):
    taken = await RouteExecutionEngine.create(db_session, route_data([stop_payload(1)]), actor)
    taken_number = taken.route_number
    mocker.patch(
        "backend.app.domain.routes.execution._next_route_number",
        return_value=taken_number,
    )

    with pytest.raises(ConcurrentModificationError):
        await RouteExecutionEngine.create(db_session, route_data([stop_payload(1)]), actor)

    result = await db_session.execute(select(func.count(Route.id)))
    assert result.scalar_one() == 1


@pytest.mark.asyncio
async def test_stops_processed_in_order(db_session, actor, route_id):
    route = await RouteExecutionEngine.start(db_session, route_id, actor)
    assert route.status == RouteStatus.ACTIVE
    assert route.actual_start is not None
    assert route.current_stop_index == 0
    assert ordered_stops(route)[0].expected_arrival is not None

    with pytest.raises(StopOutOfOrderError):
        await RouteExecutionEngine.complete_stop(db_session, route_id, 1, actor=actor)

    route = await RouteExecutionEngine.complete_stop(db_session, route_id, 0, actor=actor)
    stops = ordered_stops(route)
    assert route.current_stop_index == 1
    assert route.completed_stops == 1
    assert stops[0].status == StopStatus.COMPLETED
    assert stops[0].actual_departure is not None
    assert stops[1].status == StopStatus.PENDING
    assert stops[1].expected_arrival is not None


@pytest.mark.asyncio
async def test_complete_stop_records_outcomes_only(db_session, actor, packages, route_id):
    await RouteExecutionEngine.start(db_session, route_id, actor)

    route = await RouteExecutionEngine.complete_stop(
        db_session, route_id, 0,
        completed_packages=[packages[0], packages[0]],
        failed_packages=[packages[1]],
        actor=actor,
    )

    stop = ordered_stops(route)[0]
    assert stop.completed_packages == [packages[0]]
    assert stop.failed_packages == [packages[1]]
    assert derived.completed_packages(route) == 1

    package = await PackageStateMachine.get(db_session, packages[0])
    assert package.status == PackageStatus.PENDING


@pytest.mark.asyncio
async def test_complete_stop_rejects_foreign_packages(db_session, actor, packages, route_id):
    await RouteExecutionEngine.start(db_session, route_id, actor)

    with pytest.raises(ValidationFailedError):
        await RouteExecutionEngine.complete_stop(
            db_session, route_id, 0, completed_packages=[packages[2]], actor=actor
        )
    with pytest.raises(ValidationFailedError):
        await RouteExecutionEngine.complete_stop(
            db_session, route_id, 0,
            completed_packages=[packages[0]],
            failed_packages=[packages[0]],
            actor=actor,
        )

    route = await RouteExecutionEngine.get(db_session, route_id)
    assert route.current_stop_index == 0


@pytest.mark.asyncio
async def test_fail_and_skip_advance(db_session, actor, packages, route_id):
    await RouteExecutionEngine.start(db_session, route_id, actor)

    route = await RouteExecutionEngine.fail_stop(
        db_session, route_id, 0, "Gate closed", skipped_packages=[packages[1]], actor=actor
    )
    stop = ordered_stops(route)[0]
    assert stop.status == StopStatus.FAILED
    assert stop.issues == ["Gate closed"]
    assert stop.skipped_packages == [packages[1]]
    assert route.failed_stops == 1

    route = await RouteExecutionEngine.skip_stop(db_session, route_id, 1, "Road closed", actor)
    assert ordered_stops(route)[1].status == StopStatus.SKIPPED
    assert ordered_stops(route)[1].actual_departure is not None
    assert ordered_stops(route)[0].actual_departure is not None
    assert route.skipped_stops == 1
    assert route.current_stop_index == 2
    assert derived.next_stop(route) is None


@pytest.mark.asyncio
async def test_pause_and_resume_are_strict(db_session, actor, route_id):
    with pytest.raises(InvalidStatusTransitionError):
        await RouteExecutionEngine.pause(db_session, route_id, actor)

    await RouteExecutionEngine.start(db_session, route_id, actor)
    route = await RouteExecutionEngine.pause(db_session, route_id, actor)
    assert route.status == RouteStatus.PAUSED
    assert route.paused_at is not None

    with pytest.raises(InvalidStatusTransitionError):
        await RouteExecutionEngine.pause(db_session, route_id, actor)
    with pytest.raises(InvalidStatusTransitionError):
        await RouteExecutionEngine.complete_stop(db_session, route_id, 0, actor=actor)

    route = await RouteExecutionEngine.resume(db_session, route_id, actor)
    assert route.status == RouteStatus.ACTIVE
    assert route.resumed_at is not None

    with pytest.raises(InvalidStatusTransitionError):
        await RouteExecutionEngine.resume(db_session, route_id, actor)


@pytest.mark.asyncio
async def test_complete_route_metrics(db_session, actor, route_id):
    await RouteExecutionEngine.start(db_session, route_id, actor)
    await RouteExecutionEngine.arrive_at_stop(db_session, route_id, 0, actor)
    await RouteExecutionEngine.complete_stop(db_session, route_id, 0, actor=actor)

    with pytest.raises(PreconditionFailedError):
        await RouteExecutionEngine.complete(db_session, route_id, actor=actor)

    await RouteExecutionEngine.complete_stop(db_session, route_id, 1, actor=actor)
    await RouteExecutionEngine.complete_stop(db_session, route_id, 2, actor=actor)
    route = await RouteExecutionEngine.complete(db_session, route_id, notes="All good", actor=actor)

    assert route.status == RouteStatus.COMPLETED
    assert route.actual_end is not None
    assert route.actual_time >= 0
    assert route.on_time_performance == 100
    assert route.completion_notes == "All good"
    assert derived.progress_percentage(route) == 100
    assert derived.current_stop(route) is None
    assert derived.remaining_stops(route) == []


@pytest.mark.asyncio
async def test_arrive_only_at_current_stop(db_session, actor, route_id):
    await RouteExecutionEngine.start(db_session, route_id, actor)

    with pytest.raises(StopOutOfOrderError):
        await RouteExecutionEngine.arrive_at_stop(db_session, route_id, 2, actor)

    route = await RouteExecutionEngine.arrive_at_stop(db_session, route_id, 0, actor)
    stop = ordered_stops(route)[0]
    assert stop.status == StopStatus.ARRIVED
    assert stop.actual_arrival is not None

    with pytest.raises(InvalidStatusTransitionError):
        await RouteExecutionEngine.arrive_at_stop(db_session, route_id, 0, actor)


@pytest.mark.asyncio
async def test_assign_and_cancel(db_session, actor, route_id):
    route = await RouteExecutionEngine.assign(db_session, route_id, vehicle_id=4, deliverer_id=55, actor=actor)
    assert route.status == RouteStatus.ASSIGNED
    assert route.assigned_deliverer_id == 55

    with pytest.raises(ValidationFailedError):
        await RouteExecutionEngine.assign(db_session, route_id, actor=actor)

    await RouteExecutionEngine.start(db_session, route_id, actor)
    with pytest.raises(InvalidStatusTransitionError):
        await RouteExecutionEngine.assign(db_session, route_id, vehicle_id=5, actor=actor)

    route = await RouteExecutionEngine.cancel(db_session, route_id, "Vehicle breakdown", actor)
    assert route.status == RouteStatus.CANCELLED
    assert route.cancellation_reason == "Vehicle breakdown"

    with pytest.raises(InvalidStatusTransitionError):
        await RouteExecutionEngine.cancel(db_session, route_id, "Again", actor)
    with pytest.raises(InvalidStatusTransitionError):
        await RouteExecutionEngine.start(db_session, route_id, actor)


@pytest.mark.asyncio
async def test_reorder_planned_route(db_session, actor, route_id):
    route = await RouteExecutionEngine.get(db_session, route_id)
    first, second, third = [stop.id for stop in ordered_stops(route)]

    route = await RouteExecutionEngine.reorder_stops(db_session, route_id, [third, first, second], actor)

    assert [stop.id for stop in ordered_stops(route)] == [third, first, second]
    assert [stop.order for stop in ordered_stops(route)] == [1, 2, 3]


@pytest.mark.asyncio
async def test_reorder_rejects_partial_or_duplicate(db_session, actor, route_id):
    route = await RouteExecutionEngine.get(db_session, route_id)
    first, second, third = [stop.id for stop in ordered_stops(route)]

    with pytest.raises(ValidationFailedError):
        await RouteExecutionEngine.reorder_stops(db_session, route_id, [first, second], actor)
    with pytest.raises(ValidationFailedError):
        await RouteExecutionEngine.reorder_stops(db_session, route_id, [first, first, third], actor)


@pytest.mark.asyncio
async def test_reorder_keeps_processed_stops(db_session, actor, route_id):
    route = await RouteExecutionEngine.get(db_session, route_id)
    first, second, third = [stop.id for stop in ordered_stops(route)]
    await RouteExecutionEngine.start(db_session, route_id, actor)
    await RouteExecutionEngine.complete_stop(db_session, route_id, 0, actor=actor)

    with pytest.raises(PreconditionFailedError):
        await RouteExecutionEngine.reorder_stops(db_session, route_id, [second, first, third], actor)

    route = await RouteExecutionEngine.reorder_stops(db_session, route_id, [first, third, second], actor)
    assert [stop.id for stop in ordered_stops(route)] == [first, third, second]
    assert derived.current_stop(route).id == third
