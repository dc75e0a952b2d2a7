"""
Package issue subsystem.

Reporting an issue may force the package into an exception status (damage,
loss, delay, customer unavailable); resolving the last open issue of a package in
such a status moves it back to ``at_destination_branch``.

The exception statuses are ranked lost > damaged > on_hold. A report never
moves a package to a less severe status, and never moves a returned package.
"""

import logging
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import utcnow
from backend.app.core.exceptions import (
    ResourceNotFoundError,
    InvalidStatusTransitionError,
    IssueAlreadyResolvedError,
)
from backend.app.db.transaction import atomic
from backend.app.domain.packages.state_machine import (
    PackageStateMachine,
    load_package,
    record_event,
)
from backend.app.models.package import Package
from backend.app.models.package_enums import PackageStatus, IssueType, IssuePriority
from backend.app.models.package_issue import PackageIssue
from backend.app.services.audit import log_event, AuditAction, Actor, SYSTEM_ACTOR

logger = logging.getLogger(__name__)

FORCED_STATUS = {
    IssueType.DAMAGE: PackageStatus.DAMAGED,
    IssueType.LOST: PackageStatus.LOST,
    IssueType.DELAY: PackageStatus.ON_HOLD,
    IssueType.CUSTOMER_UNAVAILABLE: PackageStatus.ON_HOLD,
}

SEVERITY = {
    PackageStatus.ON_HOLD: 1,
    PackageStatus.DAMAGED: 2,
    PackageStatus.LOST: 3,
}

# Issue statuses that clear once every issue is resolved
ISSUE_STATUSES = frozenset(SEVERITY)


def _forced_status(current: PackageStatus, issue_type: IssueType) -> Optional[PackageStatus]:
    forced = FORCED_STATUS.get(issue_type)
    if forced is None or current == PackageStatus.RETURNED:
        return None
    if SEVERITY.get(current, 0) >= SEVERITY[forced]:
        return None
    return forced


async def report_issue(
    db: AsyncSession,
    package_id: int,
    issue_type: IssueType,
    description: str,
    actor: Optional[Actor] = None,
    priority: IssuePriority = IssuePriority.MEDIUM
) -> Tuple[Package, PackageIssue]:
    """
    Record an issue on a package.

    Always appends a tracking entry, carrying the package status after the
    report.

    Raises:
        ResourceNotFoundError: package missing
        InvalidStatusTransitionError: package delivered or cancelled
    """
    actor = actor or SYSTEM_ACTOR

    async with atomic(db):
        package = await load_package(db, package_id)
        if package.status in (PackageStatus.DELIVERED, PackageStatus.CANCELLED):
            raise InvalidStatusTransitionError("package", package.status.value, "report issue")

        now = utcnow()
        issue = PackageIssue(
            type=issue_type,
            description=description,
            priority=priority,
            reported_by=actor.user_id,
            reported_at=now,
            resolved=False,
        )
        package.issues.append(issue)

        forced = _forced_status(package.status, issue_type)
        if forced is not None:
            package.status = forced
        record_event(
            package,
            package.status,
            actor,
            notes=f"Issue reported ({issue_type.value}): {description}",
        )
        package.updated_at = now
        await db.flush()

        await log_event(
            db=db,
            action=AuditAction.PACKAGE_ISSUE_REPORTED,
            actor=actor,
            entity_type="package",
            entity_id=package.id,
            metadata={
                "issue_id": issue.id,
                "type": issue_type.value,
                "status": package.status.value,
            }
        )

    logger.info(
        "Issue %s (%s) reported on package %s, status %s",
        issue.id, issue_type.value, package.tracking_number, package.status.value
    )
    return package, issue


async def _resolve(
    db: AsyncSession,
    package: Package,
    issue: PackageIssue,
    resolution: str,
    actor: Optional[Actor]
) -> Package:
    if issue.resolved:
        raise IssueAlreadyResolvedError(package.id, issue.id)

    actor = actor or SYSTEM_ACTOR
    now = utcnow()
    issue.resolved = True
    issue.resolved_at = now
    issue.resolved_by = actor.user_id
    issue.resolution = resolution
    package.updated_at = now

    cleared = all(item.resolved for item in package.issues) and package.status in ISSUE_STATUSES
    if cleared:
        PackageStateMachine.apply_transition(
            package,
            PackageStatus.AT_DESTINATION_BRANCH,
            actor,
            notes=f"All issues resolved: {resolution}",
        )
    await db.flush()

    await log_event(
        db=db,
        action=AuditAction.PACKAGE_ISSUE_RESOLVED,
        actor=actor,
        entity_type="package",
        entity_id=package.id,
        metadata={"issue_id": issue.id, "status": package.status.value}
    )
    return package


async def resolve_issue(
    db: AsyncSession,
    package_id: int,
    issue_id: int,
    resolution: str,
    actor: Optional[Actor] = None
) -> Package:
    """
    Resolve an issue addressed by its id.

    Raises:
        ResourceNotFoundError: package or issue missing
        IssueAlreadyResolvedError: issue already resolved
    """
    async with atomic(db):
        package = await load_package(db, package_id)
        issue = next((item for item in package.issues if item.id == issue_id), None)
        if issue is None:
            raise ResourceNotFoundError("Issue", issue_id)
        await _resolve(db, package, issue, resolution, actor)

    logger.info("Issue %s resolved on package %s", issue_id, package.tracking_number)
    return package


async def resolve_issue_by_index(
    db: AsyncSession,
    package_id: int,
    index: int,
    resolution: str,
    actor: Optional[Actor] = None
) -> Package:
    """
    Resolve an issue addressed by its position in the package issue list.

    Raises:
        ResourceNotFoundError: package missing or index out of range
        IssueAlreadyResolvedError: issue already resolved
    """
    async with atomic(db):
        package = await load_package(db, package_id)
        if not 0 <= index < len(package.issues):
            raise ResourceNotFoundError("Issue", f"#{index}")
        await _resolve(db, package, package.issues[index], resolution, actor)

    return package
