"""
Audit logging service for delivery operations.

Audit rows are written inside the caller's transaction so an operation and
its audit record commit or roll back together.
"""

from dataclasses import dataclass
from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backend.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    # Packages
    PACKAGE_CREATED = "PACKAGE_CREATED"
    PACKAGE_STATUS_CHANGED = "PACKAGE_STATUS_CHANGED"
    PACKAGE_AUTO_RETURNED = "PACKAGE_AUTO_RETURNED"
    PACKAGE_CANCELLED = "PACKAGE_CANCELLED"
    PACKAGE_REACTIVATED = "PACKAGE_REACTIVATED"
    PACKAGE_ASSIGNED = "PACKAGE_ASSIGNED"
    PACKAGE_PAID = "PACKAGE_PAID"
    PACKAGE_RETURN_INITIATED = "PACKAGE_RETURN_INITIATED"
    PACKAGE_REFUND_SETTLED = "PACKAGE_REFUND_SETTLED"

    # Issues
    PACKAGE_ISSUE_REPORTED = "PACKAGE_ISSUE_REPORTED"
    PACKAGE_ISSUE_RESOLVED = "PACKAGE_ISSUE_RESOLVED"

    # Routes
    ROUTE_CREATED = "ROUTE_CREATED"
    ROUTE_ASSIGNED = "ROUTE_ASSIGNED"
    ROUTE_STARTED = "ROUTE_STARTED"
    ROUTE_PAUSED = "ROUTE_PAUSED"
    ROUTE_RESUMED = "ROUTE_RESUMED"
    ROUTE_COMPLETED = "ROUTE_COMPLETED"
    ROUTE_CANCELLED = "ROUTE_CANCELLED"
    ROUTE_STOPS_REORDERED = "ROUTE_STOPS_REORDERED"
    STOP_ARRIVED = "STOP_ARRIVED"
    STOP_COMPLETED = "STOP_COMPLETED"
    STOP_FAILED = "STOP_FAILED"
    STOP_SKIPPED = "STOP_SKIPPED"

    # Branches
    BRANCH_CAPACITY_CHANGED = "BRANCH_CAPACITY_CHANGED"


@dataclass(frozen=True)
class Actor:
    """Authenticated actor resolved at the boundary. ``user_id`` None means system."""
    user_id: Optional[int] = None
    username: Optional[str] = None
    role: Optional[str] = None

    @classmethod
    def from_token(cls, payload: dict) -> "Actor":
        return cls(
            user_id=payload.get("user_id"),
            username=payload.get("sub"),
            role=payload.get("role"),
        )


SYSTEM_ACTOR = Actor(username="system", role="system")


async def log_event(
    db: AsyncSession,
    action: str,
    actor: Optional[Actor] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
) -> AuditLog:
    """
    Record an audit event in the current transaction.

    Args:
        db: Database session (commit is owned by the caller)
        action: Action being performed (use AuditAction constants)
        actor: Who performed the action
        entity_type: "package", "route" or "branch"
        entity_id: ID of the targeted entity
        metadata: Additional context as JSON
        ip_address: IP address of the request

    Returns:
        Created AuditLog instance
    """
    actor = actor or SYSTEM_ACTOR
    audit_log = AuditLog(
        actor_id=actor.user_id,
        actor_username=actor.username,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_data=metadata,
        ip_address=ip_address
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)

    if entity_id is not None:
        query = query.where(AuditLog.entity_id == entity_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
