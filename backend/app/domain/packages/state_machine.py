"""
Package state machine.

Owns every mutation of a package: creation with branch admission, status
transitions with their side effects (attempt counting, automatic return after
the last failed attempt), cancellation toggling, delivery assignment, payment
and return/refund bookkeeping.

Every status change appends exactly one TrackingEvent (the automatic return
appends two: the failed attempt, then the return). Operations run inside
``atomic`` so the package row, its history, the branch ledger and the audit
record commit together.
"""

import logging
import random
import time
from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import utcnow
from backend.app.core.config import settings
from backend.app.core.exceptions import (
    ResourceNotFoundError,
    ValidationFailedError,
    PreconditionFailedError,
    InvalidStatusTransitionError,
    BranchInactiveError,
)
from backend.app.db.transaction import atomic
from backend.app.domain.branches import capacity_ledger
from backend.app.models.branch_enums import BranchStatus
from backend.app.models.package import Package
from backend.app.models.package_enums import (
    PackageStatus, PaymentStatus, PaymentMethod, RefundStatus
)
from backend.app.models.tracking_event import TrackingEvent
from backend.app.schemas.package import PackageCreate
from backend.app.services.audit import log_event, AuditAction, Actor, SYSTEM_ACTOR

logger = logging.getLogger(__name__)

# No further status transitions once reached
TERMINAL_STATUSES = frozenset({
    PackageStatus.DELIVERED,
    PackageStatus.CANCELLED,
    PackageStatus.RETURNED,
})

# Statuses entered through their own operation, never a plain transition
RESERVED_TARGETS = {
    PackageStatus.CANCELLED: "toggle_cancel",
    PackageStatus.RETURNED: "initiate_return",
    PackageStatus.DAMAGED: "report_issue",
    PackageStatus.LOST: "report_issue",
}

AUTO_RETURN_REASON = "Maximum delivery attempts exceeded"


def generate_tracking_number() -> str:
    """PKG + 6 time-derived digits + 4 random digits."""
    stamp = str(int(time.time() * 1000))[-6:]
    return f"PKG{stamp}{random.randint(1000, 9999)}"


async def load_package(db: AsyncSession, package_id: int) -> Package:
    """
    Load a package with fresh column values, issues and history.

    Raises:
        ResourceNotFoundError: package does not exist
    """
    result = await db.execute(
        select(Package)
        .where(Package.id == package_id)
        .execution_options(populate_existing=True)
    )
    package = result.scalar_one_or_none()
    if package is None:
        raise ResourceNotFoundError("Package", package_id)
    return package


def record_event(
    package: Package,
    status: PackageStatus,
    actor: Optional[Actor],
    notes: Optional[str] = None,
    branch_id: Optional[int] = None,
    location: Optional[str] = None
) -> TrackingEvent:
    """Append one entry to the package tracking history."""
    actor = actor or SYSTEM_ACTOR
    tracking_event = TrackingEvent(
        status=status,
        branch_id=branch_id if branch_id is not None else package.current_branch_id,
        user_id=actor.user_id,
        location=location,
        notes=notes,
        timestamp=utcnow(),
    )
    package.tracking_history.append(tracking_event)
    return tracking_event


class PackageStateMachine:
    """Package lifecycle operations."""

    @staticmethod
    def ensure_can_transition(package: Package, new_status: PackageStatus) -> None:
        """
        Check a requested transition against the lifecycle rules.

        Raises:
            InvalidStatusTransitionError: target reserved to another operation,
                package terminal, or package lost
        """
        # A lost package leaves that status only through issue resolution or a return
        if (
            new_status in RESERVED_TARGETS
            or package.status in TERMINAL_STATUSES
            or package.status == PackageStatus.LOST
        ):
            logger.warning(
                "Package %s refused %s -> %s", package.id, package.status.value, new_status.value
            )
            raise InvalidStatusTransitionError(
                "package", package.status.value, f"transition to {new_status.value}"
            )

    @staticmethod
    def apply_transition(
        package: Package,
        new_status: PackageStatus,
        actor: Optional[Actor] = None,
        notes: Optional[str] = None,
        branch_id: Optional[int] = None,
        location: Optional[str] = None
    ) -> bool:
        """
        Apply a status change and its side effects to a loaded package.

        Does not validate and does not commit; callers check the rules first
        and own the transaction.

        Returns:
            True if the change escalated into an automatic return
        """
        now = utcnow()
        previous = package.status

        package.status = new_status
        if branch_id is not None:
            package.current_branch_id = branch_id
        record_event(
            package,
            new_status,
            actor,
            notes=notes or f"Status changed from {previous.value} to {new_status.value}",
            branch_id=branch_id,
            location=location,
        )
        package.updated_at = now

        if new_status == PackageStatus.DELIVERED:
            package.delivered_at = now
        elif new_status == PackageStatus.OUT_FOR_DELIVERY:
            package.last_attempt_date = now
        elif new_status == PackageStatus.FAILED_DELIVERY:
            package.attempt_count += 1
            package.last_attempt_date = now
            if package.attempt_count < package.max_attempts:
                package.next_attempt_date = now + timedelta(days=settings.retry_delay_days)
                return False

            package.next_attempt_date = None
            PackageStateMachine._mark_returned(package, AUTO_RETURN_REASON, SYSTEM_ACTOR)
            logger.info(
                "Package %s reached %s failed attempts, returned to sender",
                package.tracking_number, package.attempt_count
            )
            return True

        return False

    @staticmethod
    def _mark_returned(
        package: Package,
        reason: str,
        actor: Optional[Actor],
        refund_amount: Optional[float] = None,
        notes: Optional[str] = None
    ) -> None:
        now = utcnow()
        package.status = PackageStatus.RETURNED
        package.is_return = True
        package.return_reason = reason
        package.return_date = now
        package.return_notes = notes
        if refund_amount is not None:
            package.refund_amount = refund_amount
            package.refund_status = RefundStatus.PENDING
        package.updated_at = now
        record_event(package, PackageStatus.RETURNED, actor, notes=f"Return initiated: {reason}")

    @staticmethod
    async def get(db: AsyncSession, package_id: int) -> Package:
        return await load_package(db, package_id)

    @staticmethod
    async def get_by_tracking_number(db: AsyncSession, tracking_number: str) -> Package:
        result = await db.execute(
            select(Package).where(Package.tracking_number == tracking_number.strip().upper())
        )
        package = result.scalar_one_or_none()
        if package is None:
            raise ResourceNotFoundError("Package", tracking_number)
        return package

    @staticmethod
    async def create(
        db: AsyncSession,
        branch_id: int,
        data: PackageCreate,
        actor: Optional[Actor] = None
    ) -> Package:
        """
        Create a package at its origin branch.

        The branch admission and the package insert share one transaction, so
        a refused admission leaves neither a package nor a load change behind.

        Raises:
            ResourceNotFoundError: origin or destination branch missing
            BranchInactiveError: origin branch not active
            BranchCapacityExceededError: origin branch full
            ValidationFailedError: duplicate tracking number
        """
        actor = actor or SYSTEM_ACTOR

        async with atomic(db):
            branch = await capacity_ledger.get_branch(db, branch_id)
            if branch.status != BranchStatus.ACTIVE:
                raise BranchInactiveError(branch_id, branch.status.value)
            if data.destination_branch_id is not None:
                await capacity_ledger.get_branch(db, data.destination_branch_id)

            tracking_number = data.tracking_number or generate_tracking_number()
            existing = await db.execute(
                select(Package.id).where(Package.tracking_number == tracking_number)
            )
            if existing.scalar_one_or_none() is not None:
                raise ValidationFailedError(
                    f"Package with tracking number '{tracking_number}' already exists",
                    details={"tracking_number": tracking_number}
                )

            await capacity_ledger.try_admit(db, branch_id)

            volume = data.volume
            dimensions = data.dimensions
            if volume is None and dimensions is not None:
                volume = dimensions.length * dimensions.width * dimensions.height / 1_000_000

            destination = data.destination
            location = destination.location
            package = Package(
                tracking_number=tracking_number,
                company_id=data.company_id,
                client_id=data.client_id,
                weight=data.weight,
                volume=volume,
                length_cm=dimensions.length if dimensions else None,
                width_cm=dimensions.width if dimensions else None,
                height_cm=dimensions.height if dimensions else None,
                is_fragile=data.is_fragile,
                type=data.type,
                description=data.description,
                declared_value=data.declared_value,
                origin_branch_id=branch_id,
                current_branch_id=branch_id,
                destination_branch_id=data.destination_branch_id,
                admitted_branch_id=branch_id,
                recipient_name=destination.recipient_name,
                recipient_phone=destination.recipient_phone,
                alternative_phone=destination.alternative_phone,
                destination_address=destination.address,
                destination_city=destination.city,
                destination_state=destination.state,
                destination_postal_code=destination.postal_code,
                destination_latitude=location.latitude if location else None,
                destination_longitude=location.longitude if location else None,
                destination_notes=destination.notes,
                status=PackageStatus.PENDING,
                delivery_type=data.delivery_type,
                delivery_priority=data.delivery_priority,
                total_price=data.total_price,
                payment_status=PaymentStatus.PENDING,
                payment_method=data.payment_method,
                attempt_count=0,
                max_attempts=data.max_attempts or settings.default_max_attempts,
                is_return=False,
                estimated_delivery_time=data.estimated_delivery_time,
                issues=[],
                tracking_history=[],
            )
            record_event(
                package,
                PackageStatus.PENDING,
                actor,
                notes=f"Package created at branch {branch.name}",
                branch_id=branch_id,
            )
            db.add(package)
            await db.flush()

            await log_event(
                db=db,
                action=AuditAction.PACKAGE_CREATED,
                actor=actor,
                entity_type="package",
                entity_id=package.id,
                metadata={"tracking_number": tracking_number, "branch_id": branch_id}
            )

        logger.info("Package %s created at branch %s", package.tracking_number, branch_id)
        return package

    @staticmethod
    async def transition_status(
        db: AsyncSession,
        package_id: int,
        new_status: PackageStatus,
        actor: Optional[Actor] = None,
        notes: Optional[str] = None,
        branch_id: Optional[int] = None,
        location: Optional[str] = None
    ) -> Package:
        """
        Move a package to a new status.

        ``failed_delivery`` counts an attempt; the attempt that reaches
        ``max_attempts`` turns the package into a return in the same write.

        Raises:
            ResourceNotFoundError: package or branch missing
            InvalidStatusTransitionError: transition not allowed
        """
        async with atomic(db):
            package = await load_package(db, package_id)
            previous = package.status
            PackageStateMachine.ensure_can_transition(package, new_status)
            if branch_id is not None:
                await capacity_ledger.get_branch(db, branch_id)

            escalated = PackageStateMachine.apply_transition(
                package, new_status, actor, notes=notes, branch_id=branch_id, location=location
            )
            await db.flush()

            await log_event(
                db=db,
                action=AuditAction.PACKAGE_STATUS_CHANGED,
                actor=actor,
                entity_type="package",
                entity_id=package.id,
                metadata={"from": previous.value, "to": new_status.value}
            )
            if escalated:
                await log_event(
                    db=db,
                    action=AuditAction.PACKAGE_AUTO_RETURNED,
                    actor=SYSTEM_ACTOR,
                    entity_type="package",
                    entity_id=package.id,
                    metadata={"attempt_count": package.attempt_count, "reason": AUTO_RETURN_REASON}
                )

        logger.info(
            "Package %s: %s -> %s",
            package.tracking_number, previous.value, package.status.value
        )
        return package

    @staticmethod
    async def toggle_cancel(
        db: AsyncSession,
        package_id: int,
        actor: Optional[Actor] = None,
        notes: Optional[str] = None
    ) -> Package:
        """
        Cancel a package, or reactivate a cancelled one back to pending.

        Cancelling releases the branch load held by the package. Reactivation
        does not re-admit it.

        Raises:
            ResourceNotFoundError: package missing
            InvalidStatusTransitionError: package delivered or returned
        """
        async with atomic(db):
            package = await load_package(db, package_id)

            if package.status == PackageStatus.CANCELLED:
                PackageStateMachine.apply_transition(
                    package, PackageStatus.PENDING, actor,
                    notes=notes or "Package reactivated"
                )
                action = AuditAction.PACKAGE_REACTIVATED
            elif package.status in (PackageStatus.DELIVERED, PackageStatus.RETURNED):
                raise InvalidStatusTransitionError("package", package.status.value, "cancel")
            else:
                PackageStateMachine.apply_transition(
                    package, PackageStatus.CANCELLED, actor,
                    notes=notes or "Package cancelled"
                )
                if package.admitted_branch_id is not None:
                    await capacity_ledger.release(db, package.admitted_branch_id)
                    package.admitted_branch_id = None
                action = AuditAction.PACKAGE_CANCELLED

            await db.flush()
            await log_event(
                db=db,
                action=action,
                actor=actor,
                entity_type="package",
                entity_id=package.id,
            )

        logger.info("Package %s is now %s", package.tracking_number, package.status.value)
        return package

    @staticmethod
    async def assign_delivery(
        db: AsyncSession,
        package_id: int,
        deliverer_id: int,
        vehicle_id: Optional[int] = None,
        transporter_id: Optional[int] = None,
        actor: Optional[Actor] = None
    ) -> Package:
        """
        Hand a package to a deliverer and move it out for delivery.

        Raises:
            ResourceNotFoundError: package missing
            InvalidStatusTransitionError: package terminal or lost
        """
        async with atomic(db):
            package = await load_package(db, package_id)
            PackageStateMachine.ensure_can_transition(package, PackageStatus.OUT_FOR_DELIVERY)

            package.assigned_deliverer_id = deliverer_id
            if vehicle_id is not None:
                package.assigned_vehicle_id = vehicle_id
            if transporter_id is not None:
                package.assigned_transporter_id = transporter_id
            PackageStateMachine.apply_transition(
                package, PackageStatus.OUT_FOR_DELIVERY, actor,
                notes=f"Assigned to deliverer {deliverer_id}"
            )
            await db.flush()

            await log_event(
                db=db,
                action=AuditAction.PACKAGE_ASSIGNED,
                actor=actor,
                entity_type="package",
                entity_id=package.id,
                metadata={"deliverer_id": deliverer_id, "vehicle_id": vehicle_id}
            )

        return package

    @staticmethod
    async def record_payment(
        db: AsyncSession,
        package_id: int,
        payment_method: PaymentMethod,
        actor: Optional[Actor] = None
    ) -> Package:
        """
        Mark a package as paid.

        Raises:
            ResourceNotFoundError: package missing
            PreconditionFailedError: already paid or refunded, or cancelled
        """
        async with atomic(db):
            package = await load_package(db, package_id)
            if package.payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
                raise PreconditionFailedError(
                    f"Package payment is already {package.payment_status.value}",
                    details={"package_id": package_id, "payment_status": package.payment_status.value}
                )
            if package.status == PackageStatus.CANCELLED:
                raise InvalidStatusTransitionError("package", package.status.value, "record payment")

            now = utcnow()
            package.payment_status = PaymentStatus.PAID
            package.payment_method = payment_method
            package.paid_at = now
            package.updated_at = now
            await db.flush()

            await log_event(
                db=db,
                action=AuditAction.PACKAGE_PAID,
                actor=actor,
                entity_type="package",
                entity_id=package.id,
                metadata={"payment_method": payment_method.value, "amount": package.total_price}
            )

        return package

    @staticmethod
    async def initiate_return(
        db: AsyncSession,
        package_id: int,
        reason: str,
        actor: Optional[Actor] = None,
        refund_amount: Optional[float] = None,
        notes: Optional[str] = None
    ) -> Package:
        """
        Send a package back to its sender.

        Allowed from any non-terminal status, including lost.

        Raises:
            ResourceNotFoundError: package missing
            InvalidStatusTransitionError: package delivered, cancelled or returned
        """
        async with atomic(db):
            package = await load_package(db, package_id)
            if package.status in TERMINAL_STATUSES:
                raise InvalidStatusTransitionError("package", package.status.value, "initiate return")

            PackageStateMachine._mark_returned(
                package, reason, actor, refund_amount=refund_amount, notes=notes
            )
            await db.flush()

            await log_event(
                db=db,
                action=AuditAction.PACKAGE_RETURN_INITIATED,
                actor=actor,
                entity_type="package",
                entity_id=package.id,
                metadata={"reason": reason, "refund_amount": refund_amount}
            )

        logger.info("Package %s returned: %s", package.tracking_number, reason)
        return package

    @staticmethod
    async def settle_refund(
        db: AsyncSession,
        package_id: int,
        refund_status: RefundStatus,
        actor: Optional[Actor] = None
    ) -> Package:
        """
        Settle a pending refund as processed or rejected.

        Raises:
            ResourceNotFoundError: package missing
            ValidationFailedError: refund_status is not a final status
            PreconditionFailedError: no pending refund on the package
        """
        if refund_status not in (RefundStatus.PROCESSED, RefundStatus.REJECTED):
            raise ValidationFailedError(
                "Refund can only be settled as processed or rejected",
                details={"refund_status": refund_status.value}
            )

        async with atomic(db):
            package = await load_package(db, package_id)
            if not package.is_return or package.refund_status != RefundStatus.PENDING:
                raise PreconditionFailedError(
                    "Package has no pending refund",
                    details={"package_id": package_id}
                )

            package.refund_status = refund_status
            if refund_status == RefundStatus.PROCESSED:
                package.payment_status = PaymentStatus.REFUNDED
            package.updated_at = utcnow()
            await db.flush()

            await log_event(
                db=db,
                action=AuditAction.PACKAGE_REFUND_SETTLED,
                actor=actor,
                entity_type="package",
                entity_id=package.id,
                metadata={"refund_status": refund_status.value, "refund_amount": package.refund_amount}
            )

        return package
