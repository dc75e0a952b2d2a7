"""
Read-time views over a package's persisted fields.

Nothing here is stored; every value is recomputed from the package row.
"""

import math
from datetime import datetime
from typing import Optional

from backend.app.core.clock import utcnow, as_utc
from backend.app.models.package import Package
from backend.app.models.package_enums import PackageStatus, PaymentStatus

TRANSIT_STATUSES = frozenset({
    PackageStatus.IN_TRANSIT_TO_BRANCH,
    PackageStatus.OUT_FOR_DELIVERY,
    PackageStatus.AT_DESTINATION_BRANCH,
})

BRANCH_STATUSES = frozenset({
    PackageStatus.AT_ORIGIN_BRANCH,
    PackageStatus.AT_DESTINATION_BRANCH,
})

ATTENTION_STATUSES = frozenset({
    PackageStatus.FAILED_DELIVERY,
    PackageStatus.DAMAGED,
    PackageStatus.LOST,
    PackageStatus.ON_HOLD,
})

DELIVERABLE_STATUSES = frozenset({
    PackageStatus.AT_DESTINATION_BRANCH,
    PackageStatus.OUT_FOR_DELIVERY,
    PackageStatus.FAILED_DELIVERY,
})

# Percent complete shown to clients
DELIVERY_PROGRESS = {
    PackageStatus.PENDING: 0,
    PackageStatus.ACCEPTED: 10,
    PackageStatus.AT_ORIGIN_BRANCH: 20,
    PackageStatus.IN_TRANSIT_TO_BRANCH: 40,
    PackageStatus.AT_DESTINATION_BRANCH: 60,
    PackageStatus.OUT_FOR_DELIVERY: 80,
    PackageStatus.DELIVERED: 100,
    PackageStatus.FAILED_DELIVERY: 80,
    PackageStatus.RESCHEDULED: 70,
    PackageStatus.RETURNED: 100,
    PackageStatus.CANCELLED: 0,
    PackageStatus.LOST: 0,
    PackageStatus.DAMAGED: 100,
    PackageStatus.ON_HOLD: 50,
}


def is_delivered(package: Package) -> bool:
    return package.status == PackageStatus.DELIVERED


def is_in_transit(package: Package) -> bool:
    return package.status in TRANSIT_STATUSES


def is_at_branch(package: Package) -> bool:
    return package.status in BRANCH_STATUSES


def has_open_issues(package: Package) -> bool:
    return any(not issue.resolved for issue in package.issues)


def needs_attention(package: Package, now: Optional[datetime] = None) -> bool:
    """Problem status, an open issue, or a retry date already passed."""
    if package.status in ATTENTION_STATUSES or has_open_issues(package):
        return True
    if package.next_attempt_date is None:
        return False
    return as_utc(package.next_attempt_date) < (now or utcnow())


def delivery_progress(package: Package) -> int:
    return DELIVERY_PROGRESS.get(package.status, 0)


def estimated_time_remaining(package: Package, now: Optional[datetime] = None) -> Optional[int]:
    """Hours until the estimated delivery time, rounded half up and never negative."""
    if package.estimated_delivery_time is None or is_delivered(package):
        return None
    now = now or utcnow()
    hours = (as_utc(package.estimated_delivery_time) - now).total_seconds() / 3600
    return max(0, math.floor(hours + 0.5))


def is_overdue(package: Package, now: Optional[datetime] = None) -> bool:
    if package.estimated_delivery_time is None or is_delivered(package):
        return False
    now = now or utcnow()
    return as_utc(package.estimated_delivery_time) < now


def can_be_delivered(package: Package) -> bool:
    return (
        package.status in DELIVERABLE_STATUSES
        and package.payment_status == PaymentStatus.PAID
        and not package.is_return
    )


def can_be_accepted(package: Package) -> bool:
    return (
        package.status == PackageStatus.PENDING
        and (package.weight or 0) > 0
        and (package.total_price or 0) > 0
        and bool(package.recipient_phone)
    )


def derived_views(package: Package, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    return {
        "is_delivered": is_delivered(package),
        "is_in_transit": is_in_transit(package),
        "is_at_branch": is_at_branch(package),
        "needs_attention": needs_attention(package, now),
        "delivery_progress": delivery_progress(package),
        "estimated_time_remaining": estimated_time_remaining(package, now),
        "is_overdue": is_overdue(package, now),
        "can_be_delivered": can_be_delivered(package),
        "can_be_accepted": can_be_accepted(package),
    }
