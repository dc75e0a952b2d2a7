"""
Route-related enumerations.
"""

import enum


class RouteType(str, enum.Enum):
    INTER_BRANCH = "inter_branch"
    LOCAL_DELIVERY = "local_delivery"
    PICKUP_ROUTE = "pickup_route"
    RETURN_ROUTE = "return_route"


class RouteStatus(str, enum.Enum):
    """
    Route status enumeration.

    Status flow:
        PLANNED → ASSIGNED → ACTIVE ⇄ PAUSED → COMPLETED
        Any non-terminal status can transition to CANCELLED
    """
    PLANNED = "planned"
    ASSIGNED = "assigned"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class StopStatus(str, enum.Enum):
    """Route stop status enumeration."""
    PENDING = "pending"  # Not yet visited
    ARRIVED = "arrived"  # Vehicle at the stop
    IN_PROGRESS = "in_progress"  # Handling packages
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class StopAction(str, enum.Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"
    TRANSFER = "transfer"
    SERVICE = "service"


class StopPackageOutcome(str, enum.Enum):
    """Per-package outcome recorded on a stop."""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
