"""
Package-related enumerations.
"""

import enum


class PackageStatus(str, enum.Enum):
    """
    Package status enumeration.

    Status flow:
        PENDING → ACCEPTED → AT_ORIGIN_BRANCH → IN_TRANSIT_TO_BRANCH
        → AT_DESTINATION_BRANCH → OUT_FOR_DELIVERY → DELIVERED

    Side states: FAILED_DELIVERY, RESCHEDULED, ON_HOLD, DAMAGED, LOST,
    RETURNED, CANCELLED.
    """
    PENDING = "pending"
    ACCEPTED = "accepted"
    AT_ORIGIN_BRANCH = "at_origin_branch"
    IN_TRANSIT_TO_BRANCH = "in_transit_to_branch"
    AT_DESTINATION_BRANCH = "at_destination_branch"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    FAILED_DELIVERY = "failed_delivery"
    RESCHEDULED = "rescheduled"
    RETURNED = "returned"
    CANCELLED = "cancelled"
    LOST = "lost"
    DAMAGED = "damaged"
    ON_HOLD = "on_hold"


class PackageType(str, enum.Enum):
    DOCUMENT = "document"
    PARCEL = "parcel"
    FRAGILE = "fragile"
    HEAVY = "heavy"
    PERISHABLE = "perishable"
    ELECTRONIC = "electronic"
    CLOTHING = "clothing"


class DeliveryType(str, enum.Enum):
    HOME = "home"
    BRANCH_PICKUP = "branch_pickup"


class DeliveryPriority(str, enum.Enum):
    STANDARD = "standard"
    EXPRESS = "express"
    SAME_DAY = "same_day"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    COD = "cod"
    WALLET = "wallet"
    BANK_TRANSFER = "bank_transfer"


class RefundStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    REJECTED = "rejected"


class IssueType(str, enum.Enum):
    """Issue type enumeration for reported package exceptions."""
    DELAY = "delay"
    DAMAGE = "damage"
    LOST = "lost"
    WRONG_ADDRESS = "wrong_address"
    CUSTOMER_UNAVAILABLE = "customer_unavailable"
    TRAFFIC = "traffic"
    WEATHER = "weather"
    OTHER = "other"


class IssuePriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
