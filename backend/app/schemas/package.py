"""
Package Pydantic schemas.

Defines request and response models for the package state machine and the
issue subsystem.
"""

from datetime import datetime
from typing import Optional, List
from pydantic import Field, field_validator, model_validator
from backend.app.models.package_enums import (
    PackageStatus, PackageType, DeliveryType, DeliveryPriority,
    PaymentStatus, PaymentMethod, RefundStatus, IssueType, IssuePriority
)
from backend.app.schemas.common import ApiModel, GeoPoint


class Dimensions(ApiModel):
    """Package dimensions in centimeters."""
    length: float = Field(..., ge=1)
    width: float = Field(..., ge=1)
    height: float = Field(..., ge=1)


class Destination(ApiModel):
    """Delivery destination."""
    recipient_name: str = Field(..., min_length=1, max_length=200)
    recipient_phone: str = Field(..., min_length=1, max_length=30)
    alternative_phone: Optional[str] = Field(None, max_length=30)
    address: str = Field(..., min_length=1, max_length=500)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    location: Optional[GeoPoint] = None
    notes: Optional[str] = Field(None, max_length=500)


class PackageCreate(ApiModel):
    """Schema for creating a package at an origin branch."""
    tracking_number: Optional[str] = Field(None, pattern=r"^[A-Z0-9]{8,20}$")
    company_id: int
    client_id: int
    weight: float = Field(..., ge=0.01, le=500, description="Weight in kilograms")
    volume: Optional[float] = Field(None, ge=0.001, le=10, description="Volume in cubic meters")
    dimensions: Optional[Dimensions] = None
    is_fragile: bool = False
    type: PackageType = PackageType.PARCEL
    description: Optional[str] = Field(None, max_length=1000)
    declared_value: Optional[float] = Field(None, ge=0)
    destination_branch_id: Optional[int] = None
    destination: Destination
    delivery_type: DeliveryType = DeliveryType.HOME
    delivery_priority: DeliveryPriority = DeliveryPriority.STANDARD
    total_price: float = Field(..., ge=0)
    payment_method: Optional[PaymentMethod] = None
    max_attempts: Optional[int] = Field(None, ge=1, le=10)
    estimated_delivery_time: Optional[datetime] = None

    @field_validator("tracking_number", mode="before")
    @classmethod
    def normalize_tracking_number(cls, value):
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @model_validator(mode="after")
    def check_pickup_branch(self):
        if self.delivery_type == DeliveryType.BRANCH_PICKUP and self.destination_branch_id is None:
            raise ValueError("Destination branch is required for branch pickup")
        return self


class StatusTransitionRequest(ApiModel):
    """Schema for a package status transition."""
    status: PackageStatus
    notes: Optional[str] = Field(None, max_length=1000)
    branch_id: Optional[int] = None
    location: Optional[str] = Field(None, max_length=500)


class CancelToggleRequest(ApiModel):
    notes: Optional[str] = Field(None, max_length=1000)


class DeliveryAssignmentRequest(ApiModel):
    """Schema for assigning a package to a deliverer."""
    deliverer_id: int
    vehicle_id: Optional[int] = None
    transporter_id: Optional[int] = None


class PaymentRequest(ApiModel):
    payment_method: PaymentMethod


class ReturnRequest(ApiModel):
    """Schema for initiating a return."""
    reason: str = Field(..., min_length=1, max_length=500)
    refund_amount: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=500)


class RefundSettlementRequest(ApiModel):
    refund_status: RefundStatus

    @field_validator("refund_status")
    @classmethod
    def check_final(cls, value: RefundStatus) -> RefundStatus:
        if value == RefundStatus.PENDING:
            raise ValueError("Refund can only be settled as processed or rejected")
        return value


class IssueReportRequest(ApiModel):
    """Schema for reporting a package issue."""
    type: IssueType
    description: str = Field(..., min_length=1, max_length=1000)
    priority: IssuePriority = IssuePriority.MEDIUM


class IssueResolveRequest(ApiModel):
    resolution: str = Field(..., min_length=1, max_length=1000)


class IssueResponse(ApiModel):
    """Schema for issue response."""
    id: int
    type: IssueType
    description: str
    priority: IssuePriority
    reported_by: Optional[int]
    reported_at: datetime
    resolved: bool
    resolved_at: Optional[datetime]
    resolved_by: Optional[int]
    resolution: Optional[str]


class TrackingEventResponse(ApiModel):
    """Schema for one tracking history entry."""
    status: PackageStatus
    branch_id: Optional[int]
    user_id: Optional[int]
    location: Optional[str]
    notes: Optional[str]
    timestamp: datetime


class ReturnInfoResponse(ApiModel):
    is_return: bool
    reason: Optional[str]
    return_date: Optional[datetime]
    refund_amount: Optional[float]
    refund_status: Optional[RefundStatus]
    return_notes: Optional[str]


class PackageResponse(ApiModel):
    """Schema for package response, including derived read-time views."""
    id: int
    tracking_number: str
    company_id: int
    client_id: int
    weight: float
    volume: Optional[float]
    dimensions: Optional[Dimensions]
    is_fragile: bool
    type: PackageType
    description: Optional[str]
    declared_value: Optional[float]
    origin_branch_id: int
    current_branch_id: Optional[int]
    destination_branch_id: Optional[int]
    destination: Destination
    status: PackageStatus
    delivery_type: DeliveryType
    delivery_priority: DeliveryPriority
    total_price: float
    payment_status: PaymentStatus
    payment_method: Optional[PaymentMethod]
    paid_at: Optional[datetime]
    assigned_transporter_id: Optional[int]
    assigned_deliverer_id: Optional[int]
    assigned_vehicle_id: Optional[int]
    attempt_count: int
    max_attempts: int
    last_attempt_date: Optional[datetime]
    next_attempt_date: Optional[datetime]
    issues: List[IssueResponse]
    return_info: ReturnInfoResponse
    tracking_history: List[TrackingEventResponse]
    estimated_delivery_time: Optional[datetime]
    delivered_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    # Derived
    is_delivered: bool = False
    is_in_transit: bool = False
    is_at_branch: bool = False
    needs_attention: bool = False
    delivery_progress: int = 0
    estimated_time_remaining: Optional[int] = None
    is_overdue: bool = False
    can_be_delivered: bool = False
    can_be_accepted: bool = False

    @classmethod
    def from_package(cls, package) -> "PackageResponse":
        from backend.app.domain.packages.derived import derived_views

        return cls.model_validate(package).model_copy(update=derived_views(package))


class IssueReportResponse(ApiModel):
    issue: IssueResponse
    package: PackageResponse
