"""
Package database model.

A package is a shipment unit moving through the branch network. Its status,
payment state, delivery attempts, issues and tracking history are owned by
the package state machine (backend.app.domain.packages).
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from backend.app.core.clock import utcnow
from backend.app.db.session import Base
from backend.app.models.enums import db_enum
from backend.app.models.package_enums import (
    PackageStatus, PackageType, DeliveryType, DeliveryPriority,
    PaymentStatus, PaymentMethod, RefundStatus
)


class Package(Base):
    """
    Package model.

    Packages are never deleted; terminal states are retained for audit.
    ``version_id`` guards against lost updates from concurrent writers.
    """
    __tablename__ = "packages"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Identification
    tracking_number = Column(String(20), unique=True, nullable=False, index=True)
    company_id = Column(Integer, nullable=False, index=True)
    client_id = Column(Integer, nullable=False, index=True)

    # Physical properties
    weight = Column(Float, nullable=False)
    volume = Column(Float, nullable=True)
    length_cm = Column(Float, nullable=True)
    width_cm = Column(Float, nullable=True)
    height_cm = Column(Float, nullable=True)
    is_fragile = Column(Boolean, default=False, nullable=False)
    type = Column(db_enum(PackageType), default=PackageType.PARCEL, nullable=False)
    description = Column(String(1000), nullable=True)
    declared_value = Column(Float, nullable=True)

    # Branch references
    origin_branch_id = Column(Integer, ForeignKey('branches.id'), nullable=False, index=True)
    current_branch_id = Column(Integer, ForeignKey('branches.id'), nullable=True, index=True)
    destination_branch_id = Column(Integer, ForeignKey('branches.id'), nullable=True, index=True)
    # Branch whose load counter currently holds this package (None once released)
    admitted_branch_id = Column(Integer, ForeignKey('branches.id'), nullable=True)

    # Destination
    recipient_name = Column(String(200), nullable=False)
    recipient_phone = Column(String(30), nullable=False)
    alternative_phone = Column(String(30), nullable=True)
    destination_address = Column(String(500), nullable=False)
    destination_city = Column(String(100), nullable=False)
    destination_state = Column(String(100), nullable=False)
    destination_postal_code = Column(String(20), nullable=True)
    destination_latitude = Column(Float, nullable=True)
    destination_longitude = Column(Float, nullable=True)
    destination_notes = Column(String(500), nullable=True)

    # Status
    status = Column(db_enum(PackageStatus), default=PackageStatus.PENDING, nullable=False, index=True)
    delivery_type = Column(db_enum(DeliveryType), default=DeliveryType.HOME, nullable=False)
    delivery_priority = Column(db_enum(DeliveryPriority), default=DeliveryPriority.STANDARD, nullable=False)

    # Payment
    total_price = Column(Float, nullable=False)
    payment_status = Column(db_enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    payment_method = Column(db_enum(PaymentMethod), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    # Assignment references (external records)
    assigned_transporter_id = Column(Integer, nullable=True)
    assigned_deliverer_id = Column(Integer, nullable=True, index=True)
    assigned_vehicle_id = Column(Integer, nullable=True)

    # Delivery attempts
    attempt_count = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=3, nullable=False)
    last_attempt_date = Column(DateTime(timezone=True), nullable=True)
    next_attempt_date = Column(DateTime(timezone=True), nullable=True)

    # Return / refund
    is_return = Column(Boolean, default=False, nullable=False)
    return_reason = Column(String(500), nullable=True)
    return_date = Column(DateTime(timezone=True), nullable=True)
    refund_amount = Column(Float, nullable=True)
    refund_status = Column(db_enum(RefundStatus), nullable=True)
    return_notes = Column(String(500), nullable=True)

    # Timestamps
    estimated_delivery_time = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # Optimistic locking
    version_id = Column(Integer, nullable=False, default=1)

    issues = relationship(
        "PackageIssue",
        back_populates="package",
        order_by="PackageIssue.id",
        lazy="selectin",
        cascade="save-update, merge",
    )
    tracking_history = relationship(
        "TrackingEvent",
        back_populates="package",
        order_by="TrackingEvent.id",
        lazy="selectin",
        cascade="save-update, merge",
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        CheckConstraint("attempt_count >= 0", name="ck_packages_attempts_non_negative"),
        CheckConstraint("attempt_count <= max_attempts", name="ck_packages_attempts_within_max"),
        CheckConstraint(
            "delivery_type != 'branch_pickup' OR destination_branch_id IS NOT NULL",
            name="ck_packages_pickup_branch"
        ),
    )

    @property
    def destination(self) -> dict:
        location = None
        if self.destination_latitude is not None and self.destination_longitude is not None:
            location = {
                "type": "Point",
                "coordinates": [self.destination_longitude, self.destination_latitude],
            }
        return {
            "recipient_name": self.recipient_name,
            "recipient_phone": self.recipient_phone,
            "alternative_phone": self.alternative_phone,
            "address": self.destination_address,
            "city": self.destination_city,
            "state": self.destination_state,
            "postal_code": self.destination_postal_code,
            "location": location,
            "notes": self.destination_notes,
        }

    @property
    def dimensions(self) -> dict | None:
        if self.length_cm is None or self.width_cm is None or self.height_cm is None:
            return None
        return {"length": self.length_cm, "width": self.width_cm, "height": self.height_cm}

    @property
    def return_info(self) -> dict:
        return {
            "is_return": self.is_return,
            "reason": self.return_reason,
            "return_date": self.return_date,
            "refund_amount": self.refund_amount,
            "refund_status": self.refund_status,
            "return_notes": self.return_notes,
        }

    def __repr__(self):
        return f"<Package(id={self.id}, tracking='{self.tracking_number}', status='{self.status.value}')>"
