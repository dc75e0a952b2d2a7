"""
Route database model.

A route is a planned, ordered sequence of stops executed by one
vehicle/deliverer/transporter. Progression is owned by the route execution
engine (backend.app.domain.routes.execution).
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from backend.app.core.clock import utcnow
from backend.app.db.session import Base
from backend.app.models.enums import db_enum
from backend.app.models.route_enums import RouteType, RouteStatus


class Route(Base):
    """
    Route model.

    ``current_stop_index`` points into the stops ordered by ``order``; a value
    equal to the number of stops means every stop has been processed.
    """
    __tablename__ = "routes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    route_number = Column(String(20), unique=True, nullable=False, index=True)
    company_id = Column(Integer, nullable=False, index=True)

    name = Column(String(100), nullable=True)
    type = Column(db_enum(RouteType), nullable=False)

    origin_branch_id = Column(Integer, ForeignKey('branches.id'), nullable=True)
    destination_branch_id = Column(Integer, ForeignKey('branches.id'), nullable=True)

    # Assignment references (external records)
    assigned_vehicle_id = Column(Integer, nullable=True, index=True)
    assigned_transporter_id = Column(Integer, nullable=True)
    assigned_deliverer_id = Column(Integer, nullable=True, index=True)

    # Planning figures
    distance = Column(Float, nullable=False)  # km
    estimated_time = Column(Integer, nullable=False)  # minutes
    actual_time = Column(Float, nullable=True)  # minutes
    fuel_estimate = Column(Float, nullable=True)
    cost_estimate = Column(Float, nullable=True)

    # Execution
    status = Column(db_enum(RouteStatus), default=RouteStatus.PLANNED, nullable=False, index=True)
    current_stop_index = Column(Integer, default=0, nullable=False)
    completed_stops = Column(Integer, default=0, nullable=False)
    failed_stops = Column(Integer, default=0, nullable=False)
    skipped_stops = Column(Integer, default=0, nullable=False)
    on_time_performance = Column(Float, default=0, nullable=False)

    # Schedule
    scheduled_start = Column(DateTime(timezone=True), nullable=False, index=True)
    actual_start = Column(DateTime(timezone=True), nullable=True)
    scheduled_end = Column(DateTime(timezone=True), nullable=False)
    actual_end = Column(DateTime(timezone=True), nullable=True)
    paused_at = Column(DateTime(timezone=True), nullable=True)
    resumed_at = Column(DateTime(timezone=True), nullable=True)

    cancellation_reason = Column(String(500), nullable=True)
    completion_notes = Column(String(1000), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # Optimistic locking
    version_id = Column(Integer, nullable=False, default=1)

    stops = relationship(
        "RouteStop",
        back_populates="route",
        order_by="RouteStop.order",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        CheckConstraint("current_stop_index >= 0", name="ck_routes_stop_index_non_negative"),
        CheckConstraint("on_time_performance >= 0 AND on_time_performance <= 100", name="ck_routes_on_time_range"),
    )

    def __repr__(self):
        return f"<Route(id={self.id}, number='{self.route_number}', status='{self.status.value}')>"
