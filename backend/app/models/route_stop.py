"""
Route Stop database model.

Stops are owned by exactly one route and mutated only through the stop
outcome operations of the route execution engine.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from backend.app.db.session import Base
from backend.app.models.enums import db_enum
from backend.app.models.route_enums import StopAction, StopStatus, StopPackageOutcome


class RouteStop(Base):
    """
    Route Stop model.

    ``order`` values are unique within a route and define traversal order.
    Package membership and per-package outcomes live in route_stop_packages.
    """
    __tablename__ = "route_stops"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    route_id = Column(Integer, ForeignKey('routes.id'), nullable=False, index=True)

    order = Column("stop_order", Integer, nullable=False)
    action = Column(db_enum(StopAction), nullable=False)

    # Location
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    address = Column(String(500), nullable=True)
    branch_id = Column(Integer, ForeignKey('branches.id'), nullable=True)
    client_id = Column(Integer, nullable=True)

    # Timing
    expected_arrival = Column(DateTime(timezone=True), nullable=True)
    actual_arrival = Column(DateTime(timezone=True), nullable=True)
    expected_departure = Column(DateTime(timezone=True), nullable=True)
    actual_departure = Column(DateTime(timezone=True), nullable=True)
    stop_duration = Column(Integer, default=15, nullable=False)  # minutes

    status = Column(db_enum(StopStatus), default=StopStatus.PENDING, nullable=False)

    notes = Column(String(500), nullable=True)
    contact_person = Column(String(200), nullable=True)
    contact_phone = Column(String(30), nullable=True)
    issues = Column(JSON, default=list, nullable=False)

    route = relationship("Route", back_populates="stops")
    package_links = relationship(
        "RouteStopPackage",
        back_populates="stop",
        order_by="RouteStopPackage.id",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint('route_id', 'stop_order', name='uq_route_stops_route_order'),
    )

    @property
    def location(self) -> dict:
        return {"type": "Point", "coordinates": [self.longitude, self.latitude]}

    @property
    def package_ids(self) -> list[int]:
        return [link.package_id for link in self.package_links]

    def _packages_with(self, outcome: StopPackageOutcome) -> list[int]:
        return [link.package_id for link in self.package_links if link.outcome == outcome]

    @property
    def completed_packages(self) -> list[int]:
        return self._packages_with(StopPackageOutcome.COMPLETED)

    @property
    def failed_packages(self) -> list[int]:
        return self._packages_with(StopPackageOutcome.FAILED)

    @property
    def skipped_packages(self) -> list[int]:
        return self._packages_with(StopPackageOutcome.SKIPPED)

    def __repr__(self):
        return f"<RouteStop(id={self.id}, route_id={self.route_id}, order={self.order}, status='{self.status.value}')>"
