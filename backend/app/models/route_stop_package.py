"""
Route stop ↔ package association.

Replaces mutual embedded pointers between routes and packages: a package is
listed on a stop through one row here, and the stop outcome for that package
is recorded on the same row.
"""

from sqlalchemy import Column, Integer, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from backend.app.db.session import Base
from backend.app.models.enums import db_enum
from backend.app.models.route_enums import StopPackageOutcome


class RouteStopPackage(Base):
    """Association row between a route stop and a package."""
    __tablename__ = "route_stop_packages"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    route_id = Column(Integer, ForeignKey('routes.id'), nullable=False)
    stop_id = Column(Integer, ForeignKey('route_stops.id'), nullable=False)
    package_id = Column(Integer, ForeignKey('packages.id'), nullable=False)

    # None until the stop is processed
    outcome = Column(db_enum(StopPackageOutcome), nullable=True)

    stop = relationship("RouteStop", back_populates="package_links")

    __table_args__ = (
        UniqueConstraint('stop_id', 'package_id', name='uq_route_stop_packages_stop_package'),
        Index('ix_route_stop_packages_package', 'package_id'),
        Index('ix_route_stop_packages_route', 'route_id'),
    )

    def __repr__(self):
        return f"<RouteStopPackage(stop_id={self.stop_id}, package_id={self.package_id}, outcome={self.outcome})>"
