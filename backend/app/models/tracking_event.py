"""
Tracking Event database model.

The tracking history of a package: an append-only, insertion-ordered audit
log of status changes. Rows are never edited or removed.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, event
from sqlalchemy.orm import relationship, object_session
from backend.app.core.clock import utcnow
from backend.app.core.exceptions import PreconditionFailedError
from backend.app.db.session import Base
from backend.app.models.enums import db_enum
from backend.app.models.package_enums import PackageStatus


class TrackingEvent(Base):
    """
    Tracking event model.

    Immutable record of one status change: {status, branch_id, user_id,
    location, notes, timestamp}.
    """
    __tablename__ = "tracking_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    package_id = Column(Integer, ForeignKey('packages.id'), nullable=False, index=True)

    status = Column(db_enum(PackageStatus), nullable=False)
    branch_id = Column(Integer, ForeignKey('branches.id'), nullable=True, index=True)
    user_id = Column(Integer, nullable=True)
    location = Column(String(500), nullable=True)
    notes = Column(String(1000), nullable=True)

    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    package = relationship("Package", back_populates="tracking_history")

    def __repr__(self):
        return f"<TrackingEvent(id={self.id}, package_id={self.package_id}, status='{self.status.value}')>"


@event.listens_for(TrackingEvent, "before_update")
def _reject_tracking_event_update(mapper, connection, target):
    session = object_session(target)
    if session is not None and session.is_modified(target, include_collections=False):
        raise PreconditionFailedError(
            "Tracking history is append-only",
            error_code="ERR_IMMUTABLE_RECORD"
        )


@event.listens_for(TrackingEvent, "before_delete")
def _reject_tracking_event_delete(mapper, connection, target):
    raise PreconditionFailedError(
        "Tracking history is append-only",
        error_code="ERR_IMMUTABLE_RECORD"
    )
