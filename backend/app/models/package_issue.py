"""
Package Issue database model.

Reported exceptions (damage, loss, delay, ...) against a package. Issues are
addressed by their generated id and listed in insertion order. They are
mutated only by resolution and never deleted.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, event
from sqlalchemy.orm import relationship
from backend.app.core.clock import utcnow
from backend.app.core.exceptions import PreconditionFailedError
from backend.app.db.session import Base
from backend.app.models.enums import db_enum
from backend.app.models.package_enums import IssueType, IssuePriority


class PackageIssue(Base):
    """Issue model. Owned by exactly one package."""
    __tablename__ = "package_issues"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    package_id = Column(Integer, ForeignKey('packages.id'), nullable=False, index=True)

    type = Column(db_enum(IssueType), nullable=False)
    description = Column(String(1000), nullable=False)
    priority = Column(db_enum(IssuePriority), default=IssuePriority.MEDIUM, nullable=False)

    reported_by = Column(Integer, nullable=True)  # None for system reports
    reported_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Resolution
    resolved = Column(Boolean, default=False, nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by = Column(Integer, nullable=True)
    resolution = Column(String(1000), nullable=True)

    package = relationship("Package", back_populates="issues")

    def __repr__(self):
        return f"<PackageIssue(id={self.id}, package_id={self.package_id}, type='{self.type.value}', resolved={self.resolved})>"


@event.listens_for(PackageIssue, "before_delete")
def _reject_issue_delete(mapper, connection, target):
    raise PreconditionFailedError(
        "Package issues are kept for audit and cannot be deleted",
        error_code="ERR_IMMUTABLE_RECORD"
    )
