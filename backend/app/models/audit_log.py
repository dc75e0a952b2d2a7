"""
Audit Log Database Model.

Records every accepted state-changing operation of the delivery core
(who did what to which package, route or branch) for compliance review.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from backend.app.core.clock import utcnow
from backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for tracking delivery operations.

    Events logged:
    - PACKAGE_CREATED / PACKAGE_STATUS_CHANGED / PACKAGE_CANCELLED / PACKAGE_REACTIVATED
    - PACKAGE_ISSUE_REPORTED / PACKAGE_ISSUE_RESOLVED
    - ROUTE_STARTED / STOP_COMPLETED / STOP_FAILED / ROUTE_COMPLETED ...
    - BRANCH_CAPACITY_CHANGED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Which entity the action targeted
    entity_type = Column(String(50), nullable=True, index=True)
    entity_id = Column(Integer, nullable=True, index=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    ip_address = Column(String(50), nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity_type}:{self.entity_id})>"
