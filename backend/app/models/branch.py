"""
Branch database model.

Branches are external reference records (created and edited by the company
management service). The delivery core reads their status and owns only the
load counter that gates package admission.
"""

from sqlalchemy import Column, Integer, String, DateTime, CheckConstraint
from backend.app.core.clock import utcnow
from backend.app.db.session import Base
from backend.app.models.enums import db_enum
from backend.app.models.branch_enums import BranchStatus


class Branch(Base):
    """
    Branch model.

    ``current_load`` counts packages admitted into the branch pipeline and is
    only ever changed through conditional UPDATE statements issued by the
    capacity ledger.
    """
    __tablename__ = "branches"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Ownership - Branch belongs to a company (external record)
    company_id = Column(Integer, nullable=False, index=True)

    # Branch details
    name = Column(String(100), nullable=False)
    code = Column(String(20), unique=True, nullable=False, index=True)

    # Status
    status = Column(db_enum(BranchStatus), default=BranchStatus.ACTIVE, nullable=False, index=True)

    # Capacity ledger
    capacity_limit = Column(Integer, nullable=True)
    current_load = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("current_load >= 0", name="ck_branches_load_non_negative"),
        CheckConstraint(
            "capacity_limit IS NULL OR current_load <= capacity_limit",
            name="ck_branches_load_within_capacity"
        ),
    )

    def __repr__(self):
        return f"<Branch(id={self.id}, code='{self.code}', load={self.current_load}/{self.capacity_limit})>"
