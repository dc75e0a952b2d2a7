"""
Branch Pydantic schemas.
"""

from datetime import datetime
from typing import Optional
from pydantic import Field
from backend.app.models.branch_enums import BranchStatus
from backend.app.schemas.common import ApiModel


class CapacityLimitUpdate(ApiModel):
    """Schema for changing a branch capacity limit. None removes the limit."""
    capacity_limit: Optional[int] = Field(None, ge=1, le=100000)


class BranchResponse(ApiModel):
    """Schema for branch load response."""
    id: int
    company_id: int
    name: str
    code: str
    status: BranchStatus
    capacity_limit: Optional[int]
    current_load: int
    updated_at: datetime

    # Derived; available_capacity is None when the branch has no limit
    is_full: bool = False
    available_capacity: Optional[int] = None
    can_accept_packages: bool = False

    @classmethod
    def from_branch(cls, branch) -> "BranchResponse":
        from backend.app.domain.branches import derived

        available = derived.available_capacity(branch)
        return cls.model_validate(branch).model_copy(update={
            "is_full": derived.is_full(branch),
            "available_capacity": None if available == float("inf") else int(available),
            "can_accept_packages": derived.can_accept_packages(branch),
        })
