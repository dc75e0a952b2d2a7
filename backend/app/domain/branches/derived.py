"""
Read-time views over a branch's persisted load fields.
"""

import math
from backend.app.models.branch import Branch
from backend.app.models.branch_enums import BranchStatus


def is_full(branch: Branch) -> bool:
    if not branch.capacity_limit:
        return False
    return branch.current_load >= branch.capacity_limit


def available_capacity(branch: Branch) -> float:
    """Remaining admissions; infinite when the branch has no limit."""
    if not branch.capacity_limit:
        return math.inf
    return max(0, branch.capacity_limit - branch.current_load)


def can_accept_packages(branch: Branch, count: int = 1) -> bool:
    if branch.status != BranchStatus.ACTIVE:
        return False
    return available_capacity(branch) >= count
