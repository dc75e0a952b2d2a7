"""
Branch-related enumerations.
"""

import enum


class BranchStatus(str, enum.Enum):
    """Branch status enumeration. Only ACTIVE branches admit packages."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"
    PENDING = "pending"
