"""
Audit trail schemas.
"""

from datetime import datetime
from typing import List, Optional

from backend.app.schemas.common import ApiModel


class AuditLogResponse(ApiModel):
    """Schema for audit log entry."""
    id: int
    actor_id: Optional[int]
    actor_username: Optional[str]
    action: str
    entity_type: Optional[str]
    entity_id: Optional[int]
    meta_data: Optional[dict]
    ip_address: Optional[str]
    timestamp: datetime


class AuditTrailResponse(ApiModel):
    """Schema for audit trail list."""
    logs: List[AuditLogResponse]
    total: int
