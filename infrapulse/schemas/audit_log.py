from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional, Dict, Any

from infrapulse.models.audit_log import AuditAction, AuditStatus

class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: AuditAction
    status: AuditStatus
    operator_id: Optional[int] = None
    operator_username: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[int] = None
    resource_name: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime

class AuditLogListResponse(BaseModel):
    items: list[AuditLogResponse]
    total: int
    skip: int
    limit: int
