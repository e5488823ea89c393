from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any
from datetime import datetime

from infrapulse.models.alert import AlertSeverity

class AlertCreate(BaseModel):
    """Alert pushed by an external producer (AlertManager webhook, scripts...)"""
    severity: AlertSeverity = Field(..., description="critical, warning or info")
    source: str = Field(..., min_length=1, max_length=100, description="Producer name, part of the dedup key")
    message: str = Field(..., min_length=1, max_length=2000)
    server_id: Optional[int] = Field(None, description="Affected server")
    container_id: Optional[int] = Field(None, description="Affected container")
    details: Optional[Dict[str, Any]] = None

class AlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    severity: AlertSeverity
    source: str
    message: str
    server_id: Optional[int] = None
    container_id: Optional[int] = None
    details: Optional[Dict[str, Any]] = None
    state: str
    acknowledged: bool
    acknowledged_by: Optional[int] = None
    acknowledged_at: Optional[datetime] = None
    resolved: bool
    resolved_by: Optional[int] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

class AlertRaiseResponse(BaseModel):
    created: bool = Field(description="False when an open alert with the same key was updated instead")
    alert: AlertResponse

class AlertCounts(BaseModel):
    critical: int = 0
    warning: int = 0
    info: int = 0
    total: int = 0
