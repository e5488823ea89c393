from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from infrapulse.schemas.alert import AlertCounts

class ServerCounts(BaseModel):
    total: int = 0
    online: int = 0
    offline: int = 0
    degraded: int = 0
    maintenance: int = 0

class ContainerCounts(BaseModel):
    total: int = 0
    running: int = 0

class ResourceAverages(BaseModel):
    window_minutes: int
    sample_count: int = 0
    avg_cpu_usage: Optional[float] = None
    avg_memory_usage: Optional[float] = None
    avg_disk_usage: Optional[float] = None

class DashboardSummary(BaseModel):
    """Derived view, recomputable at any time from servers, metrics and alerts"""
    servers: ServerCounts
    containers: ContainerCounts
    alerts: AlertCounts = Field(description="Unacknowledged alerts by severity")
    resources: ResourceAverages
    generated_at: datetime
    cached: bool = Field(default=False, description="True when served from the cache")
