from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Dict, Any
from datetime import datetime
import ipaddress
import re

from infrapulse.models.server import ServerStatus

class ServerBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Display name")
    hostname: str = Field(..., min_length=1, max_length=255, description="Unique host name")
    ip_address: str = Field(..., description="IPv4/IPv6 address probed by the health sampler")
    os: Optional[str] = Field(None, max_length=50)
    cpu_cores: Optional[int] = Field(None, ge=0)
    memory_gb: Optional[int] = Field(None, ge=0)
    storage_gb: Optional[int] = Field(None, ge=0)
    location: Optional[str] = Field(None, max_length=100)
    department: Optional[str] = Field(None, max_length=100)

    @field_validator("hostname")
    @classmethod
    def validate_hostname(cls, v):
        if not re.match(r"^[a-zA-Z0-9][a-zA-Z0-9.-]*$", v):
            raise ValueError("hostname may only contain letters, digits, dots and dashes")
        return v

    @field_validator("ip_address")
    @classmethod
    def validate_ip_address(cls, v):
        try:
            ipaddress.ip_address(v)
        except ValueError:
            raise ValueError("invalid IP address")
        return v

class ServerCreate(ServerBase):
    status: ServerStatus = Field(default=ServerStatus.ONLINE, description="Initial status")

class ServerResponse(ServerBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: ServerStatus
    last_checked: Optional[datetime] = None
    last_restart: Optional[datetime] = None
    restart_requested_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime

class MetricSampleCreate(BaseModel):
    """Sample reported by an external collector"""
    cpu_usage: Optional[float] = Field(None, ge=0, le=100)
    memory_usage: Optional[float] = Field(None, ge=0, le=100)
    disk_usage: Optional[float] = Field(None, ge=0, le=100)
    network_in_bytes: Optional[int] = Field(None, ge=0)
    network_out_bytes: Optional[int] = Field(None, ge=0)
    disk_read_bytes: Optional[int] = Field(None, ge=0)
    disk_write_bytes: Optional[int] = Field(None, ge=0)
    uptime_seconds: Optional[int] = Field(None, ge=0)
    process_count: Optional[int] = Field(None, ge=0)
    load_avg_1m: Optional[float] = Field(None, ge=0)
    load_avg_5m: Optional[float] = Field(None, ge=0)
    load_avg_15m: Optional[float] = Field(None, ge=0)
    timestamp: Optional[datetime] = None

class MetricSampleResponse(MetricSampleCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int
    server_id: int
    timestamp: datetime

class ServerWithMetricResponse(ServerResponse):
    latest_metric: Optional[MetricSampleResponse] = None

class RestartRequestResponse(BaseModel):
    server_id: int
    status: str = "requested"
    requested_by: int
    requested_at: datetime
    message: str

class ContainerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    container_id: Optional[str] = None
    image: str
    status: Optional[str] = None
    server_id: Optional[int] = None
    memory_limit_mb: Optional[int] = None
    port_mappings: Optional[Any] = None
    created_at: datetime
