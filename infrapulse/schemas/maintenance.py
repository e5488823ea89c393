from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional
from datetime import datetime

from infrapulse.core.database import as_utc

class MaintenanceWindowCreate(BaseModel):
    server_id: int
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    starts_at: Optional[datetime] = Field(None, description="Defaults to now; naive times are UTC")
    ends_at: datetime = Field(..., description="Naive times are UTC")

    @field_validator("starts_at", "ends_at")
    @classmethod
    def normalize_to_utc(cls, v):
        return as_utc(v)

    @model_validator(mode="after")
    def check_range(self):
        if self.starts_at is not None and self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        return self

class MaintenanceWindowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    server_id: int
    title: str
    description: Optional[str] = None
    starts_at: datetime
    ends_at: datetime
    state: str = Field(description="scheduled, active, completed or cancelled")
    created_by: Optional[int] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[int] = None
    created_at: datetime
