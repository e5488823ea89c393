from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional
from datetime import datetime
from infrapulse.models.user import UserRole
import re

class UserBase(BaseModel):
    username: str = Field(..., min_length=3, max_length=50, description="3-50 characters")
    email: str = Field(..., description="Email address")
    role: UserRole = Field(default=UserRole.VIEWER, description="admin, operator or viewer")
    full_name: Optional[str] = Field(None, max_length=100)
    is_active: bool = Field(default=True)

    @field_validator('username')
    @classmethod
    def validate_username(cls, v):
        if not re.match(r'^[a-zA-Z0-9_-]+$', v):
            raise ValueError('username may only contain letters, digits, underscores and dashes')
        return v

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not re.match(email_pattern, v):
            raise ValueError('invalid email address')
        return v

class UserCreate(UserBase):
    password: str = Field(..., min_length=6, max_length=72, description="At least 6 characters")

class UserResponse(UserBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    last_login_at: Optional[datetime] = None
    created_at: datetime
