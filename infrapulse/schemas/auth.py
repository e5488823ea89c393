from pydantic import BaseModel
from infrapulse.models.user import UserRole
from infrapulse.schemas.user import UserResponse

class Token(BaseModel):
    access_token: str
    token_type: str
    user: UserResponse

class Actor(BaseModel):
    """Caller identity carried by the bearer token"""
    id: int
    username: str
    role: UserRole
