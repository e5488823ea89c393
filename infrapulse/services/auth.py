import asyncio
from datetime import datetime, timezone
from typing import Optional
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from infrapulse.core import security
from infrapulse.core.config import Settings
from infrapulse.core.exceptions import AuthError, ForbiddenError
from infrapulse.models.user import User, UserRole
from infrapulse.schemas.auth import Actor
from infrapulse.services.user import UserService

bearer_scheme = HTTPBearer(auto_error=False)

class AuthService:
    def __init__(self, db: AsyncSession, settings: Settings):
        self.db = db
        self.settings = settings
        self.user_service = UserService(db)

    async def authenticate_user(self, username: str, password: str) -> Optional[User]:
        user = await self.user_service.get_user_by_username(username)
        if not user:
            return None

        loop = asyncio.get_running_loop()
        is_valid = await loop.run_in_executor(None, security.verify_password, password, user.password_hash)

        if not is_valid:
            return None
        if not user.is_active:
            return None

        user.last_login_at = datetime.now(timezone.utc)
        await self.db.commit()

        return user

    def create_access_token(self, user: User) -> str:
        return security.create_access_token(
            self.settings,
            user_id=user.id,
            username=user.username,
            role=UserRole(user.role).value,
        )

def actor_from_token(settings: Settings, token: str) -> Actor:
    """Decode a bearer token into the acting user. The store is not consulted."""
    try:
        payload = security.decode_access_token(settings, token)
        return Actor(
            id=int(payload["sub"]),
            username=str(payload.get("username") or payload["sub"]),
            role=UserRole(payload["role"]),
        )
    except (JWTError, KeyError, TypeError, ValueError):
        raise AuthError("Invalid token")

def get_settings(request: Request) -> Settings:
    return request.app.state.settings

async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> Actor:
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise AuthError("Authentication required")
    return actor_from_token(settings, credentials.credentials)

def require_role(minimum: UserRole):
    """Dependency factory: the caller's role must be at least ``minimum``"""
    async def _checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not actor.role.allows(minimum):
            raise ForbiddenError(f"Role '{actor.role.value}' may not perform this action, '{minimum.value}' required")
        return actor
    return _checker
