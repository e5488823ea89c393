from fastapi import APIRouter, Depends, Request
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from infrapulse.core.config import Settings
from infrapulse.core.database import get_async_db
from infrapulse.core.exceptions import AuthError
from infrapulse.schemas.auth import Actor, Token
from infrapulse.schemas.user import UserResponse
from infrapulse.services.auth import AuthService, get_current_actor, get_settings
from infrapulse.services.audit_log import AuditLogService
from infrapulse.services.user import UserService

logger = logging.getLogger(__name__)

router = APIRouter()

def get_client_ip(request: Request) -> str:
    """Client address, honouring reverse proxy headers"""
    if "x-forwarded-for" in request.headers:
        return request.headers["x-forwarded-for"].split(",")[0].strip()
    if "x-real-ip" in request.headers:
        return request.headers["x-real-ip"]
    return request.client.host if request.client else "unknown"

def get_user_agent(request: Request) -> str:
    return request.headers.get("user-agent", "unknown")

@router.post("/login", response_model=Token)
async def login(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_async_db),
    settings: Settings = Depends(get_settings),
):
    """User login"""
    auth_service = AuthService(db, settings)
    audit_service = AuditLogService(db)

    client_ip = get_client_ip(request)
    user_agent = get_user_agent(request)

    user = await auth_service.authenticate_user(form_data.username, form_data.password)
    if not user:
        await audit_service.log_login(
            username=form_data.username,
            ip_address=client_ip,
            user_agent=user_agent,
            success=False,
        )
        logger.warning(f"Failed login for '{form_data.username}' from {client_ip}")
        raise AuthError("Incorrect username or password")

    user_data = UserResponse.model_validate(user)
    access_token = auth_service.create_access_token(user)

    await audit_service.log_login(
        username=user.username,
        user_id=user.id,
        ip_address=client_ip,
        user_agent=user_agent,
        success=True,
    )

    return {
        "access_token": access_token,
        "token_type": "bearer",
        "user": user_data,
    }

@router.get("/me", response_model=UserResponse)
async def read_users_me(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_async_db),
):
    """Current user"""
    user = await UserService(db).get_user(actor.id)
    if user is None or not user.is_active:
        raise AuthError("User no longer exists or is disabled")
    return user
