from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from infrapulse.api.v1.endpoints.auth import get_client_ip, get_user_agent
from infrapulse.core.database import get_async_db
from infrapulse.models.audit_log import AuditAction, AuditResourceType
from infrapulse.models.user import UserRole
from infrapulse.schemas.auth import Actor
from infrapulse.schemas.user import UserCreate, UserResponse
from infrapulse.services.audit_log import AuditLogService
from infrapulse.services.auth import require_role
from infrapulse.services.user import UserService

router = APIRouter()

@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    actor: Actor = Depends(require_role(UserRole.ADMIN)),
):
    """Create a user (admin only)"""
    user = await UserService(db).create_user(user_data)
    response = UserResponse.model_validate(user)

    await AuditLogService(db).log_action(
        actor,
        AuditAction.USER_CREATE,
        AuditResourceType.USER,
        resource_id=user.id,
        resource_name=user.username,
        details={"role": response.role.value},
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return response
