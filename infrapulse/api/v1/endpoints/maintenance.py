from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from infrapulse.api.v1.endpoints.auth import get_client_ip, get_user_agent
from infrapulse.core.database import get_async_db
from infrapulse.models.audit_log import AuditAction, AuditResourceType
from infrapulse.models.user import UserRole
from infrapulse.schemas.auth import Actor
from infrapulse.schemas.maintenance import MaintenanceWindowCreate, MaintenanceWindowResponse
from infrapulse.services.audit_log import AuditLogService
from infrapulse.services.auth import get_current_actor, require_role
from infrapulse.services.maintenance import MaintenanceService

router = APIRouter()

@router.get("", response_model=List[MaintenanceWindowResponse])
async def list_maintenance_windows(
    server_id: Optional[int] = Query(None),
    active_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_async_db),
    actor: Actor = Depends(get_current_actor),
):
    return await MaintenanceService(db).list_windows(server_id=server_id, active_only=active_only, limit=limit)

@router.get("/{window_id}", response_model=MaintenanceWindowResponse)
async def get_maintenance_window(
    window_id: int,
    db: AsyncSession = Depends(get_async_db),
    actor: Actor = Depends(get_current_actor),
):
    return await MaintenanceService(db).get_window(window_id)

@router.post("", response_model=MaintenanceWindowResponse, status_code=status.HTTP_201_CREATED)
async def create_maintenance_window(
    window_data: MaintenanceWindowCreate,
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    actor: Actor = Depends(require_role(UserRole.OPERATOR)),
):
    """
    Schedule maintenance for a server.

    The health sampler puts the server into maintenance on its first pass
    inside the window and samples it again once the window is over.
    """
    window = await MaintenanceService(db).create_window(window_data, actor)
    result = MaintenanceWindowResponse.model_validate(window)

    await AuditLogService(db).log_action(
        actor,
        AuditAction.MAINTENANCE_CREATE,
        AuditResourceType.MAINTENANCE_WINDOW,
        resource_id=window.id,
        resource_name=window.title,
        details={
            "server_id": window.server_id,
            "starts_at": result.starts_at.isoformat(),
            "ends_at": result.ends_at.isoformat(),
        },
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return result

@router.post("/{window_id}/cancel", response_model=MaintenanceWindowResponse)
async def cancel_maintenance_window(
    window_id: int,
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    actor: Actor = Depends(require_role(UserRole.OPERATOR)),
):
    """Cancel a window; cancelling twice is a no-op"""
    window, changed = await MaintenanceService(db).cancel_window(window_id, actor)
    result = MaintenanceWindowResponse.model_validate(window)

    if changed:
        await AuditLogService(db).log_action(
            actor,
            AuditAction.MAINTENANCE_CANCEL,
            AuditResourceType.MAINTENANCE_WINDOW,
            resource_id=window.id,
            resource_name=window.title,
            details={"server_id": window.server_id},
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request),
        )
    return result
