from fastapi import APIRouter, Depends, Request

from infrapulse.api.v1.endpoints.auth import get_client_ip, get_user_agent
from infrapulse.core.database import get_async_db
from infrapulse.models.audit_log import AuditAction, AuditResourceType
from infrapulse.models.user import UserRole
from infrapulse.schemas.auth import Actor
from infrapulse.services.audit_log import AuditLogService
from infrapulse.services.auth import get_current_actor, require_role

router = APIRouter()

@router.get("/status")
async def get_scheduler_status(
    request: Request,
    actor: Actor = Depends(get_current_actor),
):
    """Health sampler state"""
    return request.app.state.sampler.get_status()

@router.post("/health-check")
async def trigger_health_check(
    request: Request,
    db=Depends(get_async_db),
    actor: Actor = Depends(require_role(UserRole.ADMIN)),
):
    """Run one sampling pass now and return its counters"""
    result = await request.app.state.sampler.run_pass()

    await AuditLogService(db).log_action(
        actor,
        AuditAction.HEALTH_CHECK_TRIGGER,
        AuditResourceType.SCHEDULER,
        details=result,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return result
