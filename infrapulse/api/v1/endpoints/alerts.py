from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from infrapulse.api.v1.endpoints.auth import get_client_ip, get_user_agent
from infrapulse.core.database import get_async_db
from infrapulse.models.audit_log import AuditAction, AuditResourceType
from infrapulse.models.user import UserRole
from infrapulse.schemas.alert import AlertCreate, AlertRaiseResponse, AlertResponse
from infrapulse.schemas.auth import Actor
from infrapulse.services.alert_engine import AlertService
from infrapulse.services.audit_log import AuditLogService
from infrapulse.services.auth import get_current_actor, require_role

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("", response_model=List[AlertResponse])
async def list_alerts(
    severity: Optional[str] = Query(None, description="critical, warning or info"),
    limit: int = Query(50, description="Clamped to 1..500"),
    include_acknowledged: bool = Query(False),
    server_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_async_db),
    actor: Actor = Depends(get_current_actor),
):
    """Alerts, newest first"""
    alerts = await AlertService(db).list_alerts(
        severity=severity,
        limit=limit,
        include_acknowledged=include_acknowledged,
        server_id=server_id,
    )
    return alerts

@router.get("/{alert_id}", response_model=AlertResponse)
async def get_alert(
    alert_id: int,
    db: AsyncSession = Depends(get_async_db),
    actor: Actor = Depends(get_current_actor),
):
    return await AlertService(db).get_alert(alert_id)

@router.post("", response_model=AlertRaiseResponse, status_code=status.HTTP_201_CREATED)
async def create_alert(
    alert_data: AlertCreate,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_async_db),
    actor: Actor = Depends(require_role(UserRole.OPERATOR)),
):
    """
    Raise an alert on behalf of an external producer.

    An open alert with the same (server, source, severity) is refreshed
    instead, answered with 200 and ``created: false``.
    """
    alert, created = await AlertService(db).raise_alert(
        alert_data.severity,
        alert_data.source,
        alert_data.message,
        server_id=alert_data.server_id,
        container_id=alert_data.container_id,
        details=alert_data.details,
    )
    result = AlertRaiseResponse(created=created, alert=AlertResponse.model_validate(alert))

    if created:
        await AuditLogService(db).log_action(
            actor,
            AuditAction.ALERT_CREATE,
            AuditResourceType.ALERT,
            resource_id=alert.id,
            details={"severity": alert_data.severity.value, "source": alert_data.source},
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request),
        )
    else:
        response.status_code = status.HTTP_200_OK
    return result

@router.post("/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(
    alert_id: int,
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    actor: Actor = Depends(require_role(UserRole.OPERATOR)),
):
    """Acknowledge an alert. Acknowledging twice is a no-op."""
    alert, changed = await AlertService(db).acknowledge(alert_id, actor.id)
    result = AlertResponse.model_validate(alert)

    if changed:
        await AuditLogService(db).log_action(
            actor,
            AuditAction.ALERT_ACKNOWLEDGE,
            AuditResourceType.ALERT,
            resource_id=alert_id,
            details={"severity": result.severity.value, "source": result.source},
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request),
        )
    return result

@router.post("/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: int,
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    actor: Actor = Depends(require_role(UserRole.OPERATOR)),
):
    """Resolve an alert, acknowledging it on the way if needed"""
    alert, changed = await AlertService(db).resolve(alert_id, actor.id)
    result = AlertResponse.model_validate(alert)

    if changed:
        await AuditLogService(db).log_action(
            actor,
            AuditAction.ALERT_RESOLVE,
            AuditResourceType.ALERT,
            resource_id=alert_id,
            details={"severity": result.severity.value, "source": result.source},
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request),
        )
    return result
