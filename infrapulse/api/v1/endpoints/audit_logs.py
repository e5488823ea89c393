from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from infrapulse.core.database import get_async_db
from infrapulse.models.audit_log import AuditAction
from infrapulse.models.user import UserRole
from infrapulse.schemas.audit_log import AuditLogListResponse, AuditLogResponse
from infrapulse.schemas.auth import Actor
from infrapulse.services.audit_log import AuditLogService
from infrapulse.services.auth import require_role

router = APIRouter()
logger = logging.getLogger(__name__)

@router.get("", response_model=AuditLogListResponse)
async def get_audit_logs(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    action: Optional[AuditAction] = Query(None),
    operator_id: Optional[int] = Query(None),
    resource_type: Optional[str] = Query(None),
    resource_id: Optional[int] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    db: AsyncSession = Depends(get_async_db),
    actor: Actor = Depends(require_role(UserRole.ADMIN)),
):
    """
    Query the audit trail.

    Admin only. Entries are returned newest first.
    """
    logs, total = await AuditLogService(db).get_logs(
        skip=skip,
        limit=limit,
        action=action,
        operator_id=operator_id,
        resource_type=resource_type,
        resource_id=resource_id,
        start_date=start_date,
        end_date=end_date,
    )
    logger.debug(f"Audit log query by {actor.username}: {len(logs)}/{total} entries")
    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(log) for log in logs],
        total=total,
        skip=skip,
        limit=limit,
    )
