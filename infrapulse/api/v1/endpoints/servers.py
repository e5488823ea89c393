from typing import List
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from infrapulse.api.v1.endpoints.auth import get_client_ip, get_user_agent
from infrapulse.core.database import get_async_db
from infrapulse.models.audit_log import AuditAction, AuditResourceType
from infrapulse.models.user import UserRole
from infrapulse.schemas.auth import Actor
from infrapulse.schemas.server import (
    MetricSampleCreate,
    MetricSampleResponse,
    RestartRequestResponse,
    ServerCreate,
    ServerResponse,
    ServerWithMetricResponse,
)
from infrapulse.services.audit_log import AuditLogService
from infrapulse.services.auth import get_current_actor, require_role
from infrapulse.services.server import ServerService

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("", response_model=List[ServerWithMetricResponse])
async def list_servers(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_async_db),
    actor: Actor = Depends(get_current_actor),
):
    """Servers with their latest metric sample"""
    rows = await ServerService(db).get_servers_with_latest_metric(skip=skip, limit=limit)
    result = []
    for server, metric in rows:
        item = ServerWithMetricResponse.model_validate(server)
        if metric is not None:
            item.latest_metric = MetricSampleResponse.model_validate(metric)
        result.append(item)
    return result

@router.get("/{server_id}", response_model=ServerResponse)
async def get_server(
    server_id: int,
    db: AsyncSession = Depends(get_async_db),
    actor: Actor = Depends(get_current_actor),
):
    return await ServerService(db).get_server(server_id)

@router.post("", response_model=ServerResponse, status_code=status.HTTP_201_CREATED)
async def create_server(
    server_data: ServerCreate,
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    actor: Actor = Depends(require_role(UserRole.ADMIN)),
):
    """Register a server (admin only)"""
    server = await ServerService(db).create_server(server_data)
    result = ServerResponse.model_validate(server)

    await AuditLogService(db).log_action(
        actor,
        AuditAction.SERVER_CREATE,
        AuditResourceType.SERVER,
        resource_id=server.id,
        resource_name=server.name,
        details={"hostname": server.hostname, "ip_address": server.ip_address},
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return result

@router.post("/{server_id}/restart", response_model=RestartRequestResponse)
async def request_restart(
    server_id: int,
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    actor: Actor = Depends(require_role(UserRole.OPERATOR)),
):
    """Record a restart request; execution is left to external tooling"""
    server = await ServerService(db).request_restart(server_id, actor)
    result = RestartRequestResponse(
        server_id=server.id,
        requested_by=actor.id,
        requested_at=server.last_restart,
        message=f"Restart of {server.name} requested",
    )

    await AuditLogService(db).log_action(
        actor,
        AuditAction.SERVER_RESTART_REQUEST,
        AuditResourceType.SERVER,
        resource_id=server.id,
        resource_name=server.name,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return result

@router.post("/{server_id}/metrics", response_model=MetricSampleResponse, status_code=status.HTTP_201_CREATED)
async def ingest_metric(
    server_id: int,
    sample: MetricSampleCreate,
    db: AsyncSession = Depends(get_async_db),
    actor: Actor = Depends(require_role(UserRole.OPERATOR)),
):
    """Store one resource sample reported by an external collector"""
    metric = await ServerService(db).record_metric(server_id, sample)
    logger.debug(f"Metric sample {metric.id} stored for server {server_id} by {actor.username}")
    return metric
