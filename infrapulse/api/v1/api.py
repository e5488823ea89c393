from fastapi import APIRouter

from infrapulse.api.v1.endpoints import (
    alerts,
    audit_logs,
    auth,
    containers,
    dashboard,
    maintenance,
    scheduler,
    servers,
    users,
)

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["authentication"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(dashboard.router, prefix="/dashboard", tags=["dashboard"])
api_router.include_router(alerts.router, prefix="/alerts", tags=["alerts"])
api_router.include_router(servers.router, prefix="/servers", tags=["servers"])
api_router.include_router(containers.router, prefix="/containers", tags=["containers"])
api_router.include_router(maintenance.router, prefix="/maintenance-windows", tags=["maintenance"])
api_router.include_router(audit_logs.router, prefix="/audit-logs", tags=["audit_logs"])
api_router.include_router(scheduler.router, prefix="/scheduler", tags=["scheduler"])
