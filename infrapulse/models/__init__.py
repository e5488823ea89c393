from infrapulse.core.database import Base

# import every model so SQLAlchemy registers its table
from infrapulse.models.user import User, UserRole
from infrapulse.models.server import Server, ServerStatus, Container
from infrapulse.models.monitoring import ServerMetric
from infrapulse.models.alert import Alert, AlertSeverity
from infrapulse.models.maintenance import MaintenanceWindow
from infrapulse.models.audit_log import AuditLog, AuditAction, AuditResourceType, AuditStatus

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Server",
    "ServerStatus",
    "Container",
    "ServerMetric",
    "Alert",
    "AlertSeverity",
    "MaintenanceWindow",
    "AuditLog",
    "AuditAction",
    "AuditResourceType",
    "AuditStatus",
]
