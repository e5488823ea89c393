from sqlalchemy import Column, Integer, String, DateTime, Text, Enum, JSON
import enum

from infrapulse.core.database import Base, utc_now

class AuditAction(str, enum.Enum):
    """Audited operations"""
    # authentication
    LOGIN = "login"
    LOGIN_FAILED = "login_failed"

    # users
    USER_CREATE = "user_create"

    # servers
    SERVER_CREATE = "server_create"
    SERVER_RESTART_REQUEST = "server_restart_request"

    # alerts
    ALERT_CREATE = "alert_create"
    ALERT_ACKNOWLEDGE = "alert_acknowledge"
    ALERT_RESOLVE = "alert_resolve"

    # maintenance
    MAINTENANCE_CREATE = "maintenance_create"
    MAINTENANCE_CANCEL = "maintenance_cancel"

    # scheduler
    HEALTH_CHECK_TRIGGER = "health_check_trigger"

class AuditResourceType(str, enum.Enum):
    USER = "user"
    SERVER = "server"
    ALERT = "alert"
    MAINTENANCE_WINDOW = "maintenance_window"
    SCHEDULER = "scheduler"

class AuditStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"

def _enum_values(enum_cls):
    return [member.value for member in enum_cls]

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    action = Column(Enum(AuditAction, name="audit_action", values_callable=_enum_values), nullable=False, index=True)
    status = Column(
        Enum(AuditStatus, name="audit_status", values_callable=_enum_values),
        default=AuditStatus.SUCCESS,
        nullable=False,
    )

    # operator; empty for system actions
    operator_id = Column(Integer, nullable=True, index=True)
    operator_username = Column(String(50), nullable=True)  # kept even if the user is removed later

    resource_type = Column(String(50), nullable=True, index=True)
    resource_id = Column(Integer, nullable=True, index=True)
    resource_name = Column(String(255), nullable=True)

    details = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} by {self.operator_username} at {self.created_at}>"
