from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey, Enum, JSON, CheckConstraint, Index, text
from sqlalchemy.orm import relationship
import enum

from infrapulse.core.database import Base, utc_now

class AlertSeverity(str, enum.Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

class Alert(Base):
    __tablename__ = "alerts"
    __table_args__ = (
        # the flag and its timestamp always move together
        CheckConstraint("acknowledged = (acknowledged_at IS NOT NULL)", name="ck_alerts_acknowledged_at"),
        CheckConstraint("resolved = (resolved_at IS NOT NULL)", name="ck_alerts_resolved_at"),
        # at most one open alert per dedup key
        Index(
            "uq_alerts_open_dedup_key",
            "server_id",
            "source",
            "severity",
            unique=True,
            sqlite_where=text("acknowledged = 0 AND resolved = 0"),
            postgresql_where=text("NOT acknowledged AND NOT resolved"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    server_id = Column(Integer, ForeignKey("servers.id"), nullable=True, index=True)
    container_id = Column(Integer, ForeignKey("containers.id"), nullable=True)

    severity = Column(
        Enum(AlertSeverity, name="alert_severity", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        index=True,
    )
    source = Column(String(100), nullable=False, default="api")
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)

    acknowledged = Column(Boolean, default=False, nullable=False, index=True)
    acknowledged_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)

    resolved = Column(Boolean, default=False, nullable=False)
    resolved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    server = relationship("Server")

    @property
    def state(self) -> str:
        if self.resolved:
            return "resolved"
        if self.acknowledged:
            return "acknowledged"
        return "open"

    def __repr__(self):
        return f"<Alert {self.id}: {self.severity} {self.source} server={self.server_id} state={self.state}>"
