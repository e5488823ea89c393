from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import relationship

from infrapulse.core.database import Base, as_utc, utc_now

class MaintenanceWindow(Base):
    """
    Planned maintenance of one server.

    While a window is active (started, not yet over, not cancelled) the
    health sampler moves the server into ``maintenance`` and stops probing
    it. Once no window covers the server any more, the next pass samples it
    again and sets its status from the probe.
    """
    __tablename__ = "maintenance_windows"
    __table_args__ = (
        CheckConstraint("ends_at > starts_at", name="ck_maintenance_windows_range"),
        Index("idx_maintenance_windows_server_range", "server_id", "starts_at", "ends_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    server_id = Column(Integer, ForeignKey("servers.id"), nullable=False)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=False)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    server = relationship("Server")

    @property
    def state(self) -> str:
        if self.cancelled_at is not None:
            return "cancelled"
        now = utc_now()
        if now < as_utc(self.starts_at):
            return "scheduled"
        if now < as_utc(self.ends_at):
            return "active"
        return "completed"

    def __repr__(self):
        return f"<MaintenanceWindow {self.id}: server={self.server_id} {self.starts_at} -> {self.ends_at}>"
