from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, Numeric, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from infrapulse.core.database import Base

class ServerStatus(str, enum.Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    MAINTENANCE = "maintenance"
    DEGRADED = "degraded"

def _enum_values(enum_cls):
    return [member.value for member in enum_cls]

class Server(Base):
    __tablename__ = "servers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    hostname = Column(String(255), nullable=False, unique=True, index=True)
    ip_address = Column(String(45), nullable=False)

    status = Column(
        Enum(ServerStatus, name="server_status", values_callable=_enum_values),
        default=ServerStatus.ONLINE,
        nullable=False,
        index=True,
    )

    # capacity, informational only
    os = Column(String(50), nullable=True)
    cpu_cores = Column(Integer, nullable=True)
    memory_gb = Column(Integer, nullable=True)
    storage_gb = Column(Integer, nullable=True)
    location = Column(String(100), nullable=True)
    department = Column(String(100), nullable=True)

    # written by the health sampler
    last_checked = Column(DateTime(timezone=True), nullable=True)

    # written by restart requests
    last_restart = Column(DateTime(timezone=True), nullable=True)
    restart_requested_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now(), nullable=False)

    containers = relationship("Container", back_populates="server")

    def __repr__(self):
        return f"<Server {self.id}: {self.hostname} ({self.status})>"

class Container(Base):
    __tablename__ = "containers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    container_id = Column(String(64), unique=True, nullable=True)
    image = Column(String(255), nullable=False)
    status = Column(String(50), nullable=True)  # running, exited, paused...
    server_id = Column(Integer, ForeignKey("servers.id"), nullable=True, index=True)

    cpu_limit = Column(Numeric(5, 2), nullable=True)
    memory_limit_mb = Column(Integer, nullable=True)
    port_mappings = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now(), nullable=False)

    server = relationship("Server", back_populates="containers")
