from sqlalchemy import Column, Integer, Float, BigInteger, DateTime, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import relationship

from infrapulse.core.database import Base, utc_now

class ServerMetric(Base):
    """Append-only resource sample. Rows are never updated."""
    __tablename__ = "server_metrics"
    __table_args__ = (
        CheckConstraint("cpu_usage >= 0 AND cpu_usage <= 100", name="ck_server_metrics_cpu_usage"),
        CheckConstraint("memory_usage >= 0 AND memory_usage <= 100", name="ck_server_metrics_memory_usage"),
        CheckConstraint("disk_usage >= 0 AND disk_usage <= 100", name="ck_server_metrics_disk_usage"),
        Index("ix_server_metrics_server_timestamp", "server_id", "timestamp"),
    )

    id = Column(Integer, primary_key=True, index=True)
    server_id = Column(Integer, ForeignKey("servers.id"), nullable=False, index=True)

    # percentages, 0-100
    cpu_usage = Column(Float, nullable=True)
    memory_usage = Column(Float, nullable=True)
    disk_usage = Column(Float, nullable=True)

    # counters
    network_in_bytes = Column(BigInteger, nullable=True)
    network_out_bytes = Column(BigInteger, nullable=True)
    disk_read_bytes = Column(BigInteger, nullable=True)
    disk_write_bytes = Column(BigInteger, nullable=True)
    uptime_seconds = Column(BigInteger, nullable=True)
    process_count = Column(Integer, nullable=True)

    load_avg_1m = Column(Float, nullable=True)
    load_avg_5m = Column(Float, nullable=True)
    load_avg_15m = Column(Float, nullable=True)

    timestamp = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)

    server = relationship("Server")
