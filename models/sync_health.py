from sqlalchemy import Column, BigInteger, String, DateTime, Float, Integer, Text, Index
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime, timezone
from models.base import Base, SyncStatus


class SyncHealth(Base):
    """
    Audit record for each catalog import run.

    Purpose:
    - Audit trail of all import runs, successful or not
    - Performance monitoring (duration, bytes, peak memory)
    - Error tracking: every recorded error lands in `error_details`

    The row is written outside the data transaction so it survives a
    rolled-back import.
    """
    __tablename__ = "sync_health"

    id = Column(BigInteger, primary_key=True, autoincrement=True)

    # Run identification
    sync_type = Column(String(50), nullable=False, index=True)
    source = Column(Text, nullable=True)

    status = Column(String(50), nullable=False, default=SyncStatus.RUNNING.value, index=True)

    # Timestamps
    start_time = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    end_time = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Statistics
    bytes_processed = Column(BigInteger, nullable=True)
    items_processed = Column(JSONB, nullable=True)

    # Error tracking
    error_count = Column(Integer, nullable=False, default=0)
    error_details = Column(JSONB, nullable=True)
    error_message = Column(Text, nullable=True)

    memory_usage_mb = Column(Float, nullable=True)

    __table_args__ = (
        Index("idx_sync_health_type_start", "sync_type", "start_time"),
        Index("idx_sync_health_status", "status", "start_time"),
    )
