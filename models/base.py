from sqlalchemy import Column, DateTime, func
from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()


# ============================================================================
# ENUMS
# ============================================================================

class SyncType(str, enum.Enum):
    """How an import run was started"""
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class SyncStatus(str, enum.Enum):
    """Import run status"""
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


class TimestampMixin:
    """created_at/updated_at columns shared by all catalog tables"""
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
