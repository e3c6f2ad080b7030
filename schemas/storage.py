"""
Pydantic schemas for storage guard reports
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict

from pydantic import BaseModel, Field


class StorageStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


class StorageThresholds(BaseModel):
    """Limits the guard compares the database size against"""

    limit_bytes: int = Field(536870912, gt=0)
    warning_percent: float = Field(80.0, gt=0, le=100)
    critical_percent: float = Field(95.0, gt=0, le=100)
    auto_cleanup: bool = False
    backup_before_cleanup: bool = True
    keep_product_count: int = Field(100, ge=0)
    backup_dir: str = "backups"

    @classmethod
    def from_settings(cls, cfg) -> "StorageThresholds":
        return cls(
            limit_bytes=cfg.STORAGE_LIMIT_BYTES,
            warning_percent=cfg.STORAGE_WARNING_PERCENT,
            critical_percent=cfg.STORAGE_CRITICAL_PERCENT,
            auto_cleanup=cfg.STORAGE_AUTO_CLEANUP,
            backup_before_cleanup=cfg.STORAGE_BACKUP_BEFORE_CLEANUP,
            keep_product_count=cfg.STORAGE_KEEP_PRODUCT_COUNT,
            backup_dir=cfg.BACKUP_DIR,
        )


class TableSize(BaseModel):
    table_name: str
    total_bytes: int
    row_estimate: Optional[int] = None


class StorageInfo(BaseModel):
    database_size_bytes: Optional[int] = None
    limit_bytes: int
    percent_of_limit: Optional[float] = None
    status: StorageStatus
    largest_tables: List[TableSize] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None

    @property
    def size_mb(self) -> Optional[float]:
        if self.database_size_bytes is None:
            return None
        return round(self.database_size_bytes / (1024 * 1024), 2)


class BackupResult(BaseModel):
    path: str
    tables: Dict[str, int] = Field(default_factory=dict)


class CleanupResult(BaseModel):
    deleted: Dict[str, int] = Field(default_factory=dict)
    descriptions_truncated: int = 0
    backup: Optional[BackupResult] = None
    size_before_bytes: Optional[int] = None
    size_after_bytes: Optional[int] = None


class StorageCheckResult(BaseModel):
    can_proceed: bool
    cleanup_performed: bool = False
    storage_info: StorageInfo
    message: str
    cleanup_result: Optional[CleanupResult] = None
