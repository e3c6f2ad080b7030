"""
Pydantic schemas for import options, statistics and run reports
"""

from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field

from models.base import SyncType, SyncStatus
from schemas.catalog import empty_counts


class ImportOptions(BaseModel):
    """
    Options for one import run.

    Fields left unset keep their defaults but can still be overridden by the
    storage guard's reduced import; fields the caller set explicitly are
    never overridden (see `model_fields_set`).
    """

    limit: Optional[int] = Field(None, ge=1)
    skip_images: bool = False
    truncate_descriptions: bool = False
    max_description_length: int = Field(200, ge=4)
    batch_size: int = Field(200, ge=1)
    sync_type: SyncType = SyncType.MANUAL


class ImportStats(BaseModel):
    """Per-entity counts of a load, plus total wall time"""

    created: Dict[str, int] = Field(default_factory=empty_counts)
    updated: Dict[str, int] = Field(default_factory=empty_counts)
    skipped: Dict[str, int] = Field(default_factory=empty_counts)
    errors: Dict[str, int] = Field(default_factory=empty_counts)
    rolled_back: Dict[str, int] = Field(default_factory=empty_counts)
    total_time_seconds: float = 0.0

    def add(self, bucket: str, entity: str, count: int = 1):
        counts = getattr(self, bucket)
        counts[entity] = counts.get(entity, 0) + count

    def discard_writes(self):
        """Move created/updated counts of a rolled-back transaction into `rolled_back`"""
        for bucket in ("created", "updated"):
            for entity, count in getattr(self, bucket).items():
                if count:
                    self.add("rolled_back", entity, count)
            setattr(self, bucket, empty_counts())

    def total(self, bucket: str) -> int:
        return sum(getattr(self, bucket).values())

    def items_processed(self) -> Dict[str, Any]:
        """Shape stored in sync_health.items_processed"""
        return {
            "created": dict(self.created),
            "updated": dict(self.updated),
            "skipped": dict(self.skipped),
            "errors": dict(self.errors),
            "rolled_back": dict(self.rolled_back),
        }


class ImportReport(BaseModel):
    """Outcome of one import run as returned to the CLI and scheduler"""

    status: SyncStatus
    sync_type: SyncType = SyncType.MANUAL
    source: Optional[str] = None
    dialect: Optional[str] = None
    products_parsed: int = 0
    bytes_processed: int = 0
    stats: ImportStats = Field(default_factory=ImportStats)
    coercions: int = 0
    transform_errors: List[Dict[str, Any]] = Field(default_factory=list)
    storage_status: Optional[str] = None
    options: Optional[ImportOptions] = None
    health_id: Optional[int] = None
    error: Optional[Dict[str, Any]] = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status in (SyncStatus.SUCCESS, SyncStatus.PARTIAL_SUCCESS)
