"""
Persist one audit record per import run in sync_health.

Every write happens in its own short session, never in the import's data
transaction, so the record survives a rolled-back import.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import psutil
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from models.base import SyncStatus, SyncType
from models.sync_health import SyncHealth

logger = logging.getLogger(__name__)


@dataclass
class TrackingHandle:
    """In-flight state of one tracked run"""

    sync_type: str
    source: Optional[str]
    start_time: datetime
    started_monotonic: float
    record_id: Optional[int] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)
    items_processed: Dict[str, Any] = field(default_factory=dict)
    peak_memory_mb: float = 0.0


def current_memory_mb() -> float:
    return psutil.Process().memory_info().rss / 1024 / 1024


class ImportHealthRecorder:
    """
    Track an import run from start to finish.

    Responsibilities:
    - Insert a `running` row when the run starts
    - Collect errors, item counts and peak memory while it runs
    - Update the row with the final status at the end

    Failure to write the audit row is logged and never masks the
    import's own outcome.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def start_tracking(self, sync_type: str, source: Optional[str] = None) -> TrackingHandle:
        sync_type = SyncType(sync_type).value
        handle = TrackingHandle(
            sync_type=sync_type,
            source=source,
            start_time=datetime.now(timezone.utc),
            started_monotonic=time.monotonic(),
        )
        self.sample_memory(handle)

        try:
            async with self.session_factory() as session:
                record = SyncHealth(
                    sync_type=sync_type,
                    source=source,
                    status=SyncStatus.RUNNING.value,
                    start_time=handle.start_time,
                    error_count=0,
                )
                session.add(record)
                await session.commit()
                handle.record_id = record.id
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Could not create sync_health record: {e}")

        logger.info(f"Started tracking {sync_type} import (record {handle.record_id})")
        return handle

    def record_error(
        self,
        handle: TrackingHandle,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        handle.errors.append({
            "code": code,
            "message": message,
            "details": details or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def update_items_processed(self, handle: TrackingHandle, entity: str, count: Any):
        handle.items_processed[entity] = count

    def sample_memory(self, handle: TrackingHandle) -> float:
        usage = current_memory_mb()
        handle.peak_memory_mb = max(handle.peak_memory_mb, usage)
        return usage

    async def finish_tracking(
        self,
        handle: TrackingHandle,
        status: SyncStatus,
        bytes_processed: Optional[int] = None,
    ) -> Optional[int]:
        """
        Write the final state of the run.

        Returns:
            The sync_health row id, or None if the record could not be written
        """
        status = SyncStatus(status)
        self.sample_memory(handle)
        end_time = datetime.now(timezone.utc)

        values = {
            "status": status.value,
            "end_time": end_time,
            "duration_seconds": round(time.monotonic() - handle.started_monotonic, 3),
            "bytes_processed": bytes_processed,
            "items_processed": handle.items_processed,
            "error_count": len(handle.errors),
            "error_details": handle.errors or None,
            "error_message": handle.errors[-1]["message"] if handle.errors else None,
            "memory_usage_mb": round(handle.peak_memory_mb, 2),
        }

        try:
            async with self.session_factory() as session:
                record = None
                if handle.record_id is not None:
                    record = await session.get(SyncHealth, handle.record_id)
                if record is None:
                    record = SyncHealth(
                        sync_type=handle.sync_type,
                        source=handle.source,
                        start_time=handle.start_time,
                    )
                    session.add(record)
                for key, value in values.items():
                    setattr(record, key, value)
                await session.commit()
                handle.record_id = record.id
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Could not finalize sync_health record {handle.record_id}: {e}")
            return None

        logger.info(
            f"Import {status.value} in {values['duration_seconds']}s "
            f"({values['error_count']} errors, peak memory {values['memory_usage_mb']} MB)"
        )
        return handle.record_id

    async def recent(self, limit: int = 10) -> List[SyncHealth]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncHealth).order_by(SyncHealth.start_time.desc()).limit(limit)
            )
            return list(result.scalars().all())

    async def stats(self, start: datetime, end: datetime) -> Dict[str, Any]:
        """Run counts per status and average duration between two instants"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    SyncHealth.status,
                    func.count(SyncHealth.id),
                    func.avg(SyncHealth.duration_seconds),
                    func.sum(SyncHealth.error_count),
                )
                .where(SyncHealth.start_time >= start, SyncHealth.start_time < end)
                .group_by(SyncHealth.status)
            )
            rows = result.all()

        by_status = {row[0]: row[1] for row in rows}
        total_runs = sum(by_status.values())
        weighted = sum((row[2] or 0) * row[1] for row in rows)
        return {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "total_runs": total_runs,
            "by_status": by_status,
            "avg_duration_seconds": round(weighted / total_runs, 3) if total_runs else None,
            "total_errors": int(sum(row[3] or 0 for row in rows)),
            "success_rate": round(
                (by_status.get(SyncStatus.SUCCESS.value, 0) + by_status.get(SyncStatus.PARTIAL_SUCCESS.value, 0))
                / total_runs * 100, 2
            ) if total_runs else None,
        }
