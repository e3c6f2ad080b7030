"""
Storage guard: compare the database size against the configured limit
before an import, and back up / clean up when it is critical
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ingestion.loaders.catalog_repository import CatalogRepository
from models.catalog import (
    Category,
    Document,
    Image,
    Price,
    Producer,
    Product,
    ProductProperty,
    Stock,
    Unit,
    Variant,
)
from schemas.storage import (
    BackupResult,
    CleanupResult,
    StorageCheckResult,
    StorageInfo,
    StorageStatus,
    StorageThresholds,
    TableSize,
)
import logging

logger = logging.getLogger(__name__)


BACKUP_MODELS = (Category, Producer, Unit, Product, Variant, Stock, Price, Image, Document, ProductProperty)
BACKUP_FORMAT_VERSION = "1.0"


class StorageGuard:
    """
    Gate imports on database size.

    States relative to `limit_bytes`:
    - ok: below the warning threshold, proceed
    - warning: proceed; the caller reduces the import
    - critical: refuse, unless auto-cleanup is enabled and brings the
      database back under the critical threshold

    A failing size probe yields status `unknown` and lets the import proceed.
    """

    def __init__(
        self,
        session_factory,
        thresholds: Optional[StorageThresholds] = None,
        repository_factory=CatalogRepository,
        max_description_length: int = 200,
    ):
        self.session_factory = session_factory
        self.thresholds = thresholds or StorageThresholds()
        self.repository_factory = repository_factory
        self.max_description_length = max_description_length

    def classify(self, size_bytes: int) -> StorageStatus:
        percent = size_bytes / self.thresholds.limit_bytes * 100
        if percent >= self.thresholds.critical_percent:
            return StorageStatus.CRITICAL
        if percent >= self.thresholds.warning_percent:
            return StorageStatus.WARNING
        return StorageStatus.OK

    async def get_storage_info(self) -> StorageInfo:
        limit = self.thresholds.limit_bytes
        try:
            async with self.session_factory() as session:
                repository = self.repository_factory(session)
                size = await repository.database_size()
                tables = await repository.largest_tables()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Could not determine database size: {e}")
            return StorageInfo(limit_bytes=limit, status=StorageStatus.UNKNOWN, error=str(e))

        info = StorageInfo(
            database_size_bytes=size,
            limit_bytes=limit,
            percent_of_limit=round(size / limit * 100, 2),
            status=self.classify(size),
            largest_tables=[TableSize(**table) for table in tables],
        )
        logger.info(
            f"Database size {info.size_mb} MB of {round(limit / (1024 * 1024), 2)} MB "
            f"({info.percent_of_limit}%, {info.status.value})"
        )
        return info

    async def backup(self, models=BACKUP_MODELS) -> BackupResult:
        """
        Dump the given tables to backup_<timestamp>.json in the backup directory.

        File layout: {"metadata": {...}, "data": {table: [rows]}}
        """
        now = datetime.now(timezone.utc)
        backup_dir = Path(self.thresholds.backup_dir)
        backup_dir.mkdir(parents=True, exist_ok=True)
        path = backup_dir / f"backup_{now.strftime('%Y%m%dT%H%M%S%fZ')}.json"

        data = {}
        async with self.session_factory() as session:
            repository = self.repository_factory(session)
            for model in models:
                data[model.__tablename__] = await repository.fetch_rows(model)

        payload = {
            "metadata": {
                "timestamp": now.isoformat(),
                "tables": list(data.keys()),
                "row_counts": {table: len(rows) for table, rows in data.items()},
                "version": BACKUP_FORMAT_VERSION,
            },
            "data": data,
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2, default=str)

        logger.info(f"Backed up {len(data)} tables to {path}")
        return BackupResult(path=str(path), tables=payload["metadata"]["row_counts"])

    async def cleanup(self, backup: Optional[bool] = None) -> CleanupResult:
        """
        Free space by deleting import-owned data.

        Steps: optional backup, delete images/documents/properties, keep only
        the most recent products (with their variants, stock and prices),
        truncate long descriptions, then VACUUM.
        """
        if backup is None:
            backup = self.thresholds.backup_before_cleanup

        before = await self.get_storage_info()
        result = CleanupResult(size_before_bytes=before.database_size_bytes)

        if backup:
            result.backup = await self.backup()

        async with self.session_factory() as session:
            async with session.begin():
                repository = self.repository_factory(session)
                for model in (Image, Document, ProductProperty):
                    result.deleted[model.__tablename__] = await repository.delete_all(model)
                pruned = await repository.prune_products(self.thresholds.keep_product_count)
                for table, count in pruned.items():
                    result.deleted[table] = result.deleted.get(table, 0) + count
                result.descriptions_truncated = await repository.truncate_descriptions(
                    self.max_description_length
                )

        logger.info(f"Cleanup deleted {result.deleted}, truncated {result.descriptions_truncated} descriptions")

        try:
            async with self.session_factory() as session:
                await self.repository_factory(session).vacuum()
        except SQLAlchemyError as e:
            logger.warning(f"VACUUM after cleanup failed: {e}")

        after = await self.get_storage_info()
        result.size_after_bytes = after.database_size_bytes
        return result

    async def check_and_manage(self) -> StorageCheckResult:
        info = await self.get_storage_info()

        if info.status == StorageStatus.UNKNOWN:
            return StorageCheckResult(
                can_proceed=True,
                storage_info=info,
                message="Storage size unknown; proceeding with import",
            )

        if info.status == StorageStatus.OK:
            return StorageCheckResult(can_proceed=True, storage_info=info, message="Storage OK")

        if info.status == StorageStatus.WARNING:
            logger.warning(f"Storage warning: {info.percent_of_limit}% of limit used")
            return StorageCheckResult(
                can_proceed=True,
                storage_info=info,
                message=f"Storage at {info.percent_of_limit}% of limit; import should be reduced",
            )

        logger.warning(f"Storage critical: {info.percent_of_limit}% of limit used")
        if not self.thresholds.auto_cleanup:
            return StorageCheckResult(
                can_proceed=False,
                storage_info=info,
                message="Storage critical; import not allowed",
            )

        logger.info("Starting automatic cleanup due to critical storage")
        cleanup_result = await self.cleanup()
        info = await self.get_storage_info()

        if info.status == StorageStatus.CRITICAL:
            return StorageCheckResult(
                can_proceed=False,
                cleanup_performed=True,
                storage_info=info,
                message="Storage still critical after cleanup; import not allowed",
                cleanup_result=cleanup_result,
            )

        return StorageCheckResult(
            can_proceed=True,
            cleanup_performed=True,
            storage_info=info,
            message=f"Cleanup brought storage to {info.percent_of_limit}% of limit",
            cleanup_result=cleanup_result,
        )

