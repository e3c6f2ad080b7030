"""
Catalog import runner - orchestrates one import run end to end.

Pipeline phases:
1. Storage gate - refuse or reduce the import based on database size
2. Read - resolve the feed source to raw bytes
3. Parse - detect the feed dialect and collect product nodes
4. Transform - build keyed entity collections, recovering per node
5. Load - upsert everything in one transaction, all or nothing
6. Health - persist the audit record on every outcome
"""

import asyncio
import time
from typing import Optional

from core.config import Settings, settings as default_settings
from core.exceptions import (
    CatalogImportException,
    ImportCancelledError,
    StorageCriticalError,
)
from ingestion.extractors.feed_reader import FeedReader, FeedSource, describe_source
from ingestion.health import ImportHealthRecorder, TrackingHandle
from ingestion.loaders.batch_loader import BatchLoader
from ingestion.loaders.catalog_repository import CatalogRepository
from ingestion.parsers.xml_parser import parse
from ingestion.retry import RetryExecutor
from ingestion.storage_guard import StorageGuard
from ingestion.transformers.catalog_transformer import CatalogTransformer
from models.base import SyncStatus
from schemas.stats import ImportOptions, ImportReport
from schemas.storage import StorageStatus, StorageThresholds
import logging

logger = logging.getLogger(__name__)


class CatalogImportRunner:
    """
    Catalog import orchestrator.

    Responsibilities:
    - Gate the run on storage and apply the reduced import under pressure
    - Drive parse → transform → load with a single data transaction
    - Serialize runs (in-process lock plus the database advisory lock)
    - Enforce the optional deadline; a cancelled run rolls back fully
    - Record the run in sync_health whatever the outcome
    """

    def __init__(
        self,
        session_factory,
        app_settings: Optional[Settings] = None,
        feed_reader: Optional[FeedReader] = None,
        storage_guard: Optional[StorageGuard] = None,
        recorder: Optional[ImportHealthRecorder] = None,
        repository_factory=CatalogRepository,
    ):
        self.settings = app_settings or default_settings
        self.session_factory = session_factory
        self.feed_reader = feed_reader or FeedReader(timeout=self.settings.FEED_DOWNLOAD_TIMEOUT)
        self.storage_guard = storage_guard or StorageGuard(
            session_factory,
            StorageThresholds.from_settings(self.settings),
            max_description_length=self.settings.WARNING_DESCRIPTION_LENGTH,
        )
        self.recorder = recorder or ImportHealthRecorder(session_factory)
        self.repository_factory = repository_factory
        self._lock = asyncio.Lock()

    async def run(self, source: FeedSource, options: Optional[ImportOptions] = None) -> ImportReport:
        """
        Import one feed.

        Returns:
            ImportReport whose status is success, partial_success (some
            product nodes failed to transform) or failed. Failures are
            reported, not raised; task cancellation is re-raised after the
            run has been rolled back and recorded.
        """
        if options is None:
            options = ImportOptions(batch_size=self.settings.ETL_BATCH_SIZE)

        if self._lock.locked():
            logger.info("Another import is running; waiting for it to finish")
        async with self._lock:
            return await self._run(source, options)

    async def _run(self, source: FeedSource, options: ImportOptions) -> ImportReport:
        source_label = describe_source(source)
        handle = await self.recorder.start_tracking(options.sync_type.value, source_label)
        report = ImportReport(
            status=SyncStatus.RUNNING,
            sync_type=options.sync_type,
            source=source_label,
            options=options,
        )
        logger.info(f"Starting {options.sync_type.value} catalog import from {source_label}")

        try:
            # --------------------------------------------------
            # PHASE 1: STORAGE GATE
            # --------------------------------------------------
            check = await self.storage_guard.check_and_manage()
            report.storage_status = check.storage_info.status.value

            if not check.can_proceed:
                raise StorageCriticalError(
                    check.message,
                    context={
                        "status": check.storage_info.status.value,
                        "percent_of_limit": check.storage_info.percent_of_limit,
                        "cleanup_performed": check.cleanup_performed,
                    },
                )
            if check.storage_info.status == StorageStatus.WARNING:
                options = self.reduce_options(options)
                report.options = options

            # --------------------------------------------------
            # PHASE 2: READ
            # --------------------------------------------------
            raw = await self.feed_reader.read(source)
            report.bytes_processed = len(raw)

            # --------------------------------------------------
            # PHASES 3-5: PARSE, TRANSFORM, LOAD
            # --------------------------------------------------
            work = self._execute(raw, options, handle, report)
            del raw
            timeout = self.settings.IMPORT_TIMEOUT_SECONDS
            if timeout:
                try:
                    await asyncio.wait_for(work, timeout)
                except asyncio.TimeoutError as e:
                    raise ImportCancelledError(
                        f"Import exceeded its deadline of {timeout} seconds",
                        context={"timeout_seconds": timeout},
                        original_exception=e,
                    )
            else:
                await work

            report.status = SyncStatus.PARTIAL_SUCCESS if report.transform_errors else SyncStatus.SUCCESS

        except asyncio.CancelledError:
            self._fail(report, handle, ImportCancelledError("Import was cancelled"))
            await self._finish(report, handle)
            raise

        except CatalogImportException as e:
            self._fail(report, handle, e)

        except Exception as e:
            logger.exception("Unexpected error during catalog import")
            self._fail(report, handle, CatalogImportException(
                "Unexpected error during catalog import",
                context={"source": source_label},
                original_exception=e,
            ))

        await self._finish(report, handle)
        return report

    async def _execute(self, raw: bytes, options: ImportOptions, handle: TrackingHandle, report: ImportReport):
        feed = parse(raw, limit=options.limit)
        del raw
        report.dialect = feed.dialect.value
        report.products_parsed = len(feed.products)
        self.recorder.sample_memory(handle)

        transformer = CatalogTransformer(
            skip_images=options.skip_images,
            truncate_descriptions=options.truncate_descriptions,
            max_description_length=options.max_description_length,
        )
        catalog = transformer.transform(feed.products)
        del feed
        report.coercions = catalog.coercions
        report.transform_errors = catalog.errors
        for error in catalog.errors:
            self.recorder.record_error(handle, error["code"], error["message"], error["context"])
        self.recorder.sample_memory(handle)

        async with self.session_factory() as session:
            repository = self.repository_factory(session)
            retry = RetryExecutor.from_settings(self.settings, recorder=self.recorder, handle=handle)
            loader = BatchLoader(repository, retry, batch_size=options.batch_size)
            try:
                await repository.acquire_import_lock()
                report.stats = await loader.load(catalog)
                await session.commit()
            except (Exception, asyncio.CancelledError):
                report.stats = loader.stats
                report.stats.discard_writes()
                await session.rollback()
                logger.error("Import transaction rolled back")
                raise

        self.recorder.sample_memory(handle)
        logger.info(
            f"Import committed: {report.stats.total('created')} created, "
            f"{report.stats.total('updated')} updated, {report.stats.total('skipped')} skipped"
        )

    def reduce_options(self, options: ImportOptions) -> ImportOptions:
        """Shrink the import under storage pressure, keeping what the caller chose"""
        explicit = options.model_fields_set
        updates = {}
        if "limit" not in explicit:
            updates["limit"] = self.settings.WARNING_PRODUCT_LIMIT
        if "skip_images" not in explicit:
            updates["skip_images"] = True
        if "truncate_descriptions" not in explicit and "max_description_length" not in explicit:
            updates["truncate_descriptions"] = True
            updates["max_description_length"] = self.settings.WARNING_DESCRIPTION_LENGTH

        if updates:
            logger.warning(f"Storage warning: reducing import with {updates}")
        return options.model_copy(update=updates)

    def _fail(self, report: ImportReport, handle: TrackingHandle, error: CatalogImportException):
        logger.error(f"Catalog import failed: {error}")
        report.status = SyncStatus.FAILED
        report.error = error.to_dict()
        if not error.recorded:
            self.recorder.record_error(handle, error.code, error.message, error.to_dict()["context"])
            error.recorded = True

    async def _finish(self, report: ImportReport, handle: TrackingHandle):
        for bucket, counts in report.stats.items_processed().items():
            self.recorder.update_items_processed(handle, bucket, counts)
        self.recorder.update_items_processed(handle, "coercions", report.coercions)
        self.recorder.update_items_processed(handle, "products_parsed", report.products_parsed)

        report.health_id = await self.recorder.finish_tracking(handle, report.status, report.bytes_processed)
        report.duration_seconds = round(time.monotonic() - handle.started_monotonic, 3)
