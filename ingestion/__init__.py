"""
Catalog import pipeline components.

This package contains everything between a supplier XML feed and the
catalog tables:

Modules:
    runner: Import orchestrator (storage gate, parse, transform, load, health)
    retry: Bounded exponential-backoff retry with error classification
    health: sync_health audit records per run
    storage_guard: Database size checks, backups and cleanup
    scheduler: APScheduler integration for periodic imports

Subpackages:
    extractors: Feed reader for files, URLs and raw bytes
    parsers: XML structural parser with feed dialect detection
    transformers: Product node to catalog entity transformation
    loaders: Catalog repository and dependency-ordered batch loader

Architecture:
    1. Gate - refuse or reduce the import based on database size
    2. Parse - one pass over the document into product nodes
    3. Transform - keyed, deduplicated entities, recovering per node
    4. Load - upserts in one transaction, all or nothing

Usage:
    from core.database import create_engine, create_session_factory
    from ingestion.runner import CatalogImportRunner
    from schemas.stats import ImportOptions

Example:
    engine = create_engine()
    runner = CatalogImportRunner(create_session_factory(engine))

    report = await runner.run("feeds/geko.xml", ImportOptions(limit=100))
    print(report.status, report.stats.created["products"])

Error Handling:
    All components raise exceptions from core.exceptions; the runner turns
    them into a failed report and a sync_health record.
"""

__all__ = [
    "CatalogImportRunner",
    "RetryExecutor",
    "ImportHealthRecorder",
    "StorageGuard",
    "ImportScheduler",
    "FeedReader",
    "CatalogTransformer",
    "CatalogRepository",
    "BatchLoader",
]
