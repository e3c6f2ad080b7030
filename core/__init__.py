"""
Core utilities and configuration for the catalog import system.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Engine and session factory construction
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import create_engine, create_session_factory
    from core.exceptions import MalformedFeedError, StorageCriticalError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Build the engine once and pass it to the components that need it
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)
    async with session_factory() as session:
        # Perform database operations
        pass
"""

__all__ = [
    "settings",
    "create_engine",
    "create_session_factory",
    "setup_logging",
    # Exceptions
    "CatalogImportException",
    "FeedError",
    "MalformedFeedError",
    "FeedFetchError",
    "TransformationError",
    "StorageError",
    "StorageCriticalError",
    "LoadError",
    "DatabaseError",
    "TransientDbError",
    "ConstraintViolationError",
    "MalformedRowError",
    "FatalImportError",
    "ImportCancelledError",
    "RetryableError",
    "NonRetryableError",
]
