"""
Custom exceptions for the catalog import pipeline with structured error context.

This module provides the exception hierarchy used throughout the import
pipeline. Each exception carries context information for debugging and
for the persisted import health record.

Exception Hierarchy:
    CatalogImportException (base)
    ├── FeedError
    │   ├── MalformedFeedError
    │   └── FeedFetchError
    ├── TransformationError
    ├── StorageError
    │   └── StorageCriticalError
    ├── LoadError
    │   └── DatabaseError
    │       ├── TransientDbError (retryable)
    │       ├── ConstraintViolationError (non-retryable)
    │       └── MalformedRowError (non-retryable)
    ├── FatalImportError
    ├── ImportCancelledError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class CatalogImportException(Exception):
    """
    Base exception for all import-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (entity, batch, etc.)
        original_exception: The original exception that was caught (if any)
    """

    code = "IMPORT_ERROR"

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)
        # Set once the error has been written to the health record
        self.recorded = False

        # Add timestamp to context
        self.context["error_timestamp"] = self.timestamp.isoformat()

        # Chain original exception if provided
        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(CatalogImportException):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Connection resets and refused connections
    - Statement or pool timeouts
    - Database temporarily unavailable
    """
    pass


class NonRetryableError(CatalogImportException):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Unique/foreign key constraint violations
    - Values the database rejects (malformed rows)
    """
    pass


# ============================================================================
# Feed Errors
# ============================================================================

class FeedError(CatalogImportException):
    """Base exception for problems with the supplier feed itself."""
    code = "FEED_ERROR"


class MalformedFeedError(NonRetryableError, FeedError):
    """
    Raised when the XML is not well-formed or matches no known root shape.

    Context should include:
        - root_elements: Top-level element names found (if parseable)
        - bytes: Size of the document
    """
    code = "XML_PARSE_ERROR"


class FeedFetchError(FeedError):
    """
    Raised when the feed cannot be read from disk or downloaded.

    Context should include:
        - source: File path or URL
        - status_code: HTTP status code (if applicable)
    """
    code = "FEED_FETCH_ERROR"


# ============================================================================
# Transformation Errors
# ============================================================================

class TransformationError(CatalogImportException):
    """
    Raised when a single product node cannot be transformed.

    Context should include:
        - node_index: Position of the product node in the feed
        - product_code: Product code (if known)
    """
    code = "TRANSFORM_ERROR"


# ============================================================================
# Storage Errors
# ============================================================================

class StorageError(CatalogImportException):
    """Base exception for storage guard failures."""
    code = "STORAGE_ERROR"


class StorageCriticalError(NonRetryableError, StorageError):
    """
    Raised when the storage guard refuses to let an import start.

    Context should include:
        - percent_of_limit: Current size as a percentage of the hard limit
        - status: Storage status at refusal time
        - cleanup_performed: Whether automatic cleanup ran first
    """
    code = "STORAGE_CRITICAL"


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(CatalogImportException):
    """Base exception for data loading failures."""
    code = "LOAD_ERROR"


class DatabaseError(LoadError):
    """
    Exception raised when database operations fail.

    Context should include:
        - operation: Label of the database operation
        - entity: Entity type being persisted
        - batch_index: Index of the batch (if batch operation)
    """
    code = "DATABASE_ERROR"


class TransientDbError(RetryableError, DatabaseError):
    """Connection, timeout and availability errors that should be retried."""
    code = "TRANSIENT_DB_ERROR"


class ConstraintViolationError(NonRetryableError, DatabaseError):
    """Constraint violations that retrying cannot fix."""
    code = "CONSTRAINT_VIOLATION"


class MalformedRowError(NonRetryableError, DatabaseError):
    """Rows the database rejects as invalid data."""
    code = "MALFORMED_ROW"


class FatalImportError(CatalogImportException):
    """
    Raised when a database operation keeps failing after all retries.

    Context should include:
        - operation: Label of the failed operation
        - attempts: Number of attempts made
    """
    code = "DATABASE_OPERATION_FAILED"


class ImportCancelledError(CatalogImportException):
    """Raised when an import is aborted by its deadline or cancellation."""
    code = "IMPORT_CANCELLED"
