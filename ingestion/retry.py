"""
Bounded exponential-backoff retry for database operations.

Errors are classified before any retry decision:
- Transient (connection drops, timeouts, unavailable server) are retried
- Constraint violations and rejected values propagate immediately
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy import exc as sa_exc

from core.config import Settings
from core.exceptions import (
    CatalogImportException,
    ConstraintViolationError,
    DatabaseError,
    FatalImportError,
    MalformedRowError,
    RetryableError,
    TransientDbError,
)
import logging

logger = logging.getLogger(__name__)


TRANSIENT_KEYWORDS = (
    "timeout",
    "timed out",
    "connection",
    "network",
    "temporarily unavailable",
    "connection refused",
)


def classify_error(error: Exception, label: str, context: Optional[Dict[str, Any]] = None) -> CatalogImportException:
    """Map a raw exception onto the pipeline's exception hierarchy"""
    if isinstance(error, CatalogImportException):
        return error

    context = dict(context or {})
    context.setdefault("operation", label)

    if isinstance(error, sa_exc.IntegrityError):
        return ConstraintViolationError(f"Constraint violation in {label}", context=context, original_exception=error)
    if isinstance(error, sa_exc.DataError):
        return MalformedRowError(f"Database rejected a row in {label}", context=context, original_exception=error)

    transient = isinstance(
        error,
        (
            sa_exc.OperationalError,
            sa_exc.InterfaceError,
            sa_exc.TimeoutError,
            asyncio.TimeoutError,
            ConnectionError,
            OSError,
        ),
    )
    if not transient and isinstance(error, sa_exc.DBAPIError):
        transient = bool(error.connection_invalidated)
    if not transient:
        message = str(error).lower()
        transient = any(keyword in message for keyword in TRANSIENT_KEYWORDS)

    if transient:
        return TransientDbError(f"Transient database error in {label}", context=context, original_exception=error)
    return DatabaseError(f"Database operation {label} failed", context=context, original_exception=error)


class RetryExecutor:
    """
    Run async operations with bounded retry.

    Delay before retry n (0-based) is
    initial_delay * backoff_factor ** n + uniform(0, jitter_max), capped at max_delay.

    When retries are exhausted the failure is recorded on the health
    tracking handle (if one is attached) and raised as FatalImportError.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        backoff_factor: float = 2.0,
        jitter_max: float = 0.5,
        max_delay: float = 30.0,
        recorder=None,
        handle=None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.backoff_factor = backoff_factor
        self.jitter_max = jitter_max
        self.max_delay = max_delay
        self.recorder = recorder
        self.handle = handle
        self._sleep = sleep

    @classmethod
    def from_settings(cls, cfg: Settings, recorder=None, handle=None) -> "RetryExecutor":
        return cls(
            max_attempts=cfg.MAX_RETRIES,
            initial_delay=cfg.RETRY_INITIAL_DELAY,
            backoff_factor=cfg.RETRY_BACKOFF_FACTOR,
            jitter_max=cfg.RETRY_JITTER_MAX,
            max_delay=cfg.RETRY_MAX_DELAY,
            recorder=recorder,
            handle=handle,
        )

    def compute_delay(self, attempt: int) -> float:
        delay = self.initial_delay * (self.backoff_factor ** attempt)
        if self.jitter_max > 0:
            delay += random.uniform(0, self.jitter_max)
        return min(delay, self.max_delay)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[Any]],
        label: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Await `operation()` until it succeeds or attempts run out.

        Raises:
            ConstraintViolationError, MalformedRowError, DatabaseError:
                Non-transient failures, on the first occurrence
            FatalImportError: Transient failure on every attempt
        """
        last_error: Optional[CatalogImportException] = None

        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except Exception as e:
                error = classify_error(e, label, context)
                if not isinstance(error, RetryableError):
                    logger.error(f"{label} failed with non-retryable error: {error.message}")
                    if error is e:
                        raise
                    raise error from e

                last_error = error
                if attempt < self.max_attempts - 1:
                    delay = self.compute_delay(attempt)
                    logger.warning(
                        f"{label} failed (attempt {attempt + 1}/{self.max_attempts}): {e}. "
                        f"Retrying in {delay:.2f} seconds"
                    )
                    await self._sleep(delay)

        fatal = FatalImportError(
            f"{label} failed after {self.max_attempts} attempts",
            context={**(context or {}), "operation": label, "attempts": self.max_attempts},
            original_exception=last_error,
        )
        logger.error(str(fatal))

        if self.recorder is not None and self.handle is not None:
            self.recorder.record_error(
                self.handle,
                fatal.code,
                fatal.message,
                {
                    "operation": label,
                    "attempts": self.max_attempts,
                    "last_error": str(last_error.original_exception or last_error.message),
                },
            )
            fatal.recorded = True
        raise fatal
