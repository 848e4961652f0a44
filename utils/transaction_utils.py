"""
Transaction Utilities
=====================

Explicit unit-of-work helpers for the marketplace core. Every public operation
that touches more than one row runs its body through ``run_in_unit_of_work``:
the body executes inside ``transaction.atomic`` and either commits as a whole
or is rolled back as a whole.

Usage Examples:
    # Context manager
    with unit_of_work("cancel_order"):
        restore_listings()
        mark_cancelled()

    # Convert domain failures to a ServiceResult, rolling back first
    result = run_in_unit_of_work(lambda: self._reserve(...), "reserve_and_create_order")

    # Retry the whole operation when a conditional update lost a race
    @retry_on_conflict()
    def reserve_and_create_order(...):
        ...
"""

import logging
import time
from contextlib import contextmanager
from functools import wraps

from django.conf import settings
from django.db import OperationalError, transaction

from marketplace.domain.exceptions import ConflictRetryableError, DomainError
from marketplace.infra.observability.metrics import conflict_retries_total
from marketplace.services.base import ErrorCodes, ServiceResult, service_err, service_ok

logger = logging.getLogger(__name__)

# Lock wait / deadlock / busy-database signatures of the supported backends
LOCK_CONFLICT_MARKERS = (
    "deadlock found",  # MySQL 1213
    "1213",
    "lock wait timeout",  # MySQL 1205
    "deadlock detected",  # PostgreSQL
    "could not serialize access",  # PostgreSQL serialization failure
    "database is locked",  # SQLite
    "database table is locked",
)


def _marketplace_setting(name, default):
    return getattr(settings, "MARKETPLACE", {}).get(name, default)


def is_lock_conflict(error: Exception) -> bool:
    """True if ``error`` is a backend lock conflict worth retrying."""
    message = str(error).lower()
    return any(marker in message for marker in LOCK_CONFLICT_MARKERS)


@contextmanager
def unit_of_work(operation_name="Unknown", using="default"):
    """
    Context manager wrapping one atomic, isolated unit of work.

    Any exception leaving the block rolls back every write made inside it.
    Backend lock conflicts are re-raised as ConflictRetryableError so callers
    see them in the same taxonomy as a lost conditional update.

    Args:
        operation_name (str): Name of the operation for logging
        using (str): Database alias
    """
    start_time = time.time()
    logger.debug(f"Starting unit of work: {operation_name}")

    try:
        with transaction.atomic(using=using):
            yield
        elapsed = time.time() - start_time
        logger.debug(f"Unit of work '{operation_name}' committed in {elapsed:.3f}s")
    except OperationalError as e:
        elapsed = time.time() - start_time
        if is_lock_conflict(e):
            logger.warning(f"Unit of work '{operation_name}' hit a lock conflict after {elapsed:.3f}s: {e}")
            raise ConflictRetryableError(f"Concurrent update conflict in {operation_name}") from e
        logger.error(f"Unit of work '{operation_name}' failed after {elapsed:.3f}s: {e}")
        raise
    except DomainError as e:
        elapsed = time.time() - start_time
        logger.info(f"Unit of work '{operation_name}' rolled back after {elapsed:.3f}s: [{e.code}] {e.message}")
        raise


def run_in_unit_of_work(func, operation_name="Unknown", using="default") -> ServiceResult:
    """
    Execute ``func`` inside ``unit_of_work`` and wrap the outcome in a ServiceResult.

    DomainError subclasses become failed results carrying their error code.
    Anything else is logged with traceback and surfaced as internal_error;
    in both cases the transaction has already been rolled back.

    Args:
        func: Zero-argument callable doing the reads and writes
        operation_name (str): Name of the operation for logging

    Returns:
        ServiceResult with the callable's return value or the failure
    """
    try:
        with unit_of_work(operation_name, using=using):
            value = func()
        return service_ok(value)
    except DomainError as e:
        return service_err(e.code, e.message)
    except Exception as e:
        logger.error(f"Unexpected error in {operation_name}: {e}", exc_info=True)
        return service_err(ErrorCodes.INTERNAL_ERROR, str(e))


def retry_on_conflict(max_retries=None, delay=None, backoff=2.0):
    """
    Decorator retrying a ServiceResult-returning operation on conflict_retryable.

    The whole operation is re-run, so each attempt starts a fresh unit of
    work and re-reads current state. Other failures are returned unchanged.

    Args:
        max_retries (int): Retry attempts after the first call
            (default: MARKETPLACE["CONFLICT_RETRIES"])
        delay (float): Initial delay between retries in seconds
            (default: MARKETPLACE["CONFLICT_RETRY_DELAY"])
        backoff (float): Backoff multiplier for delay
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            retries = max_retries if max_retries is not None else _marketplace_setting("CONFLICT_RETRIES", 3)
            current_delay = delay if delay is not None else _marketplace_setting("CONFLICT_RETRY_DELAY", 0.05)

            result = func(*args, **kwargs)
            attempt = 0
            while result.error == ErrorCodes.CONFLICT_RETRYABLE and attempt < retries:
                attempt += 1
                logger.warning(
                    f"{func.__name__} lost a concurrent update, retrying in {current_delay}s "
                    f"(attempt {attempt}/{retries})"
                )
                conflict_retries_total.labels(operation=func.__name__).inc()
                if current_delay:
                    time.sleep(current_delay)
                    current_delay *= backoff
                result = func(*args, **kwargs)
            return result

        return wrapper

    return decorator
