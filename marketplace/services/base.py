"""
Base classes and utilities for the service layer.

This module provides the ServiceResult pattern (inspired by Rust's Result type)
and BaseService class for the marketplace order, inventory and review services.
"""

import logging
import time
from dataclasses import dataclass
from functools import wraps
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    A result type that encapsulates success or failure from service operations.

    Inspired by Rust's Result<T, E> type, this provides a clean way to handle
    service operation outcomes without exceptions for expected failures.

    Attributes:
        ok: True if operation succeeded, False otherwise
        value: The success value (present if ok=True)
        error: Error code from ErrorCodes (present if ok=False)
        error_detail: Human-readable error message (present if ok=False)

    Examples:
        >>> result = service_ok(order)
        >>> if result.ok:
        ...     return {"order": result.value}
        >>> else:
        ...     return {"error": result.error}, ErrorCodes.http_status(result.error)

        >>> result = service_err("order_not_found", "Order 123 does not exist")
        >>> print(result.error)  # "order_not_found"
    """

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_detail: Optional[str] = None

    @property
    def retryable(self) -> bool:
        """True when the caller may retry the whole operation."""
        return not self.ok and ErrorCodes.is_retryable(self.error)

    def to_dict(self) -> dict:
        """
        Convert to dictionary for JSON serialization.

        Returns:
            Dictionary with 'success' and either 'data' or 'error'
        """
        if self.ok:
            return {"success": True, "data": self.value}
        return {
            "success": False,
            "error": {"code": self.error, "message": self.error_detail, "retryable": self.retryable},
        }


def service_ok(value: T) -> ServiceResult[T]:
    """
    Create a successful ServiceResult.

    Args:
        value: The success value

    Returns:
        ServiceResult with ok=True and the value
    """
    return ServiceResult(ok=True, value=value)


def service_err(error: str, error_detail: str = "") -> ServiceResult:
    """
    Create a failed ServiceResult.

    Args:
        error: Error code (e.g., "order_not_found", "insufficient_quantity")
        error_detail: Human-readable error message

    Returns:
        ServiceResult with ok=False and error information
    """
    return ServiceResult(ok=False, error=error, error_detail=error_detail or error)


class BaseService:
    """
    Base class for all services providing common functionality.

    Provides:
    - Logging with class name
    - Performance timing decorator

    Usage:
        class OrderStateMachine(BaseService):
            @BaseService.log_performance
            def mark_delivered(self, order_id):
                self.logger.info(f"Marking order {order_id} as delivered")
                # ... implementation
    """

    def __init__(self):
        """Initialize base service with logger."""
        self.logger = logging.getLogger(self.__class__.__module__ + "." + self.__class__.__name__)

    @staticmethod
    def log_performance(func: Callable) -> Callable:
        """
        Decorator to log performance of service methods.

        Logs execution time and the outcome (ok / error code) of the result.

        Args:
            func: The service method to wrap

        Returns:
            Wrapped function with performance logging
        """

        @wraps(func)
        def wrapper(self, *args, **kwargs):
            start_time = time.time()
            method_name = f"{self.__class__.__name__}.{func.__name__}"

            try:
                self.logger.debug(f"{method_name} started")
                result = func(self, *args, **kwargs)
                elapsed_time = (time.time() - start_time) * 1000  # Convert to ms

                # Log based on result type
                if isinstance(result, ServiceResult):
                    if result.ok:
                        self.logger.info(f"{method_name} completed successfully in {elapsed_time:.2f}ms")
                    else:
                        self.logger.warning(
                            f"{method_name} failed with error '{result.error}' in {elapsed_time:.2f}ms"
                        )
                else:
                    self.logger.info(f"{method_name} completed in {elapsed_time:.2f}ms")

                return result

            except Exception as e:
                elapsed_time = (time.time() - start_time) * 1000
                self.logger.error(
                    f"{method_name} raised exception after {elapsed_time:.2f}ms: {str(e)}",
                    exc_info=True,
                )
                raise

        return wrapper


class ErrorCodes:
    """Standard error codes used across the order, inventory and review services."""

    # Not found
    LISTING_NOT_FOUND = "listing_not_found"
    ORDER_NOT_FOUND = "order_not_found"
    REVIEW_NOT_FOUND = "review_not_found"
    SELLER_NOT_FOUND = "seller_not_found"
    USER_NOT_FOUND = "user_not_found"

    # State / inventory
    INVALID_TRANSITION = "invalid_transition"
    INSUFFICIENT_QUANTITY = "insufficient_quantity"
    LISTING_UNAVAILABLE = "listing_unavailable"
    DUPLICATE_REVIEW = "duplicate_review"

    # Lost a race on a conditional update; the whole operation may be retried
    CONFLICT_RETRYABLE = "conflict_retryable"

    # Validation / permission
    VALIDATION_ERROR = "validation_error"
    PERMISSION_DENIED = "permission_denied"

    # Internal errors
    INTERNAL_ERROR = "internal_error"

    NOT_FOUND_CODES = frozenset(
        {LISTING_NOT_FOUND, ORDER_NOT_FOUND, REVIEW_NOT_FOUND, SELLER_NOT_FOUND, USER_NOT_FOUND}
    )

    HTTP_STATUS = {
        LISTING_NOT_FOUND: 404,
        ORDER_NOT_FOUND: 404,
        REVIEW_NOT_FOUND: 404,
        SELLER_NOT_FOUND: 404,
        USER_NOT_FOUND: 404,
        INVALID_TRANSITION: 409,
        INSUFFICIENT_QUANTITY: 409,
        LISTING_UNAVAILABLE: 409,
        DUPLICATE_REVIEW: 409,
        CONFLICT_RETRYABLE: 409,
        VALIDATION_ERROR: 400,
        PERMISSION_DENIED: 403,
        INTERNAL_ERROR: 500,
    }

    @classmethod
    def http_status(cls, code: Optional[str]) -> int:
        """Transport status a boundary layer should answer with for ``code``."""
        return cls.HTTP_STATUS.get(code, 500)

    @classmethod
    def is_not_found(cls, code: Optional[str]) -> bool:
        return code in cls.NOT_FOUND_CODES

    @classmethod
    def is_retryable(cls, code: Optional[str]) -> bool:
        return code == cls.CONFLICT_RETRYABLE
