from marketplace.services.base import ErrorCodes


class DomainError(Exception):
    """
    Base class for failures raised inside a unit of work.

    Raising aborts the surrounding transaction; the unit-of-work wrapper turns
    the exception into a failed ServiceResult carrying ``code``.
    """

    code = ErrorCodes.INTERNAL_ERROR

    def __init__(self, message: str = "", code: str = None):
        super().__init__(message)
        if code is not None:
            self.code = code
        self.message = message or self.code


class NotFoundError(DomainError):
    """Raised when a referenced listing, order, review or seller is missing."""

    def __init__(self, message: str, code: str = ErrorCodes.ORDER_NOT_FOUND):
        super().__init__(message, code)


class InvalidTransitionError(DomainError):
    """Raised when an order status precondition is violated."""

    code = ErrorCodes.INVALID_TRANSITION


class InsufficientQuantityError(DomainError):
    code = ErrorCodes.INSUFFICIENT_QUANTITY


class ListingUnavailableError(DomainError):
    code = ErrorCodes.LISTING_UNAVAILABLE


class DuplicateReviewError(DomainError):
    code = ErrorCodes.DUPLICATE_REVIEW


class ConflictRetryableError(DomainError):
    """Raised when a conditional update lost a race with a concurrent writer."""

    code = ErrorCodes.CONFLICT_RETRYABLE


class ValidationError(DomainError):
    code = ErrorCodes.VALIDATION_ERROR


class PermissionDeniedError(DomainError):
    code = ErrorCodes.PERMISSION_DENIED
