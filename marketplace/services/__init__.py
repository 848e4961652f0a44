"""
Marketplace Service Layer

Shared result type, base class and error codes for the order lifecycle,
inventory reservation and seller rating services.

Usage:
    from marketplace.services import ErrorCodes, service_ok, service_err

    result = reservation_service.reserve_and_create_order(buyer_id, seller_id, items)
    if not result.ok:
        status_code = ErrorCodes.http_status(result.error)
"""

from .base import BaseService, ErrorCodes, ServiceResult, service_err, service_ok

__all__ = [
    # Base classes
    "BaseService",
    "ServiceResult",
    # Helper functions
    "service_ok",
    "service_err",
    # Error codes
    "ErrorCodes",
]
