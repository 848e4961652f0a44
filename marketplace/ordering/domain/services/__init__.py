from .inventory_service import InventoryReservationService
from .order_query_service import OrderQueryService
from .order_service import OrderService


__all__ = [
    "InventoryReservationService",
    "OrderQueryService",
    "OrderService",
]
