"""
OrderQueryService - Order Read Side

Single-order lookups go through the explicit read-through cache; paginated
lists hit the database directly. Orders are returned as plain dicts enriched
with buyer and seller display names.
"""

import logging
from typing import Dict, List, Optional

from django.core.exceptions import ValidationError as DjangoValidationError

from marketplace.infra import cache
from marketplace.ordering.domain.models import Order, OrderItem
from marketplace.services.base import BaseService, ErrorCodes, ServiceResult, service_err, service_ok

logger = logging.getLogger(__name__)


def serialize_order_item(item: OrderItem) -> Dict:
    return {
        "listing_id": str(item.listing_ref),
        "title": item.title,
        "quantity": item.quantity,
        "price_per_unit": item.price_per_unit,
        "image_url": item.image_url,
    }


def serialize_order(order: Order) -> Dict:
    return {
        "id": str(order.id),
        "buyer_id": str(order.buyer_id),
        "buyer_name": order.buyer.display_name,
        "seller_id": str(order.seller_id),
        "seller_name": order.seller.display_name,
        "items": [serialize_order_item(item) for item in order.items.all()],
        "total_amount": order.total_amount,
        "currency": order.currency,
        "status": order.status,
        "payment_details": order.payment_details,
        "shipping_details": order.shipping_details,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }


class OrderQueryService(BaseService):
    """
    Read-only access to orders for buyers, sellers and listing history.
    """

    def _base_queryset(self):
        return Order.objects.select_related("buyer", "seller").prefetch_related("items")

    def get_order(self, order_id) -> ServiceResult[Dict]:
        """
        Get order details by id (cached).

        Args:
            order_id: Order UUID

        Returns:
            ServiceResult with the serialized order or order_not_found
        """

        def load():
            order = self._base_queryset().filter(pk=order_id).first()
            return serialize_order(order) if order else None

        try:
            data = cache.read_through(cache.order_key(order_id), load)
        except (DjangoValidationError, ValueError) as e:
            # Malformed ids fail in the lookup itself
            self.logger.info(f"Order lookup for {order_id!r} failed: {e}")
            data = None

        if data is None:
            return service_err(ErrorCodes.ORDER_NOT_FOUND, f"Order {order_id} not found")
        return service_ok(data)

    def _paginate(self, queryset, page: int, page_size: int) -> Dict:
        page = max(page, 1)
        offset = (page - 1) * page_size
        total_count = queryset.count()
        orders = [serialize_order(order) for order in queryset[offset : offset + page_size]]
        return {
            "results": orders,
            "count": total_count,
            "page": page,
            "page_size": page_size,
            "num_pages": (total_count + page_size - 1) // page_size,
        }

    @BaseService.log_performance
    def list_buyer_orders(
        self, buyer_id, status: Optional[str] = None, page: int = 1, page_size: int = 20
    ) -> ServiceResult[Dict]:
        """
        List a buyer's orders, newest first, optionally filtered by status.

        Args:
            buyer_id: Buyer user id
            status: Optional OrderStatus filter
            page: Page number
            page_size: Items per page

        Returns:
            ServiceResult with paginated order list
        """
        queryset = self._base_queryset().filter(buyer_id=buyer_id)
        if status:
            queryset = queryset.filter(status=status)
        return service_ok(self._paginate(queryset.order_by("-created_at"), page, page_size))

    @BaseService.log_performance
    def list_seller_orders(
        self, seller_id, status: Optional[str] = None, page: int = 1, page_size: int = 20
    ) -> ServiceResult[Dict]:
        """
        List a seller's orders, newest first, optionally filtered by status.
        """
        queryset = self._base_queryset().filter(seller_id=seller_id)
        if status:
            queryset = queryset.filter(status=status)
        return service_ok(self._paginate(queryset.order_by("-created_at"), page, page_size))

    def get_orders_for_listing(self, listing_id) -> ServiceResult[List[Dict]]:
        """Every order that contains ``listing_id``, even if the listing was since removed."""
        orders = self._base_queryset().filter(items__listing_ref=listing_id).distinct().order_by("-created_at")
        return service_ok([serialize_order(order) for order in orders])
