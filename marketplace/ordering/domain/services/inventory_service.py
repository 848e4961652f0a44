"""
InventoryReservationService - Reservation and Cancellation

Validates a multi-item purchase, decrements listing quantities and creates the
order as one unit of work; reverses those effects when an order is cancelled.

Decrements are conditional UPDATEs (``quantity >= requested``) so a buyer who
loses a race on a low-stock listing gets insufficient_quantity or
conflict_retryable instead of driving the quantity negative.
"""

import logging
from decimal import Decimal
from typing import Iterable, Optional, Union

from django.conf import settings
from django.utils import timezone

from marketplace.catalog.domain.models import ListingStatus
from marketplace.domain.exceptions import (
    ConflictRetryableError,
    InsufficientQuantityError,
    InvalidTransitionError,
    ListingUnavailableError,
    NotFoundError,
    ValidationError,
)
from marketplace.infra import cache
from marketplace.infra.observability.metrics import (
    order_transitions_total,
    order_value,
    orders_cancelled_total,
    orders_placed_total,
    stock_reservation_failures,
)
from marketplace.infra.observability.tracing import add_span_attributes, tracer
from marketplace.infra.repositories import ListingRepository, OrderRepository, UserRepository
from marketplace.ordering.domain.models import Order, OrderStatus, PaymentStatus
from marketplace.ordering.domain.state_machine import CANCELLABLE_STATUSES
from marketplace.ordering.domain.value_objects import (
    PaymentDetails,
    RequestedItem,
    ShippingDetails,
    build_payment_details,
    build_requested_items,
    build_shipping_details,
    parse_id,
)
from marketplace.services.base import BaseService, ErrorCodes, ServiceResult
from utils.transaction_utils import retry_on_conflict, run_in_unit_of_work

logger = logging.getLogger(__name__)


class InventoryReservationService(BaseService):
    """
    Service owning every listing quantity mutation made on behalf of orders.
    """

    def __init__(
        self,
        listing_repository: ListingRepository = None,
        order_repository: OrderRepository = None,
        user_repository: UserRepository = None,
    ):
        """
        Initialize InventoryReservationService.

        Args:
            listing_repository: Listing store (injected)
            order_repository: Order store (injected)
            user_repository: User store used to resolve buyer and seller (injected)
        """
        super().__init__()
        self.listings = listing_repository or ListingRepository()
        self.orders = order_repository or OrderRepository()
        self.users = user_repository or UserRepository()

    @BaseService.log_performance
    @retry_on_conflict()
    def reserve_and_create_order(
        self,
        buyer_id,
        seller_id,
        requested_items: Iterable[Union[RequestedItem, dict]],
        payment_details: Optional[Union[PaymentDetails, dict]] = None,
        shipping_details: Optional[Union[ShippingDetails, dict]] = None,
    ) -> ServiceResult[Order]:
        """
        Reserve stock for every requested item and create the order atomically.

        Items are processed in request order: each listing must be ACTIVE and
        hold at least the requested quantity. Any failure rolls back every
        decrement already made, so no partial reservation is ever visible.

        Args:
            buyer_id: Buyer user id
            seller_id: Seller user id; every listing must belong to this seller
            requested_items: Sequence of {listing_id, quantity}
            payment_details: Optional initial payment sub-record
            shipping_details: Optional initial shipping sub-record

        Returns:
            ServiceResult with the created Order (status PENDING) or one of
            listing_not_found, listing_unavailable, insufficient_quantity,
            conflict_retryable, validation_error, user_not_found, seller_not_found
        """
        with tracer.start_as_current_span("reserve_and_create_order") as span:
            add_span_attributes(span, buyer_id=buyer_id, seller_id=seller_id)

            result = run_in_unit_of_work(
                lambda: self._reserve(buyer_id, seller_id, requested_items, payment_details, shipping_details),
                "reserve_and_create_order",
            )

            if result.ok:
                order = result.value
                orders_placed_total.labels(status="success").inc()
                order_value.observe(float(order.total_amount))
                span.set_attribute("order.id", str(order.id))
                span.set_attribute("order.total", str(order.total_amount))
            else:
                orders_placed_total.labels(status="failure").inc()
                if result.error in (
                    ErrorCodes.INSUFFICIENT_QUANTITY,
                    ErrorCodes.LISTING_UNAVAILABLE,
                    ErrorCodes.CONFLICT_RETRYABLE,
                ):
                    stock_reservation_failures.labels(reason=result.error).inc()

            return result

    def _reserve(self, buyer_id, seller_id, requested_items, payment_details, shipping_details) -> Order:
        items = build_requested_items(requested_items)
        payment = build_payment_details(payment_details)
        shipping = build_shipping_details(shipping_details)

        buyer = self.users.get(parse_id(buyer_id, "buyer_id"), ErrorCodes.USER_NOT_FOUND)
        seller = self.users.get(parse_id(seller_id, "seller_id"), ErrorCodes.SELLER_NOT_FOUND)
        if buyer.pk == seller.pk:
            raise ValidationError("Buyers cannot purchase their own listings")

        listings = self.listings.lock_many(item.listing_id for item in items)

        snapshots = []
        total_amount = Decimal("0")
        for item in items:
            listing = listings.get(item.listing_id)
            if listing is None:
                raise NotFoundError(f"Listing {item.listing_id} not found", ErrorCodes.LISTING_NOT_FOUND)

            if listing.seller_id != seller.pk:
                raise ValidationError(f"Listing {listing.id} is not sold by seller {seller.pk}")

            if listing.status not in (ListingStatus.ACTIVE, ListingStatus.SOLD):
                raise ListingUnavailableError(f"Listing is not active: {listing.id} ({listing.status})")

            # A SOLD listing is out of stock, not withdrawn
            if listing.status == ListingStatus.SOLD:
                raise InsufficientQuantityError(
                    f"Listing is sold out: {listing.title}. Requested: {item.quantity}"
                )

            if listing.quantity < item.quantity:
                raise InsufficientQuantityError(
                    f"Not enough quantity available for: {listing.title}. "
                    f"Available: {listing.quantity}, Requested: {item.quantity}"
                )

            snapshots.append(
                {
                    "listing": listing,
                    "listing_ref": listing.id,
                    "title": listing.title,
                    "quantity": item.quantity,
                    "price_per_unit": listing.price,
                    "image_url": listing.primary_image_url,
                }
            )
            total_amount += listing.price * item.quantity

            if not self.listings.reserve_quantity(listing.id, item.quantity):
                raise ConflictRetryableError(f"Listing {listing.id} changed while reserving {item.quantity}")

            self.logger.debug(
                f"Stock reserved: listing={listing.id}, quantity={item.quantity}, "
                f"stock: {listing.quantity} -> {listing.quantity - item.quantity}"
            )

        order_fields = {
            "buyer": buyer,
            "seller": seller,
            "status": OrderStatus.PENDING,
            "total_amount": total_amount,
            "currency": getattr(settings, "MARKETPLACE", {}).get("DEFAULT_CURRENCY", "EUR"),
            "payment_status": PaymentStatus.PENDING,
        }
        if payment is not None:
            order_fields.update(
                payment_method=payment.method,
                transaction_id=payment.transaction_id,
                payment_status=payment.status,
                paid_at=timezone.now() if payment.status == PaymentStatus.COMPLETED else None,
            )
        if shipping is not None:
            order_fields.update(
                recipient_name=shipping.recipient_name,
                address=shipping.address,
                city=shipping.city,
                state=shipping.state,
                zip_code=shipping.zip_code,
                country=shipping.country,
                tracking_number=shipping.tracking_number,
                carrier=shipping.carrier,
                estimated_delivery=shipping.estimated_delivery,
            )

        order = self.orders.create(snapshots, **order_fields)

        self.logger.info(
            f"Created order {order.id} for buyer {buyer.pk}: {len(snapshots)} items, total {total_amount}"
        )
        return order

    @BaseService.log_performance
    def cancel_order(self, order_id) -> ServiceResult[Order]:
        """
        Cancel a PENDING or PAID order and give its stock back.

        Every item's quantity is restored to its listing; SOLD listings become
        ACTIVE again, other statuses (DELETED, INACTIVE, ...) are left alone.
        A COMPLETED payment is marked REFUNDED; moving the money back is the
        payment provider's job.

        Args:
            order_id: Order UUID

        Returns:
            ServiceResult with the cancelled Order, or order_not_found /
            invalid_transition
        """
        with tracer.start_as_current_span("cancel_order") as span:
            add_span_attributes(span, order_id=order_id)
            result = run_in_unit_of_work(lambda: self._cancel(order_id), "cancel_order")
            if result.ok:
                orders_cancelled_total.inc()
                order_transitions_total.labels(to_status=OrderStatus.CANCELLED).inc()
            return result

    def _cancel(self, order_id) -> Order:
        order = self.orders.get(order_id, for_update=True)

        if order.status not in CANCELLABLE_STATUSES:
            raise InvalidTransitionError(f"Cannot cancel order with status: {order.status}")

        # Same ascending lock order as reservation
        for item in sorted(self.orders.items(order), key=lambda i: str(i.listing_ref)):
            if self.listings.restore_quantity(item.listing_ref, item.quantity):
                self.logger.debug(f"Stock released: listing={item.listing_ref}, quantity={item.quantity}")
            else:
                self.logger.warning(
                    f"Listing {item.listing_ref} no longer exists; skipped restoring {item.quantity} "
                    f"for order {order.id}"
                )

        order.status = OrderStatus.CANCELLED
        order.cancelled_at = timezone.now()
        if order.payment_status == PaymentStatus.COMPLETED:
            order.payment_status = PaymentStatus.REFUNDED
        self.orders.update(order, "status", "cancelled_at", "payment_status")

        cache.invalidate(cache.order_key(order.id))
        self.logger.info(f"Cancelled order {order.id}")
        return order
