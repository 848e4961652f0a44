"""
OrderService - Order State Machine

Advances orders through PENDING -> PAID -> SHIPPED -> DELIVERED in response to
payment, shipment and delivery events. Each transition is one read-modify-write
on the order row under a row lock; cancellation is delegated to the
InventoryReservationService because it also restores stock.
"""

import logging
from typing import Union

from django.utils import timezone

from marketplace.domain.exceptions import InvalidTransitionError, ValidationError
from marketplace.infra import cache
from marketplace.infra.observability.metrics import order_transitions_total
from marketplace.infra.observability.tracing import add_span_attributes, tracer
from marketplace.infra.repositories import OrderRepository
from marketplace.ordering.domain.models import Order, OrderStatus, PaymentStatus
from marketplace.ordering.domain.state_machine import ensure_open, ensure_transition, payment_transition_allowed
from marketplace.ordering.domain.value_objects import (
    PaymentDetails,
    ShippingDetails,
    build_payment_details,
    build_shipping_details,
)
from marketplace.services.base import BaseService, ServiceResult
from utils.transaction_utils import run_in_unit_of_work

from .inventory_service import InventoryReservationService

logger = logging.getLogger(__name__)


class OrderService(BaseService):
    """
    Service enforcing legal order status transitions.
    """

    def __init__(
        self, order_repository: OrderRepository = None, inventory_service: InventoryReservationService = None
    ):
        """
        Initialize OrderService.

        Args:
            order_repository: Order store (injected)
            inventory_service: Reservation engine used for cancellation (injected)
        """
        super().__init__()
        self.orders = order_repository or OrderRepository()
        self.inventory_service = inventory_service or InventoryReservationService(order_repository=self.orders)

    def _transition(self, operation_name, order_id, mutate) -> ServiceResult[Order]:
        def apply():
            order = self.orders.get(order_id, for_update=True)
            previous_status = order.status
            changed_fields = mutate(order)
            self.orders.update(order, *changed_fields)
            cache.invalidate(cache.order_key(order.id))
            if order.status != previous_status:
                order_transitions_total.labels(to_status=order.status).inc()
                self.logger.info(f"Order {order.id}: {previous_status} -> {order.status}")
            return order

        with tracer.start_as_current_span(operation_name) as span:
            add_span_attributes(span, order_id=order_id)
            return run_in_unit_of_work(apply, operation_name)

    @BaseService.log_performance
    def record_payment(self, order_id, payment_details: Union[PaymentDetails, dict]) -> ServiceResult[Order]:
        """
        Record the outcome of a payment attempt.

        A COMPLETED payment on a PENDING order moves it to PAID and stamps
        ``paid_at`` with the time of this call. Other statuses only update the
        payment sub-record.

        Args:
            order_id: Order UUID
            payment_details: {status, method, transaction_id}

        Returns:
            ServiceResult with updated Order, or order_not_found /
            invalid_transition / validation_error
        """

        def mutate(order):
            payment = build_payment_details(payment_details)
            if payment is None:
                raise ValidationError("payment_details are required")
            ensure_open(order, "record payment")

            if payment.status == PaymentStatus.REFUNDED:
                raise InvalidTransitionError("Refunds are recorded with record_refund, not record_payment")
            if not payment_transition_allowed(order.payment_status, payment.status):
                raise InvalidTransitionError(
                    f"Cannot change payment of order {order.id} from {order.payment_status} to {payment.status}"
                )

            order.payment_method = payment.method
            order.transaction_id = payment.transaction_id
            order.payment_status = payment.status
            order.paid_at = timezone.now() if payment.status == PaymentStatus.COMPLETED else None

            if payment.status == PaymentStatus.COMPLETED and order.status == OrderStatus.PENDING:
                ensure_transition(order, OrderStatus.PAID)
                order.status = OrderStatus.PAID

            return ["payment_method", "transaction_id", "payment_status", "paid_at", "status"]

        return self._transition("record_payment", order_id, mutate)

    @BaseService.log_performance
    def record_shipment(self, order_id, shipping_details: Union[ShippingDetails, dict]) -> ServiceResult[Order]:
        """
        Replace the shipping sub-record of an order.

        A non-empty tracking number on a PAID order moves it to SHIPPED.
        Details without a tracking number (e.g. only a carrier name) are stored
        without a status change. A tracking number for an unpaid order is
        rejected, it would skip PAID.

        Args:
            order_id: Order UUID
            shipping_details: recipient/address fields, tracking_number, carrier,
                estimated_delivery

        Returns:
            ServiceResult with updated Order, or order_not_found /
            invalid_transition / validation_error
        """

        def mutate(order):
            shipping = build_shipping_details(shipping_details) or ShippingDetails()
            ensure_open(order, "record shipment")

            if shipping.has_tracking:
                if order.status == OrderStatus.PAID:
                    ensure_transition(order, OrderStatus.SHIPPED)
                    order.status = OrderStatus.SHIPPED
                elif order.status == OrderStatus.PENDING:
                    raise InvalidTransitionError(f"Cannot ship order {order.id} before payment is completed")

            order.recipient_name = shipping.recipient_name
            order.address = shipping.address
            order.city = shipping.city
            order.state = shipping.state
            order.zip_code = shipping.zip_code
            order.country = shipping.country
            order.tracking_number = shipping.tracking_number.strip()
            order.carrier = shipping.carrier
            order.estimated_delivery = shipping.estimated_delivery

            return [
                "recipient_name",
                "address",
                "city",
                "state",
                "zip_code",
                "country",
                "tracking_number",
                "carrier",
                "estimated_delivery",
                "status",
            ]

        return self._transition("record_shipment", order_id, mutate)

    @BaseService.log_performance
    def mark_delivered(self, order_id) -> ServiceResult[Order]:
        """
        Mark a SHIPPED order as DELIVERED, which unlocks the seller review.

        Args:
            order_id: Order UUID

        Returns:
            ServiceResult with updated Order, or order_not_found /
            invalid_transition
        """

        def mutate(order):
            if order.status != OrderStatus.SHIPPED:
                raise InvalidTransitionError(f"Cannot mark as delivered order with status: {order.status}")
            order.status = OrderStatus.DELIVERED
            order.delivered_at = timezone.now()
            return ["status", "delivered_at"]

        return self._transition("mark_delivered", order_id, mutate)

    @BaseService.log_performance
    def record_refund(self, order_id) -> ServiceResult[Order]:
        """
        Mark a COMPLETED payment as REFUNDED.

        Only the payment sub-state changes; the order status is kept.

        Args:
            order_id: Order UUID

        Returns:
            ServiceResult with updated Order, or order_not_found /
            invalid_transition
        """

        def mutate(order):
            if not payment_transition_allowed(order.payment_status, PaymentStatus.REFUNDED):
                raise InvalidTransitionError(
                    f"Cannot refund order {order.id} with payment status: {order.payment_status}"
                )
            order.payment_status = PaymentStatus.REFUNDED
            return ["payment_status"]

        return self._transition("record_refund", order_id, mutate)

    def cancel_order(self, order_id) -> ServiceResult[Order]:
        """Cancel a PENDING or PAID order, restoring its stock."""
        return self.inventory_service.cancel_order(order_id)
