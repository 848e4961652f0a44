from decimal import Decimal

from django.test import TestCase

from marketplace.models import ListingStatus, Order, OrderStatus, PaymentStatus
from marketplace.ordering.domain.services import InventoryReservationService, OrderService
from marketplace.ordering.domain.value_objects import ShippingDetails
from marketplace.services.base import ErrorCodes
from marketplace.tests.factories import ListingFactory, OrderFactory, SellerFactory, UserFactory

COMPLETED_PAYMENT = {"status": PaymentStatus.COMPLETED, "method": "card", "transaction_id": "tx_123"}


class OrderLifecycleIntegrationTest(TestCase):
    def setUp(self):
        self.buyer = UserFactory()
        self.seller = SellerFactory()
        self.listing_a = ListingFactory(seller=self.seller, quantity=3, price=Decimal("10.00"))
        self.listing_b = ListingFactory(seller=self.seller, quantity=1, price=Decimal("5.00"))
        self.inventory_service = InventoryReservationService()
        self.order_service = OrderService(inventory_service=self.inventory_service)

    def _place_order(self):
        result = self.inventory_service.reserve_and_create_order(
            self.buyer.id,
            self.seller.id,
            [
                {"listing_id": self.listing_a.id, "quantity": 2},
                {"listing_id": self.listing_b.id, "quantity": 1},
            ],
        )
        self.assertTrue(result.ok, result.error_detail)
        return result.value

    def _snapshot(self, order):
        order.refresh_from_db()
        return {field.attname: getattr(order, field.attname) for field in Order._meta.concrete_fields}

    def test_happy_path_to_delivered(self):
        order = self._place_order()

        paid = self.order_service.record_payment(order.id, COMPLETED_PAYMENT)
        self.assertEqual(paid.value.status, OrderStatus.PAID)
        self.assertEqual(paid.value.payment_status, PaymentStatus.COMPLETED)
        self.assertIsNotNone(paid.value.paid_at)

        shipped = self.order_service.record_shipment(order.id, {"tracking_number": "T1", "carrier": "CTT"})
        self.assertEqual(shipped.value.status, OrderStatus.SHIPPED)
        self.assertEqual(shipped.value.tracking_number, "T1")

        delivered = self.order_service.mark_delivered(order.id)
        self.assertEqual(delivered.value.status, OrderStatus.DELIVERED)
        self.assertIsNotNone(delivered.value.delivered_at)

    def test_mark_delivered_on_pending_order_changes_nothing(self):
        order = self._place_order()
        before = self._snapshot(order)

        result = self.order_service.mark_delivered(order.id)

        self.assertEqual(result.error, ErrorCodes.INVALID_TRANSITION)
        self.assertEqual(self._snapshot(order), before)

    def test_failed_payment_keeps_order_pending(self):
        order = self._place_order()

        result = self.order_service.record_payment(order.id, {"status": PaymentStatus.FAILED, "method": "card"})

        self.assertTrue(result.ok)
        self.assertEqual(result.value.status, OrderStatus.PENDING)
        self.assertEqual(result.value.payment_status, PaymentStatus.FAILED)
        self.assertIsNone(result.value.paid_at)

        retried = self.order_service.record_payment(order.id, COMPLETED_PAYMENT)
        self.assertEqual(retried.value.status, OrderStatus.PAID)

    def test_payment_is_required(self):
        order = self._place_order()
        self.assertEqual(self.order_service.record_payment(order.id, None).error, ErrorCodes.VALIDATION_ERROR)

    def test_refund_status_goes_through_record_refund(self):
        order = self._place_order()
        result = self.order_service.record_payment(order.id, {"status": PaymentStatus.REFUNDED})
        self.assertEqual(result.error, ErrorCodes.INVALID_TRANSITION)

    def test_shipping_details_without_tracking_do_not_advance(self):
        order = self._place_order()
        self.order_service.record_payment(order.id, COMPLETED_PAYMENT)

        result = self.order_service.record_shipment(order.id, {"carrier": "DHL", "city": "Braga"})

        self.assertEqual(result.value.status, OrderStatus.PAID)
        self.assertEqual(result.value.city, "Braga")

    def test_shipping_dataclass_with_blank_tracking_does_not_advance(self):
        order = self._place_order()
        self.order_service.record_payment(order.id, COMPLETED_PAYMENT)

        result = self.order_service.record_shipment(order.id, ShippingDetails(carrier="DHL", tracking_number=None))

        self.assertTrue(result.ok, result.error_detail)
        self.assertEqual(result.value.status, OrderStatus.PAID)
        self.assertEqual(result.value.carrier, "DHL")
        self.assertEqual(result.value.tracking_number, "")

    def test_tracking_number_on_unpaid_order_is_rejected(self):
        order = self._place_order()
        before = self._snapshot(order)

        result = self.order_service.record_shipment(order.id, {"tracking_number": "T1"})

        self.assertEqual(result.error, ErrorCodes.INVALID_TRANSITION)
        self.assertEqual(self._snapshot(order), before)

    def test_shipping_correction_after_shipment_keeps_status(self):
        order = self._place_order()
        self.order_service.record_payment(order.id, COMPLETED_PAYMENT)
        self.order_service.record_shipment(order.id, {"tracking_number": "T1"})

        result = self.order_service.record_shipment(order.id, {"tracking_number": "T2", "carrier": "UPS"})

        self.assertEqual(result.value.status, OrderStatus.SHIPPED)
        self.assertEqual(result.value.tracking_number, "T2")

    def test_record_refund(self):
        order = self._place_order()
        self.assertEqual(self.order_service.record_refund(order.id).error, ErrorCodes.INVALID_TRANSITION)

        self.order_service.record_payment(order.id, COMPLETED_PAYMENT)
        result = self.order_service.record_refund(order.id)

        self.assertEqual(result.value.payment_status, PaymentStatus.REFUNDED)
        self.assertEqual(result.value.status, OrderStatus.PAID)

    def test_unknown_order(self):
        missing = OrderFactory.build().id
        self.assertEqual(self.order_service.mark_delivered(missing).error, ErrorCodes.ORDER_NOT_FOUND)
        self.assertEqual(self.order_service.mark_delivered("garbage").error, ErrorCodes.ORDER_NOT_FOUND)


class OrderCancellationIntegrationTest(TestCase):
    def setUp(self):
        self.buyer = UserFactory()
        self.seller = SellerFactory()
        self.inventory_service = InventoryReservationService()
        self.order_service = OrderService(inventory_service=self.inventory_service)

    def _place_order(self, *items):
        result = self.inventory_service.reserve_and_create_order(
            self.buyer.id,
            self.seller.id,
            [{"listing_id": listing.id, "quantity": quantity} for listing, quantity in items],
        )
        self.assertTrue(result.ok, result.error_detail)
        return result.value

    def test_cancel_pending_order_restores_stock(self):
        listing_a = ListingFactory(seller=self.seller, quantity=3)
        listing_b = ListingFactory(seller=self.seller, quantity=1)
        order = self._place_order((listing_a, 2), (listing_b, 1))

        result = self.order_service.cancel_order(order.id)

        self.assertTrue(result.ok)
        self.assertEqual(result.value.status, OrderStatus.CANCELLED)
        self.assertIsNotNone(result.value.cancelled_at)
        listing_a.refresh_from_db()
        listing_b.refresh_from_db()
        self.assertEqual((listing_a.quantity, listing_a.status), (3, ListingStatus.ACTIVE))
        self.assertEqual((listing_b.quantity, listing_b.status), (1, ListingStatus.ACTIVE))

    def test_cancel_never_revives_deleted_listing(self):
        listing = ListingFactory(seller=self.seller, quantity=2, title="Vintage chair")
        order = self._place_order((listing, 2))
        listing.refresh_from_db()
        listing.status = ListingStatus.DELETED
        listing.title = "Removed by seller"
        listing.save()

        self.assertTrue(self.order_service.cancel_order(order.id).ok)

        listing.refresh_from_db()
        self.assertEqual(listing.status, ListingStatus.DELETED)
        self.assertEqual(listing.title, "Removed by seller")
        self.assertEqual(listing.quantity, 2)

    def test_cancel_paid_order_refunds_payment(self):
        listing = ListingFactory(seller=self.seller, quantity=2)
        order = self._place_order((listing, 1))
        self.order_service.record_payment(order.id, COMPLETED_PAYMENT)

        result = self.order_service.cancel_order(order.id)

        self.assertEqual(result.value.status, OrderStatus.CANCELLED)
        self.assertEqual(result.value.payment_status, PaymentStatus.REFUNDED)

    def test_cancel_skips_hard_deleted_listing(self):
        kept = ListingFactory(seller=self.seller, quantity=2)
        removed = ListingFactory(seller=self.seller, quantity=2)
        order = self._place_order((kept, 1), (removed, 1))
        removed.delete()

        self.assertTrue(self.order_service.cancel_order(order.id).ok)

        kept.refresh_from_db()
        self.assertEqual(kept.quantity, 2)

    def test_shipped_order_cannot_be_cancelled(self):
        listing = ListingFactory(seller=self.seller, quantity=2)
        order = self._place_order((listing, 1))
        self.order_service.record_payment(order.id, COMPLETED_PAYMENT)
        self.order_service.record_shipment(order.id, {"tracking_number": "T1"})

        result = self.order_service.cancel_order(order.id)

        self.assertEqual(result.error, ErrorCodes.INVALID_TRANSITION)
        listing.refresh_from_db()
        self.assertEqual(listing.quantity, 1)

    def test_cancelled_order_rejects_further_updates(self):
        listing = ListingFactory(seller=self.seller, quantity=2)
        order = self._place_order((listing, 1))
        self.order_service.cancel_order(order.id)

        self.assertEqual(self.order_service.cancel_order(order.id).error, ErrorCodes.INVALID_TRANSITION)
        self.assertEqual(
            self.order_service.record_payment(order.id, COMPLETED_PAYMENT).error, ErrorCodes.INVALID_TRANSITION
        )
        self.assertEqual(
            self.order_service.record_shipment(order.id, {"carrier": "DHL"}).error, ErrorCodes.INVALID_TRANSITION
        )
