import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.db import connection
from django.test import TestCase, TransactionTestCase

from marketplace.infra.repositories import ListingRepository
from marketplace.models import Listing, ListingStatus, Order, OrderItem, OrderStatus, PaymentStatus
from marketplace.ordering.domain.services import InventoryReservationService
from marketplace.services.base import ErrorCodes
from marketplace.tests.factories import ListingFactory, SellerFactory, UserFactory


class ReservationIntegrationTest(TestCase):
    def setUp(self):
        self.buyer = UserFactory()
        self.seller = SellerFactory()
        self.service = InventoryReservationService()

    def _reserve(self, *items, buyer=None, **kwargs):
        return self.service.reserve_and_create_order(
            (buyer or self.buyer).id,
            self.seller.id,
            [{"listing_id": listing.id, "quantity": quantity} for listing, quantity in items],
            **kwargs,
        )

    def test_two_item_order(self):
        listing_a = ListingFactory(seller=self.seller, quantity=3, price=Decimal("10.00"))
        listing_b = ListingFactory(seller=self.seller, quantity=1, price=Decimal("5.00"))

        result = self._reserve((listing_a, 2), (listing_b, 1))

        self.assertTrue(result.ok, result.error_detail)
        order = result.value
        self.assertEqual(order.total_amount, Decimal("25.00"))
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.payment_status, PaymentStatus.PENDING)

        listing_a.refresh_from_db()
        listing_b.refresh_from_db()
        self.assertEqual((listing_a.quantity, listing_a.status), (1, ListingStatus.ACTIVE))
        self.assertEqual((listing_b.quantity, listing_b.status), (0, ListingStatus.SOLD))

        items = list(OrderItem.objects.filter(order=order).order_by("position"))
        self.assertEqual([item.listing_ref for item in items], [listing_a.id, listing_b.id])
        self.assertEqual([item.quantity for item in items], [2, 1])

    def test_total_is_exact_decimal_sum(self):
        prices = [Decimal("0.10"), Decimal("0.20"), Decimal("19.99"), Decimal("33.33")]
        quantities = [3, 7, 1, 3]
        listings = [ListingFactory(seller=self.seller, quantity=10, price=price) for price in prices]

        result = self._reserve(*zip(listings, quantities))

        self.assertTrue(result.ok)
        expected = sum((price * qty for price, qty in zip(prices, quantities)), Decimal("0"))
        self.assertEqual(expected, Decimal("121.68"))
        self.assertEqual(result.value.total_amount, expected)
        self.assertEqual(Order.objects.get(pk=result.value.pk).total_amount, expected)

    def test_reserving_all_stock_marks_listing_sold(self):
        listing = ListingFactory(seller=self.seller, quantity=4)

        self.assertTrue(self._reserve((listing, 4)).ok)

        listing.refresh_from_db()
        self.assertEqual(listing.quantity, 0)
        self.assertEqual(listing.status, ListingStatus.SOLD)

    def test_reserving_less_than_stock_keeps_listing_active(self):
        listing = ListingFactory(seller=self.seller, quantity=4)

        self.assertTrue(self._reserve((listing, 3)).ok)

        listing.refresh_from_db()
        self.assertEqual(listing.quantity, 1)
        self.assertEqual(listing.status, ListingStatus.ACTIVE)

    def test_snapshot_survives_listing_changes(self):
        listing = ListingFactory(
            seller=self.seller, quantity=2, price=Decimal("8.00"), title="Old title", image_urls=["a.jpg", "b.jpg"]
        )
        order = self._reserve((listing, 1)).value

        Listing.objects.filter(pk=listing.pk).update(title="New title", price=Decimal("99.00"))
        Listing.objects.filter(pk=listing.pk).delete()

        item = OrderItem.objects.get(order=order)
        self.assertIsNone(item.listing_id)
        self.assertEqual(item.listing_ref, listing.id)
        self.assertEqual(item.title, "Old title")
        self.assertEqual(item.price_per_unit, Decimal("8.00"))
        self.assertEqual(item.image_url, "a.jpg")

    def test_snapshot_rows_are_immutable(self):
        listing = ListingFactory(seller=self.seller, quantity=2)
        item = OrderItem.objects.get(order=self._reserve((listing, 1)).value)

        item.title = "Edited"
        with self.assertRaises(ValueError):
            item.save()

    def test_failure_on_later_item_rolls_back_earlier_decrements(self):
        listing_a = ListingFactory(seller=self.seller, quantity=5)
        listing_b = ListingFactory(seller=self.seller, quantity=1)

        result = self._reserve((listing_a, 2), (listing_b, 2))

        self.assertEqual(result.error, ErrorCodes.INSUFFICIENT_QUANTITY)
        listing_a.refresh_from_db()
        self.assertEqual(listing_a.quantity, 5)
        self.assertFalse(Order.objects.exists())

    def test_inactive_listing_is_unavailable(self):
        listing = ListingFactory(seller=self.seller, quantity=5, status=ListingStatus.DELETED)

        result = self._reserve((listing, 1))

        self.assertEqual(result.error, ErrorCodes.LISTING_UNAVAILABLE)

    def test_items_are_checked_in_request_order(self):
        inactive = ListingFactory(seller=self.seller, quantity=5, status=ListingStatus.INACTIVE)
        missing = ListingFactory.build(seller=self.seller)

        self.assertEqual(self._reserve((inactive, 1), (missing, 1)).error, ErrorCodes.LISTING_UNAVAILABLE)
        self.assertEqual(self._reserve((missing, 1), (inactive, 1)).error, ErrorCodes.LISTING_NOT_FOUND)

        inactive.refresh_from_db()
        self.assertEqual(inactive.quantity, 5)

    def test_second_buyer_of_last_unit_gets_insufficient_quantity(self):
        listing = ListingFactory(seller=self.seller, quantity=2)
        other_buyer = UserFactory()

        first = self._reserve((listing, 2))
        second = self._reserve((listing, 2), buyer=other_buyer)

        self.assertTrue(first.ok)
        self.assertIn(second.error, (ErrorCodes.INSUFFICIENT_QUANTITY, ErrorCodes.CONFLICT_RETRYABLE))
        listing.refresh_from_db()
        self.assertEqual(listing.quantity, 0)
        self.assertEqual(Order.objects.count(), 1)

    def test_conditional_update_refuses_stale_decrement(self):
        listing = ListingFactory(seller=self.seller, quantity=2)
        repository = ListingRepository()

        self.assertTrue(repository.reserve_quantity(listing.id, 2))
        # A writer holding the pre-decrement row must not drive quantity negative
        self.assertFalse(repository.reserve_quantity(listing.id, 2))

        listing.refresh_from_db()
        self.assertEqual(listing.quantity, 0)
        self.assertEqual(listing.status, ListingStatus.SOLD)

    def test_lost_race_rolls_back_and_is_retryable(self):
        listing_a = ListingFactory(seller=self.seller, quantity=5)
        listing_b = ListingFactory(seller=self.seller, quantity=5)
        real_reserve = ListingRepository.reserve_quantity

        def lose_race_on_b(repository, listing_id, quantity):
            if listing_id == listing_b.id:
                return False
            return real_reserve(repository, listing_id, quantity)

        with patch.object(ListingRepository, "reserve_quantity", autospec=True, side_effect=lose_race_on_b):
            result = self._reserve((listing_a, 1), (listing_b, 1))

        self.assertEqual(result.error, ErrorCodes.CONFLICT_RETRYABLE)
        listing_a.refresh_from_db()
        self.assertEqual(listing_a.quantity, 5)
        self.assertFalse(Order.objects.exists())

    def test_listing_must_belong_to_seller(self):
        listing = ListingFactory(quantity=5)

        result = self._reserve((listing, 1))

        self.assertEqual(result.error, ErrorCodes.VALIDATION_ERROR)

    def test_buyer_cannot_buy_from_themselves(self):
        listing = ListingFactory(seller=self.seller, quantity=5)

        result = self._reserve((listing, 1), buyer=self.seller)

        self.assertEqual(result.error, ErrorCodes.VALIDATION_ERROR)

    def test_unknown_listing_and_users(self):
        listing = ListingFactory(seller=self.seller, quantity=5)
        missing = ListingFactory.build()

        self.assertEqual(self._reserve((missing, 1)).error, ErrorCodes.LISTING_NOT_FOUND)
        self.assertEqual(
            self.service.reserve_and_create_order(
                UserFactory.build().id, self.seller.id, [{"listing_id": listing.id, "quantity": 1}]
            ).error,
            ErrorCodes.USER_NOT_FOUND,
        )
        self.assertEqual(
            self.service.reserve_and_create_order(
                self.buyer.id, SellerFactory.build().id, [{"listing_id": listing.id, "quantity": 1}]
            ).error,
            ErrorCodes.SELLER_NOT_FOUND,
        )

    def test_initial_payment_and_shipping_details(self):
        listing = ListingFactory(seller=self.seller, quantity=5)

        result = self._reserve(
            (listing, 1),
            payment_details={"status": PaymentStatus.COMPLETED, "method": "card", "transaction_id": "tx_1"},
            shipping_details={"recipient_name": "Ana", "city": "Porto"},
        )

        order = result.value
        self.assertEqual(order.payment_status, PaymentStatus.COMPLETED)
        self.assertIsNotNone(order.paid_at)
        self.assertEqual(order.shipping_details["city"], "Porto")
        # Payment recorded at creation does not skip the PENDING state
        self.assertEqual(order.status, OrderStatus.PENDING)


@pytest.mark.integration
class ConcurrentReservationTest(TransactionTestCase):
    """Two buyers racing for the whole stock on real threads and connections."""

    def test_exactly_one_full_stock_reservation_succeeds(self):
        seller = SellerFactory()
        buyers = [UserFactory(), UserFactory()]
        listing = ListingFactory(seller=seller, quantity=3)
        service = InventoryReservationService()
        barrier = threading.Barrier(len(buyers))

        def reserve(buyer):
            try:
                barrier.wait(timeout=5)
                result = service.reserve_and_create_order(
                    buyer.id, seller.id, [{"listing_id": listing.id, "quantity": 3}]
                )
                return result.ok, result.error
            finally:
                connection.close()

        with ThreadPoolExecutor(max_workers=len(buyers)) as executor:
            outcomes = list(executor.map(reserve, buyers))

        successes = [outcome for outcome in outcomes if outcome[0]]
        failures = [error for ok, error in outcomes if not ok]
        self.assertEqual(len(successes), 1, outcomes)
        self.assertEqual(len(failures), 1, outcomes)
        self.assertIn(failures[0], (ErrorCodes.INSUFFICIENT_QUANTITY, ErrorCodes.CONFLICT_RETRYABLE))

        listing.refresh_from_db()
        self.assertEqual(listing.quantity, 0)
        self.assertEqual(listing.status, ListingStatus.SOLD)
        self.assertEqual(Order.objects.count(), 1)
