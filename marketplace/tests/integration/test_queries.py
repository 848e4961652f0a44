from io import StringIO

import pytest
from django.core.management import CommandError, call_command

from marketplace.infra import cache
from marketplace.models import OrderStatus, PaymentStatus
from marketplace.ordering.domain.services import OrderQueryService, OrderService
from marketplace.reviews.domain.services import ReviewQueryService
from marketplace.tests.factories import (
    DeliveredOrderFactory,
    OrderFactory,
    OrderItemFactory,
    SellerFactory,
    SellerReviewFactory,
    UserFactory,
)


@pytest.mark.integration
@pytest.mark.django_db
class TestOrderQueries:
    def setup_method(self):
        self.service = OrderQueryService()

    def test_get_order_serializes_items_and_names(self):
        order = OrderFactory()
        item = OrderItemFactory(order=order, quantity=2)

        result = self.service.get_order(order.id)

        assert result.ok
        data = result.value
        assert data["id"] == str(order.id)
        assert data["buyer_name"] == order.buyer.display_name
        assert data["seller_name"] == order.seller.display_name
        assert data["items"] == [
            {
                "listing_id": str(item.listing_ref),
                "title": item.title,
                "quantity": 2,
                "price_per_unit": item.price_per_unit,
                "image_url": item.image_url,
            }
        ]
        assert data["payment_details"]["status"] == PaymentStatus.PENDING

    def test_get_order_is_cached_until_a_write(self):
        order = OrderFactory(payment_status=PaymentStatus.PENDING)
        assert self.service.get_order(order.id).value["status"] == OrderStatus.PENDING
        assert cache.cache.get(cache.order_key(order.id)) is not None

        OrderService().record_payment(order.id, {"status": PaymentStatus.COMPLETED})

        assert cache.cache.get(cache.order_key(order.id)) is None
        assert self.service.get_order(order.id).value["status"] == OrderStatus.PAID

    def test_missing_order(self):
        assert self.service.get_order(OrderFactory.build().id).error == "order_not_found"
        assert self.service.get_order("not-a-uuid").error == "order_not_found"

    def test_buyer_orders_are_paginated_and_filtered(self):
        buyer = UserFactory()
        OrderFactory.create_batch(3, buyer=buyer)
        DeliveredOrderFactory(buyer=buyer)
        OrderFactory()  # someone else's

        page = self.service.list_buyer_orders(buyer.id, page=1, page_size=3).value
        assert page["count"] == 4
        assert page["num_pages"] == 2
        assert len(page["results"]) == 3

        delivered = self.service.list_buyer_orders(buyer.id, status=OrderStatus.DELIVERED).value
        assert delivered["count"] == 1

    def test_seller_orders(self):
        seller = SellerFactory()
        OrderFactory.create_batch(2, seller=seller)

        assert self.service.list_seller_orders(seller.id).value["count"] == 2

    def test_orders_for_listing(self):
        item = OrderItemFactory()
        OrderItemFactory(order=OrderFactory(seller=item.order.seller), listing=item.listing)
        OrderItemFactory()

        result = self.service.get_orders_for_listing(item.listing_ref)

        assert len(result.value) == 2


@pytest.mark.integration
@pytest.mark.django_db
class TestReviewQueries:
    def setup_method(self):
        self.service = ReviewQueryService()

    def test_get_review_and_by_order(self):
        review = SellerReviewFactory(rating=4)

        assert self.service.get_review(review.id).value["rating"] == 4
        assert self.service.get_review_by_order(review.order_id).value["id"] == str(review.id)

    def test_missing_reviews(self):
        assert self.service.get_review(SellerReviewFactory.build().id).error == "review_not_found"
        assert self.service.get_review_by_order(DeliveredOrderFactory().id).error == "review_not_found"

    def test_lists(self):
        seller = SellerFactory()
        reviews = [SellerReviewFactory(order=DeliveredOrderFactory(seller=seller)) for _ in range(3)]

        seller_page = self.service.list_seller_reviews(seller.id, page_size=2).value
        assert seller_page["count"] == 3
        assert len(seller_page["results"]) == 2

        buyer_page = self.service.list_buyer_reviews(reviews[0].buyer_id).value
        assert [r["id"] for r in buyer_page["results"]] == [str(reviews[0].id)]

    def test_unknown_seller_rating(self):
        assert self.service.get_seller_rating(SellerFactory.build().id).error == "seller_not_found"


@pytest.mark.integration
@pytest.mark.django_db
class TestRecomputeSellerRatingsCommand:
    def test_rebuilds_stale_aggregates(self):
        seller = SellerFactory(average_rating=2.0, total_reviews=7)
        SellerReviewFactory(order=DeliveredOrderFactory(seller=seller), rating=5)
        out = StringIO()

        call_command("recompute_seller_ratings", stdout=out)

        seller.refresh_from_db()
        assert seller.average_rating == 5.0
        assert seller.total_reviews == 1
        assert "Updated 1 seller ratings" in out.getvalue()

    def test_dry_run_writes_nothing(self):
        seller = SellerFactory(average_rating=2.0, total_reviews=7)
        out = StringIO()

        call_command("recompute_seller_ratings", "--dry-run", stdout=out)

        seller.refresh_from_db()
        assert seller.total_reviews == 7
        assert "DRY RUN" in out.getvalue()

    def test_single_seller(self):
        target = SellerFactory(total_reviews=3)
        other = SellerFactory(total_reviews=3)

        call_command("recompute_seller_ratings", "--seller-id", str(target.id), stdout=StringIO())

        target.refresh_from_db()
        other.refresh_from_db()
        assert target.total_reviews == 0
        assert other.total_reviews == 3

    def test_unknown_seller(self):
        with pytest.raises(CommandError):
            call_command("recompute_seller_ratings", "--seller-id", "nope", stdout=StringIO())
