"""
Store contracts used by the order, inventory and review services.

Every method runs on the caller's connection, so a sequence of calls made
inside ``unit_of_work`` commits or rolls back together. Lookups raise
NotFoundError carrying the matching error code instead of returning None,
except ``ReviewRepository.find_by_order_id`` which is a probe.
"""

import logging
from typing import Dict, Iterable, Optional

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import Avg, Case, Count, F, Q, Value, When
from django.utils import timezone

from marketplace.catalog.domain.models import Listing, ListingStatus
from marketplace.domain.exceptions import DuplicateReviewError, NotFoundError
from marketplace.ordering.domain.models import Order, OrderItem
from marketplace.reviews.domain.models import SellerReview
from marketplace.services.base import ErrorCodes

logger = logging.getLogger(__name__)


def _get_or_raise(queryset, pk, code, label):
    try:
        return queryset.get(pk=pk)
    except (queryset.model.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFoundError(f"{label} {pk} not found", code)


class ListingRepository:
    def get(self, listing_id, for_update: bool = False) -> Listing:
        queryset = Listing.objects.select_for_update() if for_update else Listing.objects.all()
        return _get_or_raise(queryset, listing_id, ErrorCodes.LISTING_NOT_FOUND, "Listing")

    def lock_many(self, listing_ids: Iterable) -> Dict:
        """
        Lock every listing row in ascending id order and return them by id.

        A stable lock order keeps two multi-item reservations touching the
        same listings from deadlocking each other. Ids with no row are left
        out of the result so the caller can report them in its own order.
        """
        ids = sorted(set(listing_ids), key=str)
        listings = {}
        for listing_id in ids:
            try:
                listings[listing_id] = self.get(listing_id, for_update=True)
            except NotFoundError:
                continue
        return listings

    def conditional_update(self, listing_id, predicate: Q, **mutation) -> bool:
        """
        Apply ``mutation`` to the listing only if ``predicate`` still holds.

        Returns False when no row matched (missing listing or lost race).
        """
        mutation.setdefault("updated_at", timezone.now())
        updated = Listing.objects.filter(Q(pk=listing_id) & predicate).update(**mutation)
        return updated == 1

    def reserve_quantity(self, listing_id, quantity: int) -> bool:
        # status is assigned first: MySQL evaluates SET clauses left to right
        return self.conditional_update(
            listing_id,
            Q(status=ListingStatus.ACTIVE, quantity__gte=quantity),
            status=Case(When(quantity__lte=quantity, then=Value(ListingStatus.SOLD)), default=F("status")),
            quantity=F("quantity") - quantity,
        )

    def restore_quantity(self, listing_id, quantity: int) -> bool:
        """Give ``quantity`` back; a SOLD listing becomes ACTIVE, any other status is kept."""
        return self.conditional_update(
            listing_id,
            Q(),
            status=Case(When(status=ListingStatus.SOLD, then=Value(ListingStatus.ACTIVE)), default=F("status")),
            quantity=F("quantity") + quantity,
        )


class OrderRepository:
    def get(self, order_id, for_update: bool = False) -> Order:
        queryset = Order.objects.select_for_update() if for_update else Order.objects.all()
        return _get_or_raise(queryset, order_id, ErrorCodes.ORDER_NOT_FOUND, "Order")

    def create(self, items, **fields) -> Order:
        order = Order.objects.create(**fields)
        OrderItem.objects.bulk_create(
            [OrderItem(order=order, position=position, **item) for position, item in enumerate(items)]
        )
        return order

    def update(self, order: Order, *field_names) -> Order:
        order.save(update_fields=[*field_names, "updated_at"])
        return order

    def items(self, order: Order):
        return list(OrderItem.objects.filter(order=order).order_by("position"))


class ReviewRepository:
    def get(self, review_id, for_update: bool = False) -> SellerReview:
        queryset = SellerReview.objects.select_for_update() if for_update else SellerReview.objects.all()
        return _get_or_raise(queryset, review_id, ErrorCodes.REVIEW_NOT_FOUND, "Review")

    def find_by_order_id(self, order_id) -> Optional[SellerReview]:
        return SellerReview.objects.filter(order_id=order_id).first()

    def create(self, **fields) -> SellerReview:
        # Savepoint so a unique violation does not poison the outer transaction
        try:
            with transaction.atomic():
                return SellerReview.objects.create(**fields)
        except IntegrityError as e:
            logger.warning(f"Review insert rejected for order {fields.get('order_id')}: {e}")
            raise DuplicateReviewError(f"Review already exists for order {fields.get('order_id')}")

    def update(self, review: SellerReview, *field_names) -> SellerReview:
        review.save(update_fields=[*field_names, "updated_at"])
        return review

    def delete(self, review: SellerReview) -> None:
        review.delete()

    def rating_summary(self, seller_id):
        summary = SellerReview.objects.filter(seller_id=seller_id).aggregate(
            average_rating=Avg("rating"), count=Count("id")
        )
        return summary["average_rating"], summary["count"]


class UserRepository:
    def __init__(self):
        self.model = get_user_model()

    def get(self, user_id, code: str = ErrorCodes.USER_NOT_FOUND, for_update: bool = False):
        queryset = self.model.objects.select_for_update() if for_update else self.model.objects.all()
        label = "Seller" if code == ErrorCodes.SELLER_NOT_FOUND else "User"
        return _get_or_raise(queryset, user_id, code, label)

    def update_rating(self, seller_id, average_rating: Optional[float], total_reviews: int) -> None:
        self.model.objects.filter(pk=seller_id).update(average_rating=average_rating, total_reviews=total_reviews)
