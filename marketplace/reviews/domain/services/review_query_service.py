"""
ReviewQueryService - Review Read Side

Single reviews and seller rating aggregates are served through the
read-through cache; lists are paginated straight from the database.
"""

import logging
from typing import Dict

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError

from marketplace.infra import cache
from marketplace.reviews.domain.models import SellerReview
from marketplace.services.base import BaseService, ErrorCodes, ServiceResult, service_err, service_ok

logger = logging.getLogger(__name__)


def serialize_review(review: SellerReview) -> Dict:
    return {
        "id": str(review.id),
        "seller_id": str(review.seller_id),
        "buyer_id": str(review.buyer_id),
        "buyer_name": review.buyer.display_name,
        "order_id": str(review.order_id),
        "rating": review.rating,
        "comment": review.comment,
        "verified": review.verified,
        "created_at": review.created_at,
        "updated_at": review.updated_at,
    }


class ReviewQueryService(BaseService):
    """
    Read-only access to seller reviews and rating aggregates.
    """

    def __init__(self):
        super().__init__()
        self.rating_cache_timeout = getattr(settings, "MARKETPLACE", {}).get("SELLER_RATING_CACHE_TIMEOUT", 3600)

    def _lookup(self, key, **filters):
        def load():
            review = SellerReview.objects.select_related("buyer").filter(**filters).first()
            return serialize_review(review) if review else None

        try:
            return cache.read_through(key, load)
        except (DjangoValidationError, ValueError) as e:
            self.logger.info(f"Review lookup {filters} failed: {e}")
            return None

    def get_review(self, review_id) -> ServiceResult[Dict]:
        data = self._lookup(cache.review_key(review_id), pk=review_id)
        if data is None:
            return service_err(ErrorCodes.REVIEW_NOT_FOUND, f"Review {review_id} not found")
        return service_ok(data)

    def get_review_by_order(self, order_id) -> ServiceResult[Dict]:
        """Review attached to ``order_id``; review_not_found if the order has none yet."""
        data = self._lookup(cache.review_by_order_key(order_id), order_id=order_id)
        if data is None:
            return service_err(ErrorCodes.REVIEW_NOT_FOUND, f"No review for order {order_id}")
        return service_ok(data)

    def _paginate(self, queryset, page: int, page_size: int) -> Dict:
        page = max(page, 1)
        offset = (page - 1) * page_size
        total_count = queryset.count()
        return {
            "results": [serialize_review(review) for review in queryset[offset : offset + page_size]],
            "count": total_count,
            "page": page,
            "page_size": page_size,
            "num_pages": (total_count + page_size - 1) // page_size,
        }

    @BaseService.log_performance
    def list_seller_reviews(self, seller_id, page: int = 1, page_size: int = 20) -> ServiceResult[Dict]:
        """
        List reviews received by a seller, newest first.

        Args:
            seller_id: Seller user id
            page: Page number
            page_size: Items per page

        Returns:
            ServiceResult with paginated review list
        """
        queryset = SellerReview.objects.select_related("buyer").filter(seller_id=seller_id).order_by("-created_at")
        return service_ok(self._paginate(queryset, page, page_size))

    @BaseService.log_performance
    def list_buyer_reviews(self, buyer_id, page: int = 1, page_size: int = 20) -> ServiceResult[Dict]:
        queryset = SellerReview.objects.select_related("buyer").filter(buyer_id=buyer_id).order_by("-created_at")
        return service_ok(self._paginate(queryset, page, page_size))

    def get_seller_rating(self, seller_id) -> ServiceResult[Dict]:
        """
        Get a seller's stored rating aggregate (cached).

        The cache entry is dropped by SellerRatingService whenever the
        aggregate is recomputed.

        Returns:
            ServiceResult with {seller_id, average_rating, total_reviews} or
            seller_not_found
        """

        def load():
            row = (
                get_user_model()
                .objects.filter(pk=seller_id)
                .values("id", "average_rating", "total_reviews")
                .first()
            )
            if row is None:
                return None
            return {
                "seller_id": str(row["id"]),
                "average_rating": row["average_rating"],
                "total_reviews": row["total_reviews"],
            }

        try:
            data = cache.read_through(cache.seller_rating_key(seller_id), load, self.rating_cache_timeout)
        except (DjangoValidationError, ValueError) as e:
            self.logger.info(f"Seller rating lookup for {seller_id!r} failed: {e}")
            data = None

        if data is None:
            return service_err(ErrorCodes.SELLER_NOT_FOUND, f"Seller {seller_id} not found")
        return service_ok(data)
