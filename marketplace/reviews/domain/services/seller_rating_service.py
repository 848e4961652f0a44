"""
SellerRatingService - Seller Rating Aggregator

Keeps ``CustomUser.average_rating`` and ``CustomUser.total_reviews`` equal to
the mean and count of the seller's current reviews. Review writes call
``apply`` inside their own unit of work so the review row and the aggregate
commit together.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from marketplace.infra import cache
from marketplace.infra.observability.metrics import seller_rating_recomputations_total
from marketplace.infra.observability.tracing import add_span_attributes, tracer
from marketplace.infra.repositories import ReviewRepository, UserRepository
from marketplace.services.base import BaseService, ErrorCodes, ServiceResult
from utils.transaction_utils import run_in_unit_of_work

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SellerRating:
    seller_id: str
    average_rating: Optional[float]
    total_reviews: int

    def to_dict(self) -> dict:
        return {
            "seller_id": self.seller_id,
            "average_rating": self.average_rating,
            "total_reviews": self.total_reviews,
        }


class SellerRatingService(BaseService):
    """
    Service recomputing seller rating aggregates from the review set.
    """

    def __init__(self, review_repository: ReviewRepository = None, user_repository: UserRepository = None):
        super().__init__()
        self.reviews = review_repository or ReviewRepository()
        self.users = user_repository or UserRepository()

    @BaseService.log_performance
    def recompute_seller_rating(self, seller_id) -> ServiceResult[SellerRating]:
        """
        Recompute one seller's aggregate in its own unit of work.

        Args:
            seller_id: Seller user id

        Returns:
            ServiceResult with the new SellerRating or seller_not_found
        """
        with tracer.start_as_current_span("recompute_seller_rating") as span:
            add_span_attributes(span, seller_id=seller_id)
            return run_in_unit_of_work(lambda: self.apply(seller_id), "recompute_seller_rating")

    def apply(self, seller_id) -> SellerRating:
        """
        Recompute inside the caller's transaction.

        The seller row is locked first so two review writes for the same
        seller serialize and the last one to commit sees every review.
        """
        seller = self.users.get(seller_id, ErrorCodes.SELLER_NOT_FOUND, for_update=True)

        average, count = self.reviews.rating_summary(seller.pk)
        average_rating = float(average) if count else None

        self.users.update_rating(seller.pk, average_rating, count)
        cache.invalidate(cache.seller_rating_key(seller.pk))
        seller_rating_recomputations_total.inc()

        self.logger.info(f"Seller {seller.pk} rating recomputed: average={average_rating}, reviews={count}")
        return SellerRating(seller_id=str(seller.pk), average_rating=average_rating, total_reviews=count)
