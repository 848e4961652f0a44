"""
ReviewService - Seller Review Management

Creates, edits and removes seller reviews. Every write recomputes the
seller's rating aggregate in the same transaction, so a committed review set
and its aggregate can never disagree.
"""

import logging
from typing import Optional

from marketplace.domain.exceptions import (
    DuplicateReviewError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from marketplace.infra import cache
from marketplace.infra.observability.metrics import reviews_written_total
from marketplace.infra.observability.tracing import add_span_attributes, tracer
from marketplace.infra.repositories import OrderRepository, ReviewRepository, UserRepository
from marketplace.ordering.domain.models import OrderStatus
from marketplace.ordering.domain.value_objects import parse_id
from marketplace.reviews.domain.models import SellerReview
from marketplace.services.base import BaseService, ErrorCodes, ServiceResult
from utils.transaction_utils import run_in_unit_of_work

from .seller_rating_service import SellerRatingService

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


def validate_rating(rating) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError(f"rating must be an integer, got {rating!r}")
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(f"Rating must be between {MIN_RATING} and {MAX_RATING}")
    return rating


def _ensure_author(review: SellerReview, buyer_id) -> None:
    if buyer_id is not None and review.buyer_id != parse_id(buyer_id, "buyer_id"):
        raise PermissionDeniedError(f"User {buyer_id} is not the author of review {review.id}")


class ReviewService(BaseService):
    """
    Service for managing seller reviews.

    Responsibilities:
    - Create review (only for a DELIVERED order, by its buyer, once)
    - Update review rating/comment
    - Delete review
    - Recompute the seller aggregate via SellerRatingService after each write

    Dependencies:
    - SellerRatingService: runs inside the review's unit of work
    """

    def __init__(
        self,
        review_repository: ReviewRepository = None,
        order_repository: OrderRepository = None,
        seller_rating_service: SellerRatingService = None,
        user_repository: UserRepository = None,
    ):
        """
        Initialize ReviewService.

        Args:
            review_repository: Review store (injected)
            order_repository: Order store (injected)
            seller_rating_service: Aggregator (injected)
            user_repository: User store used to lock the reviewed seller (injected)
        """
        super().__init__()
        self.reviews = review_repository or ReviewRepository()
        self.orders = order_repository or OrderRepository()
        self.users = user_repository or UserRepository()
        self.seller_rating_service = seller_rating_service or SellerRatingService(
            review_repository=self.reviews, user_repository=self.users
        )

    def _invalidate(self, review: SellerReview) -> None:
        cache.invalidate(cache.review_key(review.id), cache.review_by_order_key(review.order_id))

    @BaseService.log_performance
    def create_review(self, order_id, buyer_id, rating: int, comment: str = "") -> ServiceResult[SellerReview]:
        """
        Create the review for a delivered order.

        Seller and buyer are taken from the order, never from the caller, and
        the review is marked verified since it is backed by a real delivery.

        Args:
            order_id: Order UUID
            buyer_id: Id of the user writing the review; must be the order's buyer
            rating: Rating (1-5)
            comment: Review text

        Returns:
            ServiceResult with the created SellerReview, or order_not_found /
            invalid_transition / duplicate_review / permission_denied /
            validation_error
        """

        def create():
            validate_rating(rating)
            order = self.orders.get(order_id, for_update=True)

            if order.status != OrderStatus.DELIVERED:
                raise InvalidTransitionError(
                    f"Order {order.id} is {order.status}; only delivered orders can be reviewed"
                )

            # Lock the seller before the first plain read; REPEATABLE READ fixes the snapshot there
            self.users.get(order.seller_id, ErrorCodes.SELLER_NOT_FOUND, for_update=True)

            if self.reviews.find_by_order_id(order.id) is not None:
                raise DuplicateReviewError(f"Order {order.id} has already been reviewed")

            if order.buyer_id != parse_id(buyer_id, "buyer_id"):
                raise PermissionDeniedError(f"User {buyer_id} is not the buyer of order {order.id}")

            review = self.reviews.create(
                order=order,
                seller_id=order.seller_id,
                buyer_id=order.buyer_id,
                rating=rating,
                comment=comment or "",
                verified=True,
            )
            self.seller_rating_service.apply(order.seller_id)
            self._invalidate(review)

            self.logger.info(f"Created review {review.id} for order {order.id} (seller {order.seller_id})")
            return review

        with tracer.start_as_current_span("create_review") as span:
            add_span_attributes(span, order_id=order_id, buyer_id=buyer_id)
            result = run_in_unit_of_work(create, "create_review")
            if result.ok:
                reviews_written_total.labels(action="create").inc()
            return result

    @BaseService.log_performance
    def update_review(
        self, review_id, rating: Optional[int] = None, comment: Optional[str] = None, buyer_id=None
    ) -> ServiceResult[SellerReview]:
        """
        Update a review's rating and/or comment.

        Args:
            review_id: Review UUID
            rating: New rating (optional)
            comment: New comment (optional)
            buyer_id: If given, must be the review author

        Returns:
            ServiceResult with updated SellerReview
        """

        def update():
            review = self.reviews.get(review_id, for_update=True)
            _ensure_author(review, buyer_id)

            changed = []
            if rating is not None:
                review.rating = validate_rating(rating)
                changed.append("rating")
            if comment is not None:
                review.comment = comment
                changed.append("comment")

            if changed:
                self.reviews.update(review, *changed)
                self.seller_rating_service.apply(review.seller_id)
                self._invalidate(review)
                self.logger.info(f"Updated review {review.id}: {', '.join(changed)}")
            return review

        with tracer.start_as_current_span("update_review") as span:
            add_span_attributes(span, review_id=review_id)
            result = run_in_unit_of_work(update, "update_review")
            if result.ok:
                reviews_written_total.labels(action="update").inc()
            return result

    @BaseService.log_performance
    def delete_review(self, review_id, buyer_id=None) -> ServiceResult[bool]:
        """
        Delete a review and recompute the seller's rating.

        Args:
            review_id: Review UUID
            buyer_id: If given, must be the review author

        Returns:
            ServiceResult with True if deleted, False if no such review
        """

        def delete():
            try:
                review = self.reviews.get(review_id, for_update=True)
            except NotFoundError:
                self.logger.info(f"Review {review_id} not found; nothing to delete")
                return False

            _ensure_author(review, buyer_id)
            seller_id = review.seller_id
            self._invalidate(review)
            self.reviews.delete(review)
            self.seller_rating_service.apply(seller_id)

            self.logger.info(f"Deleted review {review_id} (seller {seller_id})")
            return True

        with tracer.start_as_current_span("delete_review") as span:
            add_span_attributes(span, review_id=review_id)
            result = run_in_unit_of_work(delete, "delete_review")
            if result.ok and result.value:
                reviews_written_total.labels(action="delete").inc()
            return result
