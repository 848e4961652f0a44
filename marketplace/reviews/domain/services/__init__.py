from .review_query_service import ReviewQueryService
from .review_service import ReviewService, validate_rating
from .seller_rating_service import SellerRating, SellerRatingService


__all__ = [
    "ReviewQueryService",
    "ReviewService",
    "SellerRating",
    "SellerRatingService",
    "validate_rating",
]
