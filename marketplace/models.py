from marketplace.catalog.domain.models import Listing, ListingStatus
from marketplace.ordering.domain.models import Order, OrderItem, OrderStatus, PaymentStatus
from marketplace.reviews.domain.models import SellerReview


__all__ = [
    "Listing",
    "ListingStatus",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "SellerReview",
]
