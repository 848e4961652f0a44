from prometheus_client import Counter, Histogram


# Order Metrics
orders_placed_total = Counter("marketplace_orders_placed_total", "Total orders placed", ["status"])
order_value = Histogram(
    "marketplace_order_value",
    "Order value distribution",
    buckets=[10, 50, 100, 200, 500, 1000, 2000, 5000, float("inf")],
)
orders_cancelled_total = Counter("marketplace_orders_cancelled_total", "Total orders cancelled")
order_transitions_total = Counter(
    "marketplace_order_transitions_total", "Order status transitions applied", ["to_status"]
)

# Stock Metrics
stock_reservation_failures = Counter(
    "marketplace_stock_reservation_failure", "Stock reservation failures", ["reason"]
)
conflict_retries_total = Counter(
    "marketplace_conflict_retries_total", "Operations retried after losing a concurrent update", ["operation"]
)

# Review Metrics
reviews_written_total = Counter("marketplace_reviews_written_total", "Seller review writes", ["action"])
seller_rating_recomputations_total = Counter(
    "marketplace_seller_rating_recomputations_total", "Seller rating aggregate recomputations"
)
