"""
Explicit read-through cache for the order and review read side.

Writers call ``invalidate`` with the keys their unit of work touched. Keys are
dropped immediately and once more after commit, so a reader that refilled an
entry from pre-commit state cannot keep it alive.
"""

import logging

from django.conf import settings
from django.core.cache import cache
from django.db import transaction

logger = logging.getLogger(__name__)

KEY_PREFIX = "marketplace"


def order_key(order_id) -> str:
    return f"{KEY_PREFIX}:order:{order_id}"


def review_key(review_id) -> str:
    return f"{KEY_PREFIX}:review:{review_id}"


def review_by_order_key(order_id) -> str:
    return f"{KEY_PREFIX}:review:order:{order_id}"


def seller_rating_key(seller_id) -> str:
    return f"{KEY_PREFIX}:seller_rating:{seller_id}"


def default_timeout() -> int:
    return getattr(settings, "MARKETPLACE", {}).get("CACHE_TIMEOUT", 600)


def read_through(key: str, loader, timeout: int = None):
    """
    Return the cached value for ``key`` or load, store and return it.

    ``loader`` returning None is treated as "not found" and is not cached.
    """
    value = cache.get(key)
    if value is not None:
        logger.debug(f"Cache hit: {key}")
        return value

    value = loader()
    if value is not None:
        cache.set(key, value, timeout if timeout is not None else default_timeout())
    return value


def invalidate(*keys: str) -> None:
    if not keys:
        return
    cache.delete_many(keys)
    transaction.on_commit(lambda: cache.delete_many(keys))
    logger.debug(f"Invalidated cache keys: {keys}")
