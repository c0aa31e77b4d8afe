"""
Pseudo-random fallback for empty caches.

ReplenishingCache.get() never blocks: when nothing is queued it raises
CacheEmpty and leaves the caller to decide. These helpers implement the
usual decision, substituting locally generated pseudo-random data.
"""

from typing import Any, Callable

import numpy as np

from randcache.cache import ReplenishingCache
from randcache.errors import CacheEmpty
from randcache.utils.logger import get_logger
from randcache.utils.seed import make_rng

logger = get_logger(__name__)


def get_or_fallback(cache: ReplenishingCache, fallback: Callable[[], Any]):
    """Return the next cached item, or `fallback()` if the cache is empty."""
    try:
        return cache.get()
    except CacheEmpty:
        logger.debug("Cache empty, using pseudo-random fallback")
        return fallback()


def pseudo_random_blob(nbytes: int, rng: np.random.Generator | None = None) -> bytes:
    """Blob of `nbytes` pseudo-random bytes (NOT from the upstream source)."""
    if rng is None:
        rng = make_rng()
    return rng.bytes(nbytes)
