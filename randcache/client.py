"""
Cache factory for randcache.

RandomClient wraps a RequestSource and builds ReplenishingCache instances
for each kind of request. Where the request allows it (values drawn with
replacement), caches order in bulk: the initial bulk count is half the cache
size, and the cache shrinks it later if the source runs short of bits.

Usage:
    from randcache.client import RandomClient
    from randcache.sources.local import LocalSource
    client = RandomClient(LocalSource())
    dice = client.create_integer_cache(5, 1, 6)
    roll = dice.get_or_wait()      # list of 5 ints
"""

import uuid

from randcache.cache import ReplenishingCache
from randcache.sources.base import (
    BLOB_FORMAT_BASE64,
    BLOB_METHOD,
    DECIMAL_FRACTION_METHOD,
    GAUSSIAN_METHOD,
    INTEGER_METHOD,
    STRING_METHOD,
    UUID_METHOD,
    RawResponse,
    RequestDescriptor,
    RequestSource,
    estimate_bits,
)
from randcache.utils.config import get_config
from randcache.utils.logger import get_logger

logger = get_logger(__name__)

# Smallest cache size accepted; smaller requests are raised to it
MIN_CACHE_SIZE = 2


def decode_values(response: RawResponse) -> list:
    return list(response.payload["data"])


def decode_uuids(response: RawResponse) -> list:
    return [uuid.UUID(str(v)) for v in response.payload["data"]]


class RandomClient:
    """Builds replenishing caches on top of one request source."""

    def __init__(self, source: RequestSource, config: dict = None):
        if config is None:
            config = get_config()
        self.source = source
        self.config = config

        cache_cfg = config.get("cache", {})
        self.default_cache_size = cache_cfg.get("default_size", 20)
        self.small_cache_size = cache_cfg.get("small_size", 10)

    def remaining_quota(self) -> int:
        """Bits still available upstream, as last observed by the source."""
        return self.source.remaining_quota()

    def create_integer_cache(self, n: int, min: int, max: int, replacement: bool = True, cache_size: int | None = None):
        """Cache of result sets of `n` integers in [min, max]."""
        params = {"min": min, "max": max, "replacement": replacement}
        return self._create_cache(INTEGER_METHOD, params, n, replacement, cache_size, self.default_cache_size)

    def create_decimal_fraction_cache(
        self, n: int, decimal_places: int, replacement: bool = True, cache_size: int | None = None
    ):
        """Cache of result sets of `n` fractions in [0, 1)."""
        params = {"decimalPlaces": decimal_places, "replacement": replacement}
        return self._create_cache(
            DECIMAL_FRACTION_METHOD, params, n, replacement, cache_size, self.default_cache_size
        )

    def create_gaussian_cache(
        self, n: int, mean: float, standard_deviation: float, significant_digits: int, cache_size: int | None = None
    ):
        """Cache of result sets of `n` normal deviates."""
        params = {
            "mean": mean,
            "standardDeviation": standard_deviation,
            "significantDigits": significant_digits,
        }
        return self._create_cache(GAUSSIAN_METHOD, params, n, True, cache_size, self.default_cache_size)

    def create_string_cache(
        self, n: int, length: int, characters: str, replacement: bool = True, cache_size: int | None = None
    ):
        """Cache of result sets of `n` strings over `characters`."""
        params = {"length": length, "characters": characters, "replacement": replacement}
        return self._create_cache(STRING_METHOD, params, n, replacement, cache_size, self.default_cache_size)

    def create_uuid_cache(self, n: int, cache_size: int | None = None):
        """Cache of result sets of `n` uuid.UUID values."""
        return self._create_cache(
            UUID_METHOD, {}, n, True, cache_size, self.small_cache_size, decode=decode_uuids
        )

    def create_blob_cache(self, n: int, size: int, format: str = BLOB_FORMAT_BASE64, cache_size: int | None = None):
        """Cache of result sets of `n` encoded blobs of `size` bits each."""
        params = {"size": size, "format": format}
        return self._create_cache(BLOB_METHOD, params, n, True, cache_size, self.small_cache_size)

    def _create_cache(self, method, params, n, bulk, cache_size, default_size, decode=decode_values):
        if cache_size is None:
            cache_size = default_size
        if cache_size < MIN_CACHE_SIZE:
            cache_size = MIN_CACHE_SIZE

        # Bulk-order when values may repeat across result sets
        if bulk:
            bulk_count = cache_size // 2
            descriptor = RequestDescriptor(method, params, bulk_count * n)
        else:
            bulk_count = 0
            descriptor = RequestDescriptor(method, params, n)

        # Single result set cost, for shrinking bulk requests later
        unit_cost = estimate_bits(method, params, n)

        logger.debug(
            f"Creating {method} cache: size={cache_size}, bulk={bulk_count}, n={n}, unit_cost={unit_cost}"
        )
        return ReplenishingCache(
            self.source,
            decode,
            descriptor,
            cache_size,
            bulk_count=bulk_count,
            per_item_count=n,
            unit_cost=unit_cost,
            config=self.config,
        )
