"""
Tests for the cache factory.

Verifies:
  - Bulk ordering rules (half the cache size, only with replacement)
  - Per-result-set bit cost used for adaptive shrinking
  - Decoded item shapes for each kind of cache
  - End-to-end shrinking against a metered LocalSource
"""

import math
import uuid

import pytest

from randcache.client import RandomClient
from randcache.errors import CacheEmpty, InsufficientBitsError
from randcache.sources.local import LocalSource


class TestFactoryRules:
    """Descriptor and bulk settings chosen by each create_* method."""

    def test_integer_cache_bulk(self, make_source):
        client = RandomClient(make_source())
        cache = client.create_integer_cache(4, 1, 6, cache_size=10)

        assert cache.bulk_count == 5
        assert cache.per_item_count == 4
        assert cache.descriptor.count == 20
        assert cache.descriptor.params["min"] == 1
        assert cache._unit_cost == math.ceil(math.log2(6) * 4)

    def test_no_bulk_without_replacement(self, make_source):
        client = RandomClient(make_source())
        cache = client.create_integer_cache(4, 1, 100, replacement=False, cache_size=10)

        assert cache.bulk_count == 0
        assert cache.descriptor.count == 4

    def test_cache_size_floor(self, make_source):
        client = RandomClient(make_source())
        cache = client.create_string_cache(2, 8, "abcdef", cache_size=1)

        assert cache.cache_size == 2
        assert cache.bulk_count == 1

    def test_default_sizes_from_config(self, make_source):
        config = {"cache": {"default_size": 6, "small_size": 4}}
        client = RandomClient(make_source(), config=config)

        assert client.create_decimal_fraction_cache(3, 5).cache_size == 6
        assert client.create_uuid_cache(2).cache_size == 4

    def test_gaussian_always_bulk(self, make_source):
        client = RandomClient(make_source())
        cache = client.create_gaussian_cache(3, 0.0, 1.0, 6, cache_size=8)

        assert cache.bulk_count == 4
        assert cache.descriptor.count == 12
        assert cache._unit_cost == math.ceil(math.log2(10**6) * 3)

    def test_remaining_quota_delegates(self, make_source):
        client = RandomClient(make_source(quota=77))
        assert client.remaining_quota() == 77


class TestDecodedItems:
    """Item shapes produced by caches over a LocalSource."""

    @pytest.fixture
    def client(self):
        return RandomClient(LocalSource(seed=5))

    def test_integer_items(self, client):
        cache = client.create_integer_cache(5, 1, 6, cache_size=4)
        item = cache.get_or_wait()
        assert len(item) == 5
        assert all(1 <= v <= 6 for v in item)

    def test_unique_integers(self, client):
        cache = client.create_integer_cache(10, 1, 10, replacement=False, cache_size=2)
        assert sorted(cache.get_or_wait()) == list(range(1, 11))

    def test_decimal_items(self, client):
        item = client.create_decimal_fraction_cache(4, 3, cache_size=2).get_or_wait()
        assert all(0.0 <= v < 1.0 and round(v, 3) == v for v in item)

    def test_string_items(self, client):
        item = client.create_string_cache(3, 6, "xyz", cache_size=2).get_or_wait()
        assert all(len(s) == 6 and set(s) <= set("xyz") for s in item)

    def test_uuid_items(self, client):
        item = client.create_uuid_cache(2, cache_size=2).get_or_wait()
        assert all(isinstance(u, uuid.UUID) and u.version == 4 for u in item)

    def test_blob_items(self, client):
        item = client.create_blob_cache(2, 64, cache_size=2).get_or_wait()
        assert len(item) == 2
        assert all(isinstance(b, str) for b in item)


class TestMeteredSource:
    """Adaptive shrinking driven by a real bit allowance."""

    def test_shrinks_then_stops(self, wait_until):
        # 5 x 64-bit blobs per bulk request, but only 200 bits to spend:
        # shrink to 3 blobs (192 bits), then 8 bits left is fatal
        client = RandomClient(LocalSource(bits_allowance=200, seed=3))
        cache = client.create_blob_cache(1, 64, cache_size=10)

        assert wait_until(lambda: cache.error is not None)
        assert cache.bulk_count == 3
        assert cache.descriptor.count == 3
        assert cache.used_bits() == 192
        assert cache.used_requests() == 1
        assert cache.size() == 3
        assert client.remaining_quota() == 8

        for _ in range(3):
            assert len(cache.get()) == 1
        with pytest.raises(InsufficientBitsError):
            cache.get_or_wait()
        with pytest.raises(CacheEmpty):
            cache.get()
