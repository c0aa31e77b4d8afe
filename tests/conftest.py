"""
Shared fixtures: scripted request sources and a fake blob cache.

ScriptedSource serves consecutive integers (0, 1, 2, ...) so tests can check
ordering, and plays back a script of errors/responses before that.
FakeBlobCache hands a RandomStream fixed blobs without a refill thread.
"""

import threading
import time
from collections import deque

import pytest

from randcache.errors import CacheEmpty
from randcache.sources.base import RawResponse, RequestDescriptor, RequestSource


class ScriptedSource(RequestSource):
    """Request source that replays a script, then counts upwards.

    Script entries are exceptions (raised) or RawResponse objects (returned).
    Once the script is used up each fetch returns the next `count` integers,
    at a cost of one bit per value.
    """

    def __init__(self, script=None, quota=10**6, gate: threading.Event | None = None):
        self.script = deque(script or [])
        self.quota = quota
        self.gate = gate
        self.requests = []
        self.counter = 0
        self._lock = threading.Lock()

    def fetch(self, descriptor: RequestDescriptor) -> RawResponse:
        with self._lock:
            self.requests.append(descriptor.as_request())
            entry = self.script.popleft() if self.script else None

        if self.gate is not None:
            self.gate.wait()

        if isinstance(entry, Exception):
            raise entry
        if entry is not None:
            return entry

        with self._lock:
            n = descriptor.count
            data = list(range(self.counter, self.counter + n))
            self.counter += n
        return RawResponse(payload={"data": data}, cost=n)

    def remaining_quota(self) -> int:
        if isinstance(self.quota, Exception):
            raise self.quota
        return self.quota


class FakeDescriptor:
    def __init__(self, fmt="base64"):
        self.params = {"format": fmt}


class FakeBlobCache:
    """Minimal stand-in for ReplenishingCache as seen by RandomStream."""

    def __init__(self, blobs, quota=10**6, empty_gets=0, fmt="base64", error=None):
        self.blobs = deque(blobs)
        self.source = ScriptedSource(quota=quota)
        self.descriptor = FakeDescriptor(fmt)
        self.empty_gets = empty_gets
        self.error = error
        self.gets = 0

    def get(self):
        self.gets += 1
        if self.empty_gets > 0:
            self.empty_gets -= 1
            raise CacheEmpty("scripted empty")
        if not self.blobs:
            raise CacheEmpty("no blobs left")
        return [self.blobs.popleft()]


def decode_data(response):
    return list(response.payload["data"])


@pytest.fixture
def wait_until():
    """Poll `predicate` until it holds or `timeout` seconds pass."""

    def _wait(predicate, timeout=5.0, interval=0.005):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()

    return _wait


@pytest.fixture
def fast_retry():
    """Backoff settings that keep failing-source tests quick."""
    return {"retry_initial": 0.001, "retry_max": 0.01}


@pytest.fixture
def make_source():
    return ScriptedSource


@pytest.fixture
def make_blob_cache():
    return FakeBlobCache


@pytest.fixture
def decode():
    return decode_data
