"""
The request source seam.

A request source takes a RequestDescriptor, performs one fetch and returns a
RawResponse (payload plus bit cost), or raises one of the SourceError
subclasses from randcache.errors. How the fetch travels (HTTP, JSON-RPC,
an in-process generator) is the source's business; the cache only sees
this contract.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping


INTEGER_METHOD = "generateIntegers"
DECIMAL_FRACTION_METHOD = "generateDecimalFractions"
GAUSSIAN_METHOD = "generateGaussians"
STRING_METHOD = "generateStrings"
UUID_METHOD = "generateUUIDs"
BLOB_METHOD = "generateBlobs"

BLOB_FORMAT_BASE64 = "base64"
BLOB_FORMAT_HEX = "hex"

# Random bits in a version 4 UUID
UUID_SIZE = 122


class RequestDescriptor:
    """Immutable request template whose count field may be rewritten.

    Only the owning cache's refill thread calls set_count(); everything else
    about the request is fixed at construction.
    """

    def __init__(self, method: str, params: Mapping[str, Any], count: int, count_key: str = "n"):
        self._method = method
        self._params = MappingProxyType(dict(params))
        self._count_key = count_key
        self.count = count

    @property
    def method(self) -> str:
        return self._method

    @property
    def params(self) -> Mapping[str, Any]:
        return self._params

    @property
    def count_key(self) -> str:
        return self._count_key

    def set_count(self, count: int) -> None:
        if count < 1:
            raise ValueError(f"Request count must be positive, got {count}")
        self.count = count

    def as_request(self) -> dict:
        """Return the full parameter dict for one fetch."""
        request = dict(self._params)
        request[self._count_key] = self.count
        return request

    def __repr__(self) -> str:
        return f"RequestDescriptor({self._method!r}, {dict(self._params)!r}, {self._count_key}={self.count})"


@dataclass(frozen=True)
class RawResponse:
    """One fetch result: a decodable payload and the bits it cost."""

    payload: Any
    cost: int


class RequestSource(ABC):
    """Upstream producer of random data consumed by ReplenishingCache."""

    @abstractmethod
    def fetch(self, descriptor: RequestDescriptor) -> RawResponse:
        """Perform one request. Raises a SourceError subclass on failure."""

    @abstractmethod
    def remaining_quota(self) -> int:
        """Bits still retrievable upstream. May be a stale, last-observed value."""


def estimate_bits(method: str, params: Mapping[str, Any], n: int) -> int:
    """Upper bound, in bits, of the randomness one request consumes.

    Args:
        method: One of the *_METHOD constants.
        params: Request parameters (without the count).
        n: Number of values requested.

    Returns:
        Bit cost, rounded up.
    """
    if method == INTEGER_METHOD:
        span = params["max"] - params["min"] + 1
        return math.ceil(math.log2(span) * n)
    if method == DECIMAL_FRACTION_METHOD:
        return math.ceil(math.log2(10) * params["decimalPlaces"] * n)
    if method == GAUSSIAN_METHOD:
        return math.ceil(math.log2(10 ** params["significantDigits"]) * n)
    if method == STRING_METHOD:
        return math.ceil(math.log2(len(params["characters"])) * params["length"] * n)
    if method == UUID_METHOD:
        return UUID_SIZE * n
    if method == BLOB_METHOD:
        return params["size"] * n
    raise ValueError(f"Unknown method: {method}")
