"""
In-process request source for randcache.

Serves every generation method from a NumPy Generator seeded from the OS
entropy pool (or a pinned seed in tests), and meters usage against an
optional bit/request allowance exactly like a remote service would: each
request is charged estimate_bits(), and a request that would overdraw the
allowance fails with InsufficientBitsError carrying the bits still left.
That makes it a drop-in stand-in for a remote source when exercising the
cache's adaptive shrinking.
"""

import base64
import threading
import uuid

import numpy as np

from randcache.errors import InsufficientBitsError, InsufficientRequestsError
from randcache.sources.base import (
    BLOB_FORMAT_HEX,
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
from randcache.utils.seed import make_rng

logger = get_logger(__name__)

# Reported by remaining_quota() when no bit allowance is configured
UNLIMITED_QUOTA = 2**63 - 1


def _check_unique(n: int, possible: int, what: str) -> None:
    if n > possible:
        raise ValueError(f"Cannot draw {n} unique {what}: only {possible} distinct values exist")


def _uniform_below(rng: np.random.Generator, bound: int) -> int:
    """Uniform int in [0, bound) for bounds past the int64 range too."""
    if bound <= 2**63:
        return int(rng.integers(0, bound))
    nbytes = (bound.bit_length() + 7) // 8
    excess = 8 * nbytes - bound.bit_length()
    while True:
        value = int.from_bytes(rng.bytes(nbytes), "big") >> excess
        if value < bound:
            return value


def generate_integers(rng: np.random.Generator, n: int, low: int, high: int, replacement: bool = True) -> list:
    """Integers uniform over [low, high], unique when replacement is False."""
    if replacement:
        return [int(v) for v in rng.integers(low, high, size=n, endpoint=True)]
    _check_unique(n, high - low + 1, "integers")
    picks = rng.choice(high - low + 1, size=n, replace=False)
    return [int(v) + low for v in picks]


def generate_decimal_fractions(rng: np.random.Generator, n: int, decimal_places: int, replacement: bool = True) -> list:
    """Fractions k / 10**decimal_places with k uniform over [0, 10**decimal_places)."""
    scale = 10**decimal_places
    if not replacement:
        _check_unique(n, scale, "fractions")
    values = []
    seen = set()
    while len(values) < n:
        k = _uniform_below(rng, scale)
        if not replacement:
            if k in seen:
                continue
            seen.add(k)
        values.append(k / scale)
    return values


def generate_gaussians(rng: np.random.Generator, n: int, mean: float, std: float, significant_digits: int) -> list:
    """Normal deviates rounded to `significant_digits` significant figures."""
    values = []
    for v in rng.normal(mean, std, size=n):
        v = float(v)
        if v == 0.0:
            values.append(0.0)
            continue
        magnitude = int(np.floor(np.log10(abs(v))))
        values.append(round(v, significant_digits - 1 - magnitude))
    return values


def generate_strings(rng: np.random.Generator, n: int, length: int, characters: str, replacement: bool = True) -> list:
    """Strings of `length` symbols drawn from `characters`."""
    if not replacement:
        _check_unique(n, len(set(characters)) ** length, "strings")
    alphabet = np.array(list(characters))
    values = []
    seen = set()
    while len(values) < n:
        value = "".join(rng.choice(alphabet, size=length))
        if not replacement:
            if value in seen:
                continue
            seen.add(value)
        values.append(value)
    return values


def generate_uuids(rng: np.random.Generator, n: int) -> list:
    """Version 4 UUIDs as canonical strings."""
    return [str(uuid.UUID(bytes=rng.bytes(16), version=4)) for _ in range(n)]


def generate_blobs(rng: np.random.Generator, n: int, size: int, fmt: str) -> list:
    """Blobs of `size` bits, encoded as base64 (default) or hex strings."""
    blobs = []
    for _ in range(n):
        raw = rng.bytes(size // 8)
        if fmt == BLOB_FORMAT_HEX:
            blobs.append(raw.hex())
        else:
            blobs.append(base64.b64encode(raw).decode("ascii"))
    return blobs


class LocalSource(RequestSource):
    """Metered in-process request source."""

    def __init__(
        self,
        bits_allowance: int | None = None,
        requests_allowance: int | None = None,
        seed: int | None = None,
        config: dict = None,
    ):
        """Initialize the generator and allowances.

        Args:
            bits_allowance: Total bits this source will hand out. None reads
                `local_source.bits_allowance` from config (null = unlimited).
            requests_allowance: Total requests served, same defaulting rules.
            seed: Generator seed. None defers to utils.seed.make_rng().
            config: Configuration dict. If None, loads from default config.yaml.
        """
        if config is None:
            config = get_config()
        src_cfg = config.get("local_source", {})

        if bits_allowance is None:
            bits_allowance = src_cfg.get("bits_allowance")
        if requests_allowance is None:
            requests_allowance = src_cfg.get("requests_allowance")

        self._rng = make_rng(seed)
        self._rng_lock = threading.Lock()
        self._lock = threading.Lock()
        self._bits_left = bits_allowance
        self._requests_left = requests_allowance

    def fetch(self, descriptor: RequestDescriptor) -> RawResponse:
        params = descriptor.params
        n = descriptor.count
        cost = estimate_bits(descriptor.method, params, n)

        with self._lock:
            if self._requests_left is not None and self._requests_left <= 0:
                raise InsufficientRequestsError("Request allowance exhausted")
            if self._bits_left is not None and cost > self._bits_left:
                raise InsufficientBitsError(
                    f"Request needs {cost} bits but only {self._bits_left} are left",
                    available=self._bits_left,
                )

            self._charge(cost, 1)

        # Quota queries must not wait on generation
        try:
            with self._rng_lock:
                data = self._generate(descriptor.method, params, n)
        except Exception:
            with self._lock:
                self._charge(-cost, -1)
            raise

        logger.debug(f"{descriptor.method}: served n={n} for {cost} bits")
        return RawResponse(payload={"data": data}, cost=cost)

    def remaining_quota(self) -> int:
        with self._lock:
            if self._bits_left is None:
                return UNLIMITED_QUOTA
            return self._bits_left

    def _charge(self, bits: int, requests: int) -> None:
        # Caller holds self._lock
        if self._bits_left is not None:
            self._bits_left -= bits
        if self._requests_left is not None:
            self._requests_left -= requests

    def _generate(self, method: str, params, n: int) -> list:
        rng = self._rng
        if method == INTEGER_METHOD:
            return generate_integers(rng, n, params["min"], params["max"], params.get("replacement", True))
        if method == DECIMAL_FRACTION_METHOD:
            return generate_decimal_fractions(rng, n, params["decimalPlaces"], params.get("replacement", True))
        if method == GAUSSIAN_METHOD:
            return generate_gaussians(
                rng, n, params["mean"], params["standardDeviation"], params["significantDigits"]
            )
        if method == STRING_METHOD:
            return generate_strings(rng, n, params["length"], params["characters"], params.get("replacement", True))
        if method == UUID_METHOD:
            return generate_uuids(rng, n)
        if method == BLOB_METHOD:
            return generate_blobs(rng, n, params["size"], params.get("format", "base64"))
        raise ValueError(f"Unknown method: {method}")
