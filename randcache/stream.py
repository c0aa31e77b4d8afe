"""
Bit-exact random stream over a cache of blobs.

RandomStream consumes blobs (opaque byte buffers) from a ReplenishingCache
and hands out random integers of any width from 0 to 32 bits. Whole bytes
are copied straight from the current blob; the sub-byte remainder comes from
a small bit buffer that holds the unused low-order bits of the last byte it
pulled, so no bit is discarded or reused across calls or across blob
boundaries.

Derived operations (bounded ints, floats, shuffles) are composed on top of
next() through randcache.algorithms.

A stream is meant for a single caller. Threads sharing one stream must
serialize their calls themselves.

Usage:
    stream = RandomStream.for_client(RandomClient(LocalSource()))
    die = stream.next_bounded_int(6) + 1
"""

import base64
import binascii
import operator
import time

from randcache import algorithms
from randcache.cache import ReplenishingCache, fatal_error
from randcache.errors import (
    CacheEmpty,
    InsufficientBitsError,
    InsufficientRequestsError,
    KeyNotRunningError,
    SourceError,
    StreamExhausted,
)
from randcache.health import check_blob
from randcache.sources.base import BLOB_FORMAT_BASE64, BLOB_FORMAT_HEX
from randcache.utils.config import get_config
from randcache.utils.logger import get_logger

logger = get_logger(__name__)

MASKS = algorithms.MASKS

# Blob size limits in bits
MIN_BLOB_BITS = 8
MAX_BLOB_BITS = 1048576


def normalize_blob_bits(blob_bits: int) -> int:
    """Round up to a whole number of bytes and clamp to [8, 1048576]."""
    if blob_bits <= 0:
        return MIN_BLOB_BITS
    if blob_bits > MAX_BLOB_BITS:
        return MAX_BLOB_BITS
    return -(-blob_bits // 8) * 8


class RandomStream:
    """Sequential bit extractor bound to one blob cache."""

    def __init__(
        self,
        cache: ReplenishingCache,
        poll_interval: float | None = None,
        health_check: bool | None = None,
        config: dict = None,
    ):
        """Bind the stream to a cache.

        Args:
            cache: Cache whose items are blobs, or one-element lists of blobs.
                Blobs may be bytes, base64 strings or hex strings (the cache
                descriptor's `format` parameter decides between the two).
            poll_interval: Seconds to sleep between attempts while the cache
                is empty. None reads `stream.poll_interval_seconds`.
            health_check: Run check_blob() on every new blob. None reads
                `stream.health_check`.
            config: Configuration dict. If None, loads from default config.yaml.
        """
        if config is None:
            config = get_config()
        stream_cfg = config.get("stream", {})

        self._cache = cache
        self._poll_interval = (
            poll_interval if poll_interval is not None else stream_cfg.get("poll_interval_seconds", 0.1)
        )
        self._health_check = health_check if health_check is not None else stream_cfg.get("health_check", False)
        self._health_alpha = stream_cfg.get("health_alpha", 0.01)

        self._blob = None
        self._blob_index = 0
        # Unused low-order bits of the last byte pulled for sub-byte reads
        self._bit_buffer = 0
        self._bit_buffer_length = 0
        self._consumed_bits = 0

    @classmethod
    def for_client(cls, client, cache_size: int | None = None, blob_bits: int | None = None, **kwargs):
        """Create a stream with its own blob cache on `client`.

        Args:
            client: RandomClient whose source supplies the blobs.
            cache_size: Blobs kept ahead of the stream (minimum 2).
                None reads `stream.cache_size`.
            blob_bits: Bits per blob. None reads `stream.blob_bits`.
        """
        stream_cfg = client.config.get("stream", {})
        if cache_size is None:
            cache_size = stream_cfg.get("cache_size", 2)
        if blob_bits is None:
            blob_bits = stream_cfg.get("blob_bits", 256)
        blob_bits = normalize_blob_bits(blob_bits)

        cache = client.create_blob_cache(1, blob_bits, BLOB_FORMAT_BASE64, cache_size)
        kwargs.setdefault("config", client.config)
        return cls(cache, **kwargs)

    @property
    def cache(self) -> ReplenishingCache:
        return self._cache

    @property
    def consumed_bits(self) -> int:
        """Total bits handed out by next() so far."""
        return self._consumed_bits

    def remaining_quota(self) -> int:
        """Bits still available upstream. May lag behind live fetches."""
        return self._cache.source.remaining_quota()

    # --- Primitive ---

    def next(self, bits: int) -> int:
        """Return an int whose low `bits` bits are random, all others zero.

        Blocks while a new blob has to be fetched.

        Raises:
            ValueError: if bits is outside 0..32.
            StreamExhausted: if no further blob can be obtained.
        """
        bits = operator.index(bits)
        if bits < 0 or bits > algorithms.MAX_DRAW_BITS:
            raise ValueError(f"bits must be within 0..32, got {bits}")

        # whole bytes, then the sub-byte remainder above them
        num_bytes, num_sub = divmod(bits, 8)

        value = int.from_bytes(self._take_bytes(num_bytes), "big")
        if num_sub > 0:
            value |= self._get_sub_bits(num_sub) << (8 * num_bytes)

        self._consumed_bits += bits
        return value & MASKS[bits]

    # --- Derived operations ---

    def next_bounded_int(self, n: int) -> int:
        """Uniform int in [0, n). See algorithms.bounded_int."""
        return algorithms.bounded_int(self.next, n)

    def getrandbits(self, k: int) -> int:
        return algorithms.random_bits(self.next, k)

    def randbytes(self, n: int) -> bytes:
        return algorithms.random_bytes(self.next, n)

    def randrange(self, start: int, stop: int | None = None, step: int = 1) -> int:
        return algorithms.randrange(self.next, start, stop, step)

    def random(self) -> float:
        return algorithms.random_float(self.next)

    def next_bool(self) -> bool:
        return algorithms.random_bool(self.next)

    def shuffle(self, items) -> None:
        algorithms.shuffle(self.next, items)

    # --- Blob handling ---

    def _take_bytes(self, count: int) -> bytes:
        """Copy `count` whole bytes, moving to the next blob as needed."""
        out = bytearray()
        while len(out) < count:
            if self._blob is None or self._blob_index >= len(self._blob):
                self._move_to_next_blob()
            take = min(count - len(out), len(self._blob) - self._blob_index)
            out += self._blob[self._blob_index:self._blob_index + take]
            self._blob_index += take
        return bytes(out)

    def _get_sub_bits(self, num_bits: int) -> int:
        """Return `num_bits` (1..7) random bits in the low end of an int.

        Leftover buffered bits end up above the bits taken from a freshly
        pulled byte; within a byte, bits are used least significant first.
        """
        if num_bits < 1 or num_bits > 7:
            raise ValueError("Only 1 to 7 bits can be fetched")

        b = 0
        bits = num_bits

        if self._bit_buffer_length < num_bits:
            while self._blob is None or self._blob_index >= len(self._blob):
                self._move_to_next_blob()

            # keep what is left in the buffer, make room below it
            b = self._bit_buffer & MASKS[self._bit_buffer_length]
            bits -= self._bit_buffer_length
            b <<= bits

            self._bit_buffer = self._blob[self._blob_index]
            self._blob_index += 1
            self._bit_buffer_length = 8

        b |= self._bit_buffer & MASKS[bits]
        self._bit_buffer >>= bits
        self._bit_buffer_length -= bits
        return b

    def _move_to_next_blob(self) -> None:
        """Replace the current blob with the next one from the cache.

        Polls the cache until a blob arrives. Gives up only when the cache
        died of a fatal error or the upstream quota is exhausted.
        """
        while True:
            try:
                item = self._cache.get()
            except CacheEmpty:
                error = self._cache.error
                if error is not None:
                    raise fatal_error(error) from error
                self._check_quota()
                time.sleep(self._poll_interval)
                continue

            self._blob = self._decode_blob(item)
            self._blob_index = 0
            if self._health_check:
                self._log_health(self._blob)
            return

    def _check_quota(self) -> None:
        try:
            quota = self.remaining_quota()
        except (KeyNotRunningError, InsufficientRequestsError, InsufficientBitsError) as e:
            logger.info(f"Quota query failed: {type(e).__name__}: {e}")
            raise StreamExhausted(f"No blob available: {e}") from e
        except SourceError as e:
            logger.info(f"Quota query failed: {type(e).__name__}: {e}")
            return
        if quota <= 0:
            raise StreamExhausted("No blob available and the upstream quota is exhausted")

    def _decode_blob(self, item) -> bytes:
        blob = item[0] if isinstance(item, (list, tuple)) else item
        if isinstance(blob, (bytes, bytearray, memoryview)):
            return bytes(blob)
        fmt = self._cache.descriptor.params.get("format", BLOB_FORMAT_BASE64)
        try:
            if fmt == BLOB_FORMAT_HEX:
                return bytes.fromhex(blob)
            return base64.b64decode(blob, validate=True)
        except (ValueError, binascii.Error) as e:
            raise ValueError(f"Cannot decode {fmt} blob: {e}") from e

    def _log_health(self, blob: bytes) -> None:
        health = check_blob(blob, self._health_alpha)
        if not health.passed:
            logger.warning(
                f"Blob of {health.num_bits} bits failed the frequency test "
                f"(p={health.frequency_p:.4g}, entropy={health.entropy:.3f})"
            )
