"""
Self-replenishing cache of upstream random data.

A ReplenishingCache keeps a bounded FIFO of decoded items topped up by a
single daemon thread that issues one request at a time against a
RequestSource. Consumers take items without blocking (get) or wait for one
(get_or_wait). In bulk mode one request is split client-side into
`bulk_count` items of `per_item_count` values each, and the bulk count is
shrunk in place when the source reports that fewer bits are available than
a full bulk request needs.

Usage:
    cache = ReplenishingCache(source, decode, descriptor, cache_size=10,
                              bulk_count=5, per_item_count=4, unit_cost=128)
    item = cache.get_or_wait()
"""

import threading
from collections import deque
from typing import Any, Callable, Sequence

from randcache.errors import CacheEmpty, InsufficientBitsError, WaitInterrupted
from randcache.sources.base import RawResponse, RequestDescriptor, RequestSource
from randcache.utils.config import get_config
from randcache.utils.logger import get_logger

logger = get_logger(__name__)


def split_bulk(values: Sequence, per_item_count: int) -> list:
    """Split a flat bulk result into consecutive items of equal length.

    Args:
        values: Flat sequence returned by one bulk request.
        per_item_count: Number of values in each item.

    Returns:
        List of slices, in original order, each `per_item_count` long.
    """
    if per_item_count < 1:
        raise ValueError(f"per_item_count must be positive, got {per_item_count}")
    if len(values) % per_item_count != 0:
        raise ValueError(
            f"Bulk result of length {len(values)} does not split into items of {per_item_count}"
        )
    return [values[i:i + per_item_count] for i in range(0, len(values), per_item_count)]


def fatal_error(stored: InsufficientBitsError) -> InsufficientBitsError:
    """Fresh copy of a cache's stored fatal error, for raising `from` it.

    Each waiter gets its own exception object, so tracebacks do not pile up
    on the stored one.
    """
    return InsufficientBitsError(str(stored), available=stored.available)


class ReplenishingCache:
    """Bounded FIFO of items kept full by a background refill thread.

    The refill thread is the only producer and the only writer of the
    descriptor's count. The pause flag, the queue and the wake-up signals
    all share one lock.
    """

    def __init__(
        self,
        source: RequestSource,
        decode: Callable[[RawResponse], Any],
        descriptor: RequestDescriptor,
        cache_size: int,
        bulk_count: int = 0,
        per_item_count: int = 0,
        unit_cost: int = 0,
        retry_initial: float | None = None,
        retry_max: float | None = None,
        name: str | None = None,
        config: dict = None,
    ):
        """Set up the queue and start the refill thread.

        Args:
            source: Upstream request source.
            decode: Turns a RawResponse into an item (or, in bulk mode, a flat
                sequence that is split into items).
            descriptor: Request template; owned by this cache from now on.
            cache_size: Number of items to try to keep queued.
            bulk_count: Items per bulk request, 0 for single requests.
            per_item_count: Values per item when issuing bulk requests.
            unit_cost: Bits one item costs, for shrinking bulk requests.
            retry_initial: First backoff delay after a failed fetch (seconds).
            retry_max: Backoff ceiling (seconds).
            name: Thread name, for logs.
            config: Configuration dict. If None, loads from default config.yaml.
        """
        if cache_size < 1:
            raise ValueError(f"cache_size must be positive, got {cache_size}")
        if bulk_count > 0 and per_item_count < 1:
            raise ValueError("Bulk caches need a positive per_item_count")

        if config is None:
            config = get_config()
        cache_cfg = config.get("cache", {})

        self._source = source
        self._decode = decode
        self._descriptor = descriptor
        self._cache_size = cache_size
        self._bulk_count = bulk_count
        self._per_item_count = per_item_count
        self._unit_cost = unit_cost

        self._retry_initial = (
            retry_initial if retry_initial is not None else cache_cfg.get("retry_initial_seconds", 0.05)
        )
        self._retry_max = retry_max if retry_max is not None else cache_cfg.get("retry_max_seconds", 5.0)
        self._failures = 0

        self._queue = deque()
        # Items whose fetch completed after stop(); released on resume()
        self._held = []

        self._lock = threading.Lock()
        self._wake = threading.Condition(self._lock)
        self._not_empty = threading.Condition(self._lock)
        self._paused = False
        self._interrupts = 0
        self._error = None

        self._used_bits = 0
        self._used_requests = 0

        self._thread = threading.Thread(
            target=self._populate,
            name=name or f"randcache-{descriptor.method}",
            daemon=True,
        )
        self._thread.start()

    # --- Consumers ---

    def get(self):
        """Return the oldest queued item without blocking.

        Raises:
            CacheEmpty: if nothing is queued.
        """
        with self._lock:
            if not self._queue:
                raise CacheEmpty("No cached values available")
            item = self._queue.popleft()
            self._wake.notify()
            return item

    def get_or_wait(self):
        """Return the oldest item, blocking until one is available.

        Blocks forever if the cache is paused and empty; check is_paused()
        first. Callers wanting a bounded wait must arrange their own timeout
        (for example by calling interrupt() from a timer).

        Raises:
            WaitInterrupted: interrupt() was called while waiting.
            InsufficientBitsError: the refill thread died of a fatal
                insufficiency and the queue is empty.
        """
        with self._lock:
            interrupts = self._interrupts
            while not self._queue:
                if self._error is not None:
                    raise fatal_error(self._error) from self._error
                if self._interrupts != interrupts:
                    raise WaitInterrupted("Interrupted while waiting for a cached value")
                self._not_empty.wait()
            item = self._queue.popleft()
            self._wake.notify()
            return item

    def interrupt(self) -> None:
        """Wake every thread blocked in get_or_wait() with WaitInterrupted."""
        with self._lock:
            self._interrupts += 1
            self._not_empty.notify_all()

    # --- Control ---

    def stop(self) -> None:
        """Stop fetching. Queued items stay available."""
        with self._lock:
            self._paused = True
            self._wake.notify()

    def resume(self) -> None:
        """Resume fetching after stop()."""
        with self._lock:
            self._paused = False
            self._wake.notify()

    def is_paused(self) -> bool:
        with self._lock:
            return self._paused

    # --- Observability ---

    def size(self) -> int:
        """Number of items get() can return without a refill."""
        with self._lock:
            return len(self._queue)

    def used_bits(self) -> int:
        with self._lock:
            return self._used_bits

    def used_requests(self) -> int:
        with self._lock:
            return self._used_requests

    @property
    def error(self):
        """The fatal error that stopped the refill thread, if any."""
        with self._lock:
            return self._error

    @property
    def cache_size(self) -> int:
        return self._cache_size

    @property
    def bulk_count(self) -> int:
        return self._bulk_count

    @property
    def per_item_count(self) -> int:
        return self._per_item_count

    @property
    def descriptor(self) -> RequestDescriptor:
        return self._descriptor

    @property
    def source(self) -> RequestSource:
        return self._source

    # --- Refill thread ---

    def _populate(self) -> None:
        """Keep issuing requests until the queue is full, then wait for room.

        In bulk mode a request is only issued when the whole bulk response
        fits; otherwise a request is issued every time an item is consumed.
        Only one request is in flight at any time.
        """
        logger.debug(f"Refill thread started for {self._descriptor!r}")
        while True:
            with self._lock:
                while self._paused:
                    self._wake.wait()
                self._release_held()

                if self._bulk_count > 0:
                    has_room = len(self._queue) < self._cache_size - self._bulk_count
                else:
                    has_room = len(self._queue) < self._cache_size

                if not has_room:
                    self._wake.wait()
                    continue

            try:
                self._refill()
            except InsufficientBitsError as e:
                if not self._shrink_bulk(e):
                    self._fail(e)
                    return
            except Exception as e:
                # Transient: leave state alone and try again after a backoff
                logger.info(f"Cache populate exception: {type(e).__name__}: {e}")
                self._backoff()

    def _refill(self) -> None:
        response = self._source.fetch(self._descriptor)

        with self._lock:
            self._used_bits += response.cost
            self._used_requests += 1

        result = self._decode(response)
        if self._bulk_count > 0:
            items = split_bulk(result, self._per_item_count)
        else:
            items = [result]

        with self._lock:
            if self._paused:
                self._held.extend(items)
            else:
                self._queue.extend(items)
                self._not_empty.notify_all()
        self._failures = 0

    def _release_held(self) -> None:
        # Caller holds the lock
        if self._held:
            self._queue.extend(self._held)
            self._held = []
            self._not_empty.notify_all()

    def _shrink_bulk(self, error: InsufficientBitsError) -> bool:
        """Rewrite the bulk request to fit the bits still available.

        Returns:
            True if the request was shrunk, False if shrinking is impossible.
        """
        available = error.available
        if self._bulk_count <= 0 or available is None or available < 0:
            return False
        if self._unit_cost <= 0 or self._unit_cost >= available:
            return False

        # Drop at least one set even when the estimate says the bulk fits
        new_bulk = min(available // self._unit_cost, self._bulk_count - 1)
        if new_bulk < 1:
            return False

        logger.warning(
            f"Only {available} bits left; shrinking bulk request from "
            f"{self._bulk_count} to {new_bulk} result sets"
        )
        self._bulk_count = new_bulk
        self._descriptor.set_count(new_bulk * self._per_item_count)
        return True

    def _fail(self, error: Exception) -> None:
        logger.error(f"Cache refill stopped: {type(error).__name__}: {error}")
        with self._lock:
            self._error = error
            self._not_empty.notify_all()

    def _backoff(self) -> None:
        self._failures += 1
        delay = min(self._retry_initial * 2 ** min(self._failures - 1, 32), self._retry_max)
        if delay <= 0:
            return
        with self._lock:
            self._wake.wait(timeout=delay)
