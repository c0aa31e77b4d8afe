"""
Exception hierarchy for randcache.

Sources raise SourceError subclasses; the replenishing cache absorbs the
transient ones and adapts to InsufficientBitsError where it can. Consumers
only ever see CacheEmpty (no data right now), WaitInterrupted, StreamExhausted
or a fatal insufficiency error.
"""


class RandCacheError(Exception):
    """Base class for every error raised by randcache."""


class SourceError(RandCacheError):
    """A request source failed to produce a response."""


class TransientSourceError(SourceError):
    """Network or server side failure; safe to retry later."""


class InsufficientBitsError(SourceError):
    """The upstream bit allowance cannot satisfy the request.

    `available` holds the number of bits the source reported as left just
    before the failure, or None when that amount is unknown. Callers issuing
    bulk requests may succeed again with a smaller request.
    """

    def __init__(self, message: str, available: int | None = None):
        super().__init__(message)
        self.available = available


class InsufficientRequestsError(SourceError):
    """The upstream request allowance has been used up."""


class KeyNotRunningError(SourceError):
    """The credential used against the upstream source has been stopped."""


class CacheEmpty(RandCacheError):
    """No item is queued. Not a failure of the cache itself."""


class WaitInterrupted(RandCacheError):
    """A blocking wait on a cache was interrupted before an item arrived."""


class StreamExhausted(CacheEmpty):
    """A random stream cannot obtain another blob: the quota is spent."""
