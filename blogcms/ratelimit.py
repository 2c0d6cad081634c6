"""
Process-local fixed-window rate limiting.

Built on the ``limits`` package (the engine behind slowapi) using its
in-memory async storage.  Counters live in this process only, so with
several workers each one keeps its own window table; the limited actions
here (view counting, comment cooldown) tolerate that approximation.
"""
import logging
import math
import time

from limits import RateLimitItem, parse
from limits.aio.storage import MemoryStorage
from limits.aio.strategies import FixedWindowRateLimiter

from blogcms.config import settings

logger = logging.getLogger(__name__)

LOOPBACK_CLIENT_ID = "127.0.0.1"


def client_id_from_headers(headers) -> str:
    """
    Return the client address from ``X-Forwarded-For`` (first hop), or the
    loopback placeholder when the header is absent or blank.
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return LOOPBACK_CLIENT_ID


class WindowRateLimiter:
    """
    Allow one action per window for each composite key.

    ``hit(*parts)`` records an attempt for the key built from *parts* and
    returns True only while the window count is within the limit.
    """

    def __init__(self, namespace: str, rate: str) -> None:
        self.namespace = namespace
        self.item: RateLimitItem = parse(rate)
        self.reset()

    def reset(self) -> None:
        """Drop every window.  Used by tests and on reconfiguration."""
        self._storage = MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)

    async def hit(self, *parts: str) -> bool:
        allowed = await self._strategy.hit(self.item, self.namespace, *parts)
        if not allowed:
            logger.debug("Rate limit hit for %s:%s", self.namespace, ":".join(parts))
        return allowed

    async def retry_after(self, *parts: str) -> int:
        """Seconds until the current window for *parts* resets (at least 1)."""
        stats = await self._strategy.get_window_stats(self.item, self.namespace, *parts)
        return max(1, math.ceil(stats.reset_time - time.time()))


# Module-level singletons shared across all request handlers.
view_limiter = WindowRateLimiter("views", settings.VIEW_RATE_LIMIT)
comment_limiter = WindowRateLimiter("comments", settings.COMMENT_RATE_LIMIT)
