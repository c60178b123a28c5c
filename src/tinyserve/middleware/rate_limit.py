"""
=============================================================================
RATE LIMITING MIDDLEWARE
=============================================================================

Per-client admission control using FIXED WINDOWS.

=============================================================================
FIXED WINDOW ALGORITHM
=============================================================================

Each client key owns a counter and the instant its window ends:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                  FIXED WINDOW (limit = 3, window = 60s)             │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   t=0s   req  → entry {count: 1, reset_at: 60}   allowed            │
    │   t=5s   req  → {count: 2}                       allowed            │
    │   t=9s   req  → {count: 3}                       allowed            │
    │   t=12s  req  → {count: 4}                       REJECTED (429)     │
    │   t=20s  req  → {count: 5}                       REJECTED (429)     │
    │   ────────────────────── window ends at 60s ──────────────────────   │
    │   t=61s  req  → fresh entry {count: 1, reset_at: 121}  allowed      │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    KEY PROPERTIES:

    1. The entry is created lazily on the first request from a key.
    2. Every call increments, rejected ones included. A client that keeps
       hammering stays rejected until the window ends.
    3. Once reset_at has passed the entry is REPLACED, not incremented.
    4. Admission is decided from this call's post-increment count.

Compared with the token bucket, a fixed window allows up to 2x the limit
across a window boundary, but it is O(1) per request and its state is
two numbers per client.

=============================================================================
THREAD SAFETY & MEMORY
=============================================================================

The key map is the only state shared between request threads. Every read
and write goes through one lock. Expired entries are removed by
``cleanup()``, which a daemon sweeper thread runs once per window.

=============================================================================
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional
import logging
import math
import threading
import time

from .base import Middleware, Next
from ..http.context import RequestContext
from ..http.errors import TooManyRequests
from ..http.response import HandlerResponse


logger = logging.getLogger(__name__)


UNKNOWN_CLIENT = "unknown"


@dataclass
class RateLimitEntry:
    """Counter for one client within its current window."""

    count: int
    reset_at: float


class RateLimiter:
    """
    Per-key fixed-window counter.

    Usage:
        limiter = RateLimiter(limit=100, window_seconds=60)

        if not limiter.is_allowed(client_ip):
            ...  # reject

    Args:
        limit: Requests allowed per window
        window_seconds: Window length
        clock: Returns the current time in seconds (swap in tests)
    """

    def __init__(
        self,
        limit: int = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

        self._sweeper: Optional[threading.Thread] = None
        self._sweeper_stop = threading.Event()

    # =========================================================================
    # ADMISSION
    # =========================================================================

    def is_allowed(self, key: Optional[str]) -> bool:
        """Count one request for ``key`` and decide whether it is admitted."""
        key = key or UNKNOWN_CLIENT
        now = self._clock()

        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.reset_at < now:
                entry = RateLimitEntry(count=0, reset_at=now + self.window_seconds)
                self._entries[key] = entry
            entry.count += 1
            return entry.count <= self.limit

    def get_remaining_requests(self, key: Optional[str]) -> int:
        """Requests left in the current window. Does not count a request."""
        key = key or UNKNOWN_CLIENT
        now = self._clock()

        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.reset_at < now:
                return self.limit
            return max(0, self.limit - entry.count)

    def get_reset_time(self, key: Optional[str]) -> int:
        """Epoch seconds (floored) at which the key's window ends."""
        key = key or UNKNOWN_CLIENT
        now = self._clock()

        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.reset_at < now:
                return math.floor(now + self.window_seconds)
            return math.floor(entry.reset_at)

    def get_limit(self) -> int:
        return self.limit

    # =========================================================================
    # MEMORY MANAGEMENT
    # =========================================================================

    def cleanup(self) -> int:
        """
        Delete every entry whose window has ended.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.reset_at < now]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.debug(f"Rate limiter swept {len(expired)} expired entries")
        return len(expired)

    def start_cleanup(self) -> None:
        """Start the background sweeper (one ``cleanup()`` per window)."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return

        self._sweeper_stop.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            name="RateLimiter-Sweeper",
            daemon=True,
        )
        self._sweeper.start()

    def stop_cleanup(self) -> None:
        self._sweeper_stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1.0)
            self._sweeper = None

    def _sweep_loop(self) -> None:
        while not self._sweeper_stop.wait(self.window_seconds):
            self.cleanup()

    def reset(self, key: Optional[str] = None) -> None:
        """Forget one key, or every key when ``key`` is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RateLimitMiddleware(Middleware):
    """
    Global middleware enforcing a RateLimiter.

    =========================================================================
    RESPONSE HEADERS
    =========================================================================

    Set on EVERY response, before admission is decided:

        X-RateLimit-Limit: 100
        X-RateLimit-Remaining: 37    (remaining BEFORE this request counted)
        X-RateLimit-Reset: 1718000060

    Rejected requests get 429 with

        {"error": "Too Many Requests",
         "message": "Rate limit exceeded, please try again later"}

    =========================================================================

    Args:
        limiter: The shared RateLimiter
        key_func: Extracts the client key from the context.
                  Defaults to the peer IP address.
    """

    def __init__(
        self,
        limiter: RateLimiter,
        key_func: Optional[Callable[[RequestContext], str]] = None,
    ):
        self.limiter = limiter
        self.key_func = key_func or self._default_key_func

    @staticmethod
    def _default_key_func(context: RequestContext) -> str:
        return context.request.remote_addr

    def __call__(self, context: RequestContext, next: Next) -> Optional[HandlerResponse]:
        key = self.key_func(context) or UNKNOWN_CLIENT

        writer = context.response
        writer.set_header("X-RateLimit-Limit", self.limiter.get_limit())
        writer.set_header("X-RateLimit-Remaining", self.limiter.get_remaining_requests(key))
        writer.set_header("X-RateLimit-Reset", self.limiter.get_reset_time(key))

        if not self.limiter.is_allowed(key):
            logger.debug(f"Rate limit exceeded for {key}")
            return TooManyRequests().to_response()

        return next()


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. RateLimiter: fixed-window counter per key
#    - lazy entries, replaced when their window ends
#    - one lock around the key map
#    - background sweeper removes expired entries
#
# 2. RateLimitMiddleware: the HTTP face of the limiter
#    - X-RateLimit-* headers on every response
#    - 429 JSON body when the key is over its limit
#
