"""
Per-source hourly rate limiter.

Tracks request counts per source inside one-hour windows and answers two
questions: "may I send a request now?" and "how long until I may?". The
limiter never blocks on its own; ``wait_for_rate_limit`` is the only
method that sleeps, and it refuses to sleep past a fixed ceiling.

All window reads-then-writes happen under one lock so concurrent workers
racing on the same source cannot jointly exceed its quota. Workers that
need a slot held across an await use ``acquire``/``record_request`` (or
``release`` on failure) instead of ``check_rate_limit``.
"""

import asyncio
import logging
import math
import random
import threading
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Dict, Iterable, Optional, Tuple

from .errors import RateLimitExceededError

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60 * 60
MAX_WAIT_SECONDS = 5 * 60
MAX_JITTER_MS = 1000
CLEANUP_INTERVAL_SECONDS = 60 * 60


@dataclass
class RateLimitWindow:
    """Request accounting for one source inside one window."""
    request_count: int = 0
    reset_at: float = 0.0  # epoch seconds
    last_request_at: float = 0.0
    pending: int = 0  # reserved by acquire() in this window, not yet recorded


@dataclass
class RateLimitOutcome:
    """Result of a rate-limit check."""
    allowed: bool
    remaining: int
    reset_at: float
    wait_ms: Optional[int] = None


@dataclass
class RateLimitInfo:
    """Read-only view of a source's quota usage."""
    source: str
    remaining: int
    reset_at: float
    quota: int
    current_count: int


class RateLimiter:
    """
    Hourly quota tracker keyed by source.

    Usage:
        limiter = RateLimiter()

        outcome = limiter.check_rate_limit("etsy", 100)
        if outcome.allowed:
            ...  # send the request
            limiter.record_request("etsy")

        # Or sleep until allowed (raises if the wait exceeds 5 minutes)
        await limiter.wait_for_rate_limit("etsy", 100)

        # Purge expired windows in the background
        async with RateLimiter() as limiter:
            ...
    """

    def __init__(
        self,
        windows: Optional[Dict[str, RateLimitWindow]] = None,
        lock: Optional[threading.Lock] = None,
        clock: Callable[[], float] = time.time,
        cleanup_interval: float = CLEANUP_INTERVAL_SECONDS,
        max_wait_seconds: float = MAX_WAIT_SECONDS,
    ):
        """
        Initialize the rate limiter.

        Args:
            windows: Optional pre-populated window map (shared or for tests)
            lock: Optional lock guarding the window map
            clock: Returns the current time in epoch seconds
            cleanup_interval: Seconds between background cleanup passes
            max_wait_seconds: Longest wait_for_rate_limit will sleep
        """
        self._windows: Dict[str, RateLimitWindow] = windows if windows is not None else {}
        self._lock = lock or threading.Lock()
        self._clock = clock
        self.cleanup_interval = cleanup_interval
        self.max_wait_seconds = max_wait_seconds
        self._cleanup_task: Optional[asyncio.Task] = None

    async def __aenter__(self) -> "RateLimiter":
        self.start_cleanup()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop_cleanup()

    def _current_window(self, source: str, now: float) -> RateLimitWindow:
        """Get the live window for a source, starting a new one if expired.

        Must be called with the lock held.
        """
        window = self._windows.get(source)
        if window is None or window.reset_at <= now:
            # Reservations expire with their window.
            window = RateLimitWindow(
                request_count=0,
                reset_at=now + WINDOW_SECONDS,
                last_request_at=window.last_request_at if window else 0.0,
            )
            self._windows[source] = window
        return window

    @staticmethod
    def _outcome(window: RateLimitWindow, used: int, quota: int, now: float) -> RateLimitOutcome:
        allowed = used < quota
        wait_ms = None
        if not allowed:
            wait_ms = max(0, math.ceil((window.reset_at - now) * 1000))
        return RateLimitOutcome(
            allowed=allowed,
            remaining=max(0, quota - used),
            reset_at=window.reset_at,
            wait_ms=wait_ms,
        )

    def check_rate_limit(self, source: str, quota: int) -> RateLimitOutcome:
        """
        Check whether a request to ``source`` fits within ``quota`` per hour.

        Creates or rolls over the source's window as a side effect but never
        increments its count.
        """
        with self._lock:
            now = self._clock()
            window = self._current_window(source, now)
            return self._outcome(window, window.request_count, quota, now)

    def acquire(self, source: str, quota: int) -> RateLimitOutcome:
        """
        Check and reserve a slot in one step.

        Reserved slots count against the quota until converted by
        ``record_request`` or dropped by ``release``.
        """
        with self._lock:
            now = self._clock()
            window = self._current_window(source, now)
            outcome = self._outcome(window, window.request_count + window.pending, quota, now)
            if outcome.allowed:
                window.pending += 1
            return outcome

    def release(self, source: str) -> None:
        """Drop a reservation made by ``acquire`` without counting it."""
        with self._lock:
            window = self._windows.get(source)
            if window and window.pending > 0:
                window.pending -= 1

    def record_request(self, source: str) -> None:
        """Count one executed request. No-op when the source has no window."""
        with self._lock:
            window = self._windows.get(source)
            if window is None:
                return
            window.request_count += 1
            window.last_request_at = self._clock()
            if window.pending > 0:
                window.pending -= 1

    def calculate_optimal_delay(self, source: str, quota: int) -> float:
        """
        Milliseconds to wait between sequential requests to spread ``quota``
        evenly across the hour, plus up to one second of jitter.

        Returns 0 for sources that have no window yet.
        """
        with self._lock:
            if source not in self._windows:
                return 0.0
        base = (WINDOW_SECONDS * 1000) / max(quota, 1)
        return base + random.random() * MAX_JITTER_MS

    async def wait_for_rate_limit(
        self,
        source: str,
        quota: int,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Sleep until ``source`` is under quota.

        Raises:
            RateLimitExceededError: If the wait would exceed max_wait_seconds
        """
        outcome = self.check_rate_limit(source, quota)
        if outcome.allowed:
            return

        wait_ms = outcome.wait_ms or 0
        if wait_ms > self.max_wait_seconds * 1000:
            minutes = math.ceil(wait_ms / 60000)
            raise RateLimitExceededError(
                f"Rate limit exceeded for {source}. Reset in {minutes} minutes.",
                source=source,
                wait_ms=wait_ms,
            )

        logger.warning(f"[{source}] Rate limit reached, waiting {wait_ms / 1000:.1f}s")
        await sleep(wait_ms / 1000)

    def get_rate_limit_info(self, source: str, quota: int) -> RateLimitInfo:
        """Quota usage for ``source`` without creating or rolling its window."""
        with self._lock:
            now = self._clock()
            window = self._windows.get(source)
            if window is None or window.reset_at <= now:
                return RateLimitInfo(
                    source=source,
                    remaining=quota,
                    reset_at=now + WINDOW_SECONDS,
                    quota=quota,
                    current_count=0,
                )
            return RateLimitInfo(
                source=source,
                remaining=max(0, quota - window.request_count),
                reset_at=window.reset_at,
                quota=quota,
                current_count=window.request_count,
            )

    def check_multiple(self, requests: Iterable[Tuple[str, int]]) -> Dict[str, RateLimitOutcome]:
        """Check several (source, quota) pairs at once."""
        return {source: self.check_rate_limit(source, quota) for source, quota in requests}

    def reset(self, source: Optional[str] = None) -> None:
        """Forget one source's window, or all windows when ``source`` is None."""
        with self._lock:
            if source is None:
                self._windows.clear()
            else:
                self._windows.pop(source, None)

    def get_all_windows(self) -> Dict[str, RateLimitWindow]:
        """Snapshot copy of every tracked window."""
        with self._lock:
            return {source: replace(window) for source, window in self._windows.items()}

    def cleanup(self) -> int:
        """
        Remove windows whose reset time has passed, along with any
        reservations still held in them.

        Returns:
            Number of windows removed
        """
        with self._lock:
            now = self._clock()
            expired = [
                source for source, window in self._windows.items()
                if window.reset_at <= now
            ]
            for source in expired:
                del self._windows[source]

        if expired:
            logger.debug(f"Cleaned up {len(expired)} expired rate limit windows")
        return len(expired)

    def start_cleanup(self) -> None:
        """Start the periodic cleanup task on the running event loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop_cleanup(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.cleanup()
