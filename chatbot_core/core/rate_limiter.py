"""
Rate Limiting System for Chatbot Core
=====================================

Fixed-window request counting per identifier with lazy expiry and a
periodic background sweep.
"""

import time
import asyncio
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
import logging

from .config import RateLimitConfig, merge_config

logger = logging.getLogger(__name__)


@dataclass
class RateLimitWindow:
    """Counter state for a single identifier."""
    count: int
    reset_time: float
    first_request: float


@dataclass
class RateLimitInfo:
    """Rate limit status returned by every check."""
    limit: int
    current: int
    remaining: int
    reset_time: float
    is_exceeded: bool

    @property
    def reset_at(self) -> datetime:
        """Window end as an aware UTC datetime."""
        return datetime.fromtimestamp(self.reset_time, timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "limit": self.limit,
            "current": self.current,
            "remaining": self.remaining,
            "reset_time": self.reset_time,
            "is_exceeded": self.is_exceeded,
        }


class RateLimiter:
    """
    Fixed-window rate limiter keyed by identifier.

    Exceeding the limit is a normal result (``is_exceeded=True``), never an
    exception; callers decide whether to reject. Each instance owns its
    cleanup task and must be released with ``destroy()`` or ``close()``.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        *,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
        **overrides
    ):
        """
        Initialize the rate limiter.

        Args:
            config: Base configuration (defaults if omitted)
            clock: Returns the current time in epoch seconds
            logger: Optional logger; the module logger is used otherwise
            **overrides: Individual RateLimitConfig fields
        """
        self.config = merge_config(config or RateLimitConfig(), overrides)
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

        self._store: Dict[str, RateLimitWindow] = {}
        self._lock = asyncio.Lock()

        self._cleanup_task: Optional[asyncio.Task] = None
        self._closed = False

        self._log(
            "info",
            f"RateLimiter initialized: {self.config.max_requests} requests "
            f"per {self.config.window_seconds}s"
        )

    async def check_limit(self, identifier: str) -> RateLimitInfo:
        """
        Check an identifier against its window and count the request if admitted.

        The request that reaches exactly ``max_requests`` is the last one
        admitted; later requests in the same window are reported as exceeded
        and not counted.
        """
        self._ensure_cleanup_task()

        async with self._lock:
            key = self.config.key_generator(identifier)
            now = self._clock()

            window = self._store.get(key)
            if window is None or now >= window.reset_time:
                window = RateLimitWindow(
                    count=0,
                    reset_time=now + self.config.window_seconds,
                    first_request=now,
                )
                self._store[key] = window

            is_exceeded = window.count >= self.config.max_requests
            if not is_exceeded:
                window.count += 1

            info = self._info(window, is_exceeded)

        if is_exceeded:
            self._log("warning", f"⚠️ Rate limit exceeded for {identifier}: {info.to_dict()}")

        return info

    async def check_limit_dry_run(self, identifier: str) -> RateLimitInfo:
        """Preview what ``check_limit`` would report, without changing any state."""
        self._ensure_cleanup_task()

        async with self._lock:
            key = self.config.key_generator(identifier)
            now = self._clock()
            window = self._store.get(key)

            if window is None or now >= window.reset_time:
                return RateLimitInfo(
                    limit=self.config.max_requests,
                    current=0,
                    remaining=self.config.max_requests,
                    reset_time=now + self.config.window_seconds,
                    is_exceeded=False,
                )

            return self._info(window, window.count >= self.config.max_requests)

    async def increment_counter(self, identifier: str) -> RateLimitInfo:
        """
        Count a request unconditionally, even past the limit.

        Used for retroactive accounting of requests admitted elsewhere.
        """
        self._ensure_cleanup_task()

        async with self._lock:
            key = self.config.key_generator(identifier)
            now = self._clock()
            window = self._store.get(key)

            if window is None or now >= window.reset_time:
                window = RateLimitWindow(
                    count=1,
                    reset_time=now + self.config.window_seconds,
                    first_request=now,
                )
                self._store[key] = window
            else:
                window.count += 1

            return self._info(window, window.count >= self.config.max_requests)

    async def decrement_counter(self, identifier: str) -> Optional[RateLimitInfo]:
        """
        Give back one counted request in the current window.

        Used to honour ``skip_successful_requests`` / ``skip_failed_requests``
        once a request has finished. Returns None when the window has expired.
        """
        async with self._lock:
            key = self.config.key_generator(identifier)
            window = self._store.get(key)
            if window is None or self._clock() >= window.reset_time:
                return None

            window.count = max(0, window.count - 1)
            return self._info(window, window.count >= self.config.max_requests)

    def reset_limit(self, identifier: str) -> None:
        """Drop the identifier's window; its next check starts fresh."""
        key = self.config.key_generator(identifier)
        self._store.pop(key, None)
        self._log("info", f"Rate limit reset for {identifier}")

    def reset_all_limits(self) -> None:
        self._store.clear()
        self._log("info", "All rate limits reset")

    def get_current_status(self, identifier: str) -> Optional[RateLimitInfo]:
        """Status of the identifier's live window, or None if there is none."""
        key = self.config.key_generator(identifier)
        window = self._store.get(key)

        if window is None or self._clock() >= window.reset_time:
            return None

        return self._info(window, window.count >= self.config.max_requests)

    def get_all_active_statuses(self) -> Dict[str, RateLimitInfo]:
        """Snapshot of every non-expired window, keyed by storage key."""
        now = self._clock()
        return {
            key: self._info(window, window.count >= self.config.max_requests)
            for key, window in self._store.items()
            if now < window.reset_time
        }

    def get_stats(self) -> Dict[str, Any]:
        """Aggregate statistics over live windows."""
        now = self._clock()
        active = [w for w in self._store.values() if now < w.reset_time]
        total_requests = sum(w.count for w in active)

        return {
            "active_users": len(active),
            "total_requests": total_requests,
            "average_requests_per_user": total_requests / len(active) if active else 0,
            "exceeded_users": sum(1 for w in active if w.count >= self.config.max_requests),
        }

    def time_until_reset(self, info: RateLimitInfo) -> float:
        """Seconds until the window in ``info`` ends (never negative)."""
        return max(0.0, info.reset_time - self._clock())

    def update_config(self, **overrides) -> None:
        """Merge new values over the current configuration."""
        self.config = merge_config(self.config, overrides)
        self._log("info", f"RateLimiter config updated: {overrides}")

    def get_config(self) -> RateLimitConfig:
        """Copy of the current configuration."""
        return replace(self.config)

    def should_skip_request(self, was_successful: bool) -> bool:
        """Whether a finished request should be left out of the count."""
        if was_successful:
            return self.config.skip_successful_requests
        return self.config.skip_failed_requests

    def cleanup_expired_entries(self) -> int:
        """
        Remove every expired window.

        Returns:
            Number of windows removed
        """
        now = self._clock()
        expired = [key for key, window in self._store.items() if now >= window.reset_time]

        for key in expired:
            del self._store[key]

        if expired:
            self._log("debug", f"Cleaned up {len(expired)} expired rate limit entries")

        return len(expired)

    # Background cleanup lifecycle

    def start(self) -> None:
        """
        Start the periodic sweep.

        Must be called from a running event loop. The sweep also starts on
        the first check, so calling this is only needed to sweep before then.
        """
        self._closed = False
        self._ensure_cleanup_task()

    def _ensure_cleanup_task(self) -> None:
        if self._closed:
            return
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval)
            self.cleanup_expired_entries()

    def destroy(self) -> None:
        """Cancel the periodic sweep and clear every window."""
        self._closed = True
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None

        self._store.clear()
        self._log("info", "Rate limiter destroyed")

    async def close(self) -> None:
        """Destroy the limiter and wait for the sweep task to finish."""
        task = self._cleanup_task
        self.destroy()

        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def __aenter__(self) -> "RateLimiter":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _info(self, window: RateLimitWindow, is_exceeded: bool) -> RateLimitInfo:
        return RateLimitInfo(
            limit=self.config.max_requests,
            current=window.count,
            remaining=max(0, self.config.max_requests - window.count),
            reset_time=window.reset_time,
            is_exceeded=is_exceeded,
        )

    def _log(self, level: str, message: str) -> None:
        if self.config.enable_logging:
            getattr(self._logger, level)(message)
