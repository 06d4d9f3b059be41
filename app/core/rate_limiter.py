from __future__ import annotations
import asyncio
import logging
import threading
import time
from typing import Awaitable, Callable, Dict, Optional
from urllib.parse import urlparse
from app.core.config import settings

log = logging.getLogger(__name__)

# Upper bound on the stored backoff exponent; the delay itself is capped by max_backoff_ms.
_MAX_BACKOFF_LEVEL = 32


def exponential_backoff(
    attempt: int,
    initial_ms: float = settings.initial_backoff_ms,
    multiplier: float = settings.backoff_multiplier,
    max_ms: float = settings.max_backoff_ms,
) -> float:
    """
    Backoff delay for a 0-indexed retry attempt: min(initial * multiplier**attempt, max).
    """
    if attempt < 0:
        return initial_ms
    return min(initial_ms * multiplier ** attempt, max_ms)


class RateLimiter:
    """
    Paces outbound requests to one source host.

    Consecutive `wait_before_request` calls are spaced by at least the minimum
    interval. Each blocking signal raises the spacing to the next exponential
    backoff step; after `reset_after` consecutive clean requests the spacing
    drops back to the minimum interval. State is guarded by a thread lock, so
    one limiter can be shared by orchestrations running in separate threads
    and event loops.
    """

    def __init__(
        self,
        min_interval_ms: Optional[float] = None,
        initial_backoff_ms: Optional[float] = None,
        max_backoff_ms: Optional[float] = None,
        backoff_multiplier: Optional[float] = None,
        reset_after: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval_ms = settings.min_request_interval_ms if min_interval_ms is None else min_interval_ms
        self.initial_backoff_ms = settings.initial_backoff_ms if initial_backoff_ms is None else initial_backoff_ms
        self.max_backoff_ms = settings.max_backoff_ms if max_backoff_ms is None else max_backoff_ms
        self.backoff_multiplier = settings.backoff_multiplier if backoff_multiplier is None else backoff_multiplier
        self.reset_after = max(1, settings.backoff_reset_after if reset_after is None else reset_after)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_request: Optional[float] = None
        self._backoff_level = 0
        self._clean_streak = 0
        self._signalled = False

    @property
    def last_request_time(self) -> Optional[float]:
        return self._last_request

    @property
    def backoff_level(self) -> int:
        return self._backoff_level

    @property
    def current_delay_ms(self) -> float:
        if self._backoff_level == 0:
            return self.min_interval_ms
        backoff = exponential_backoff(
            self._backoff_level - 1,
            initial_ms=self.initial_backoff_ms,
            multiplier=self.backoff_multiplier,
            max_ms=self.max_backoff_ms,
        )
        return max(self.min_interval_ms, backoff)

    def _settle_previous_request(self) -> None:
        if self._signalled:
            return
        self._clean_streak += 1
        if self._backoff_level and self._clean_streak >= self.reset_after:
            log.info("Rate limiter backoff reset after %d clean requests", self._clean_streak)
            self._backoff_level = 0

    async def wait_before_request(self) -> None:
        """
        Suspend until the next request to the host is allowed. The first call never waits.

        The slot is reserved under a thread lock and the wait happens outside
        it, so callers on different threads and event loops share the spacing.
        """
        with self._lock:
            now = self._clock()
            if self._last_request is None:
                slot = now
            else:
                self._settle_previous_request()
                slot = max(now, self._last_request + self.current_delay_ms / 1000.0)
            self._last_request = slot
            self._signalled = False
        remaining = slot - self._clock()
        # Timers may fire marginally early, so re-check against the clock.
        while remaining > 0:
            await self._sleep(remaining)
            remaining = slot - self._clock()

    def record_blocking_signal(self, signal: object = None) -> None:
        """Note that the last request was throttled or blocked (e.g. 429, 403, captcha)."""
        with self._lock:
            self._signalled = True
            self._clean_streak = 0
            self._backoff_level = min(self._backoff_level + 1, _MAX_BACKOFF_LEVEL)
        log.warning(
            "Blocking signal %r recorded; request spacing now %.0fms",
            signal, self.current_delay_ms,
        )

    def reset(self) -> None:
        with self._lock:
            self._last_request = None
            self._backoff_level = 0
            self._clean_streak = 0
            self._signalled = False


_registry: Dict[str, RateLimiter] = {}
_registry_lock = threading.Lock()


def _host_key(url_or_host: str) -> str:
    parsed = urlparse(url_or_host)
    return (parsed.netloc or parsed.path or url_or_host).lower()


def get_rate_limiter(url_or_host: str) -> RateLimiter:
    """Process-wide limiter for a host, created on first use."""
    key = _host_key(url_or_host)
    with _registry_lock:
        limiter = _registry.get(key)
        if limiter is None:
            limiter = RateLimiter()
            _registry[key] = limiter
        return limiter
