"""Per-client fixed-window admission control for the chat endpoint.

Each caller identity gets a counter and a window end time. A check resets
the counter when the window has elapsed, always increments, and admits
while the count stays within the limit. Expired windows are swept on a
fixed interval by a background task so idle clients do not accumulate.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

log = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"

# Checked in order; the first non-empty header wins.
_IDENTITY_HEADERS: tuple[str, ...] = ("x-forwarded-for", "x-real-ip", "x-client-ip")


@dataclass
class WindowEntry:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds
    retry_after: int | None = None

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }
        if self.retry_after:
            headers["Retry-After"] = str(self.retry_after)
        return headers


def client_identifier(headers: Mapping[str, str]) -> str:
    """Derive the caller identity from proxy headers."""
    for name in _IDENTITY_HEADERS:
        value = headers.get(name)
        if not value:
            continue
        if name == "x-forwarded-for":
            value = value.split(",")[0]
        value = value.strip()
        if value:
            return value
    return UNKNOWN_CLIENT


class FixedWindowRateLimiter:
    """Fixed-window request counter keyed by client identity."""

    def __init__(
        self,
        limit: int = 10,
        window_seconds: float = 60.0,
        sweep_interval_seconds: float = 60.0,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store: dict[str, WindowEntry] = {}
        self._limit = limit
        self._window = window_seconds
        self._sweep_interval = sweep_interval_seconds
        self._enabled = enabled
        self._clock = clock
        self._sweeper: asyncio.Task | None = None
        self._total_rejected = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = value

    def check(self, key: str) -> RateLimitResult:
        """Count one request for ``key`` and report whether it is admitted."""
        now = self._clock()

        if not self._enabled:
            return RateLimitResult(
                success=True,
                limit=self._limit,
                remaining=self._limit,
                reset_at=now + self._window,
            )

        entry = self._store.get(key)
        if entry is None or entry.reset_at <= now:
            entry = WindowEntry(count=0, reset_at=now + self._window)
            self._store[key] = entry

        entry.count += 1

        success = entry.count <= self._limit
        remaining = max(0, self._limit - entry.count)
        retry_after = None
        if not success:
            retry_after = max(1, math.ceil(entry.reset_at - now))
            self._total_rejected += 1
            log.warning(
                "rate_limiter.rejected client=%s count=%d limit=%d retry_after=%ds",
                key,
                entry.count,
                self._limit,
                retry_after,
            )

        return RateLimitResult(
            success=success,
            limit=self._limit,
            remaining=remaining,
            reset_at=entry.reset_at,
            retry_after=retry_after,
        )

    def sweep(self) -> int:
        """Drop every entry whose window has elapsed. Returns count removed."""
        now = self._clock()
        expired = [k for k, v in self._store.items() if v.reset_at <= now]
        for k in expired:
            del self._store[k]
        if expired:
            log.debug("rate_limiter.swept removed=%d remaining=%d", len(expired), len(self._store))
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()

    def start(self) -> None:
        """Start the periodic sweeper on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    def stats(self) -> dict[str, int]:
        return {
            "tracked_clients": len(self._store),
            "limit": self._limit,
            "total_rejected": self._total_rejected,
        }

    def __len__(self) -> int:
        return len(self._store)
