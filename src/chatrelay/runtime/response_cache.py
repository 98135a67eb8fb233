"""Short-lived memoization of buffered chat responses.

Keyed on the model id plus a fingerprint of the *last few* messages only,
so long conversations still hit for repeated trailing exchanges. Expired
entries are dropped lazily when their exact key is read again, or by an
explicit ``clear()``; there is no background sweep.

Streaming requests never read or write this cache.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from chatrelay.models.chat import ChatMessage

log = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_HISTORY_WINDOW = 3

CacheKey = tuple[str, str]


@dataclass
class CacheEntry:
    """A cached response with the time it was stored."""

    response_text: str
    cached_at: float


@dataclass
class CacheStats:
    """Running statistics for cache performance."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    entries: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "entries": self.entries,
            "hit_rate": round(self.hit_rate, 4),
        }


class ResponseCache:
    """In-memory TTL cache for buffered responses."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache: dict[CacheKey, CacheEntry] = {}
        self._lock = threading.Lock()
        self._ttl = ttl_seconds
        self._window = history_window
        self._enabled = enabled
        self._clock = clock
        self._stats = CacheStats()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = value

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def make_key(self, model_id: str, messages: Sequence[ChatMessage]) -> CacheKey:
        """``(model_id, fingerprint)`` where the fingerprint is the JSON-encoded
        ``[role, content]`` pairs of the trailing window, so message text can
        never be mistaken for a message boundary.
        """
        trailing = messages[-self._window:] if self._window else []
        fingerprint = json.dumps([[m.role.value, m.content] for m in trailing])
        return model_id, fingerprint

    def get(self, model_id: str, messages: Sequence[ChatMessage]) -> str | None:
        """Look up a cached response. Returns None on miss or expiry."""
        if not self._enabled:
            return None

        key = self.make_key(model_id, messages)
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats.misses += 1
                return None

            if self._clock() - entry.cached_at >= self._ttl:
                del self._cache[key]
                self._stats.misses += 1
                self._stats.evictions += 1
                self._stats.entries = len(self._cache)
                return None

            self._stats.hits += 1
            log.debug("response_cache.hit model=%s", model_id)
            return entry.response_text

    def put(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        response_text: str,
    ) -> None:
        """Store a response in the cache."""
        if not self._enabled:
            return

        key = self.make_key(model_id, messages)
        with self._lock:
            self._cache[key] = CacheEntry(
                response_text=response_text,
                cached_at=self._clock(),
            )
            self._stats.entries = len(self._cache)

    def clear(self, model_id: str | None = None) -> int:
        """Clear one model's entries, or everything. Returns count removed."""
        with self._lock:
            if model_id is None:
                count = len(self._cache)
                self._cache.clear()
            else:
                doomed = [k for k in self._cache if k[0] == model_id]
                for k in doomed:
                    del self._cache[k]
                count = len(doomed)
            self._stats.entries = len(self._cache)
        log.debug("response_cache.cleared model=%s removed=%d", model_id or "*", count)
        return count

    def stats(self) -> dict[str, Any]:
        """Return cache performance statistics."""
        with self._lock:
            self._stats.entries = len(self._cache)
            return self._stats.to_dict()

    def __len__(self) -> int:
        return len(self._cache)
