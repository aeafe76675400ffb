"""In-process key/value cache with per-entry expiry."""

import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from startup_pulse.services.scheduler import PeriodicScheduler

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_SECONDS = 60.0


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    expires_at: float


class TTLCache:
    """Map of key -> value where each entry expires at an absolute time."""

    def __init__(
        self,
        name: str,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not name:
            raise ValueError("name is required")
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        if clock is None:
            raise ValueError("clock is required")

        self._name = name
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    @property
    def name(self) -> str:
        return self._name

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    def set(self, key: str, value: Any, ttl: float | None = None) -> CacheEntry:
        """Store value under key until now + ttl."""
        if not key:
            raise ValueError("key is required")
        if ttl is None:
            ttl = self._default_ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        entry = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl)
        self._entries[key] = entry
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        """Return cached value, evicting it first if it has expired."""
        entry = self._entries.get(key)
        if entry is None:
            return default
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return default
        return entry.value

    def has(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return False
        return True

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Cache {self._name}: swept {len(expired)} expired entries")
        return len(expired)

    def keys(self) -> list[str]:
        return list(self._entries)

    def size(self) -> int:
        return len(self._entries)

    def attach(self, scheduler: PeriodicScheduler) -> None:
        """Register the periodic sweep with a scheduler."""
        scheduler.register(f"cache-sweep:{self._name}", SWEEP_INTERVAL_SECONDS, self.sweep)


@dataclass(frozen=True)
class SentimentCaches:
    """Separate cache instances for each call site."""

    item: TTLCache
    batch: TTLCache
    analysis: TTLCache

    def attach(self, scheduler: PeriodicScheduler) -> None:
        for cache in (self.item, self.batch, self.analysis):
            cache.attach(scheduler)


def create_sentiment_caches(clock: Callable[[], float] = time.monotonic) -> SentimentCaches:
    """Per-item (5 min), per-batch (10 min) and per-analysis (15 min) caches."""
    return SentimentCaches(
        item=TTLCache("sentiment-item", default_ttl=300.0, clock=clock),
        batch=TTLCache("sentiment-batch", default_ttl=600.0, clock=clock),
        analysis=TTLCache("sentiment-analysis", default_ttl=900.0, clock=clock),
    )


def fingerprint(parts: Iterable[str], prefix: str = "") -> str:
    """Deterministic content hash used as a cache key."""
    digest = hashlib.sha256("|||".join(parts).encode("utf-8")).hexdigest()
    return f"{prefix}{digest}"
