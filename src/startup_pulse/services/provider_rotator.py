"""Rotation and quarantine across redundant inference providers."""

import logging
import time
from dataclasses import asdict, dataclass, replace
from typing import Callable

from startup_pulse.services.scheduler import PeriodicScheduler

logger = logging.getLogger(__name__)

ERROR_THRESHOLD = 3
COOLDOWN_SECONDS = 1.0
DECAY_INTERVAL_SECONDS = 60.0


@dataclass(frozen=True)
class ProviderStats:
    request_count: int = 0
    last_request_at: float | None = None
    recent_errors: float = 0.0
    is_available: bool = True


def record_outcome(
    stats: ProviderStats,
    success: bool,
    now: float,
    threshold: int = ERROR_THRESHOLD,
) -> ProviderStats:
    """Stats after one call. Failures quarantine at the threshold."""
    updated = replace(stats, request_count=stats.request_count + 1, last_request_at=now)
    if not success:
        errors = updated.recent_errors + 1
        available = updated.is_available and errors < threshold
        return replace(updated, recent_errors=errors, is_available=available)

    errors = max(0.0, updated.recent_errors - 0.5)
    return replace(updated, recent_errors=errors, is_available=updated.is_available or errors == 0)


def decay(stats: ProviderStats) -> ProviderStats:
    """Periodic decrement that guarantees eventual recovery."""
    errors = max(0.0, stats.recent_errors - 1)
    return replace(stats, recent_errors=errors, is_available=stats.is_available or errors == 0)


def is_selectable(stats: ProviderStats, now: float, cooldown: float = COOLDOWN_SECONDS) -> bool:
    if not stats.is_available:
        return False
    if stats.last_request_at is None:
        return True
    return now - stats.last_request_at >= cooldown


class ProviderRotator:
    """Round-robin provider choice that skips quarantined or hot providers."""

    def __init__(
        self,
        provider_ids: list[str],
        clock: Callable[[], float] = time.monotonic,
        cooldown: float = COOLDOWN_SECONDS,
        threshold: int = ERROR_THRESHOLD,
    ):
        if not provider_ids:
            raise ValueError("provider_ids is required")
        if len(set(provider_ids)) != len(provider_ids):
            raise ValueError("provider_ids must be unique")

        self._providers = list(provider_ids)
        self._stats = {p: ProviderStats() for p in self._providers}
        self._clock = clock
        self._cooldown = cooldown
        self._threshold = threshold
        self._index = 0

    @property
    def provider_ids(self) -> list[str]:
        return list(self._providers)

    def next_provider(self) -> str:
        """Next selectable provider, or the least-failing one if none qualify."""
        now = self._clock()
        count = len(self._providers)
        for offset in range(count):
            index = (self._index + offset) % count
            provider = self._providers[index]
            if is_selectable(self._stats[provider], now, self._cooldown):
                self._index = (index + 1) % count
                return provider

        return min(self._providers, key=lambda p: self._stats[p].recent_errors)

    def alternate_for(self, provider_id: str) -> str | None:
        """The provider following provider_id in configured order."""
        if provider_id not in self._stats:
            raise KeyError(f"Unknown provider: {provider_id}")
        if len(self._providers) < 2:
            return None
        index = self._providers.index(provider_id)
        return self._providers[(index + 1) % len(self._providers)]

    def record_result(self, provider_id: str, success: bool) -> None:
        if provider_id not in self._stats:
            logger.warning(f"Ignoring result for unknown provider {provider_id}")
            return
        before = self._stats[provider_id]
        after = record_outcome(before, success, self._clock(), self._threshold)
        self._stats[provider_id] = after
        if before.is_available and not after.is_available:
            logger.error(f"Provider {provider_id} marked as unavailable due to errors")

    def decay_errors(self) -> None:
        """Global decay tick."""
        for provider, stats in self._stats.items():
            updated = decay(stats)
            if not stats.is_available and updated.is_available:
                logger.info(f"Provider {provider} restored after error decay")
            self._stats[provider] = updated

    def stats_for(self, provider_id: str) -> ProviderStats:
        return self._stats[provider_id]

    def get_stats(self) -> dict[str, dict]:
        now = self._clock()
        result = {}
        for provider, stats in self._stats.items():
            entry = asdict(stats)
            entry["seconds_since_last_request"] = (
                None if stats.last_request_at is None else now - stats.last_request_at
            )
            result[provider] = entry
        return result

    def attach(self, scheduler: PeriodicScheduler) -> None:
        scheduler.register("provider-decay", DECAY_INTERVAL_SECONDS, self.decay_errors)
