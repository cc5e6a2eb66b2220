"""
In-Memory Response Cache

TTL-based caching for upstream dashboard responses with optional
stale-while-revalidate semantics. A cache instance is a plain object:
the coordinator receives a CacheRegistry built from configuration instead
of reaching for module-level globals, so tests can build isolated caches.

Cache keys look like ``prefix:k1=v1&k2=v2`` with params sorted by name.
"""
import re
import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300.0
DEFAULT_MAX_SIZE = 100


@dataclass
class CacheOptions:
    """Tuning for one cache instance. Durations are in seconds."""
    ttl: float = DEFAULT_TTL
    max_size: int = DEFAULT_MAX_SIZE
    stale_while_revalidate: bool = False


@dataclass
class CacheEntry:
    """A stored response. ``tag`` records provenance only and is never used for lookup."""
    data: Any
    timestamp: float
    expiry_time: float
    tag: str

    def is_expired(self, now: float) -> bool:
        return now > self.expiry_time


@dataclass(frozen=True)
class CacheLookup:
    """Result of a cache hit."""
    data: Any
    is_stale: bool = False


class CacheManager:
    """
    Bounded TTL cache.

    Expired entries are either served flagged as stale (when
    stale_while_revalidate is on) or dropped on access. When the cache is
    full, inserting a new key evicts the single entry with the oldest
    timestamp.
    """

    def __init__(
        self,
        options: Optional[CacheOptions] = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        self.options = options or CacheOptions()
        self.name = name
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    @staticmethod
    def generate_key(prefix: str, params: Dict[str, Any]) -> str:
        """
        Build a deterministic key from a prefix and params.

        Param order does not matter: ``generate_key("p", {"b": 2, "a": 1})``
        equals ``generate_key("p", {"a": 1, "b": 2})``.
        """
        joined = "&".join(f"{k}={params[k]}" for k in sorted(params))
        return f"{prefix}:{joined}"

    def set(self, key: str, data: Any, tag: str, ttl: Optional[float] = None) -> None:
        """Store data under key, replacing any previous entry wholesale."""
        ttl = ttl or self.options.ttl
        now = self._clock()

        if key not in self._entries and len(self._entries) >= self.options.max_size:
            oldest_key = min(self._entries, key=lambda k: self._entries[k].timestamp)
            del self._entries[oldest_key]
            logger.debug(f"[{self.name}] Evicted oldest entry '{oldest_key}'")

        self._entries[key] = CacheEntry(
            data=data,
            timestamp=now,
            expiry_time=now + ttl,
            tag=tag,
        )
        logger.info(f"[{self.name}] Stored '{key}' (TTL: {ttl}s, tag: {tag})")

    def get(self, key: str) -> Optional[CacheLookup]:
        """
        Look up a key.

        Returns:
            CacheLookup on a hit (is_stale=True for an expired entry served
            under stale-while-revalidate), None on a miss
        """
        entry = self._entries.get(key)
        if entry is None:
            logger.debug(f"[{self.name}] Miss for '{key}'")
            return None

        now = self._clock()
        expired = entry.is_expired(now)

        if expired and not self.options.stale_while_revalidate:
            logger.debug(f"[{self.name}] Expired entry for '{key}', removing")
            del self._entries[key]
            return None

        logger.debug(
            f"[{self.name}] Hit for '{key}' (age: {now - entry.timestamp:.3f}s, stale: {expired})"
        )
        return CacheLookup(data=entry.data, is_stale=expired)

    def has(self, key: str) -> bool:
        """Same expiry rules as get(), including removal of expired entries."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()) and not self.options.stale_while_revalidate:
            del self._entries[key]
            return False
        return True

    def invalidate(self, pattern: str) -> int:
        """
        Remove every key matching a glob pattern where ``*`` matches anything.

        The pattern may match anywhere in the key.

        Returns:
            Number of entries removed
        """
        regex = re.compile(".*".join(re.escape(part) for part in pattern.split("*")))
        matched = [key for key in self._entries if regex.search(key)]
        for key in matched:
            del self._entries[key]
            logger.debug(f"[{self.name}] Invalidated '{key}'")

        logger.info(f"[{self.name}] Invalidated {len(matched)} entries matching '{pattern}'")
        return len(matched)

    def clear(self) -> None:
        size = len(self._entries)
        self._entries.clear()
        logger.info(f"[{self.name}] Cleared {size} entries")

    def get_stats(self) -> Dict[str, Any]:
        """Summary of the cache contents for diagnostics."""
        now = self._clock()
        timestamps = [e.timestamp for e in self._entries.values()]
        return {
            "name": self.name,
            "total_entries": len(self._entries),
            "expired_entries": sum(1 for e in self._entries.values() if e.is_expired(now)),
            "max_size": self.options.max_size,
            "oldest_entry": min(timestamps) if timestamps else None,
            "newest_entry": max(timestamps) if timestamps else None,
        }


@dataclass
class CacheRegistry:
    """The three cache instances the dashboard uses, one per data granularity."""
    daily: CacheManager
    weekly: CacheManager
    monthly: CacheManager

    def for_period(self, period_type: str) -> CacheManager:
        """Custom ranges are short-lived like daily data and share its cache."""
        if period_type == "weekly":
            return self.weekly
        if period_type == "monthly":
            return self.monthly
        return self.daily

    def all(self) -> Dict[str, CacheManager]:
        return {"daily": self.daily, "weekly": self.weekly, "monthly": self.monthly}

    def clear(self) -> None:
        for cache in self.all().values():
            cache.clear()


def create_cache_registry(config=None, clock: Callable[[], float] = time.monotonic) -> CacheRegistry:
    """
    Build the cache registry from application configuration.

    Args:
        config: AppConfig (defaults to get_config())
        clock: Time source shared by all three caches
    """
    if config is None:
        from config.settings import get_config
        config = get_config()

    caches = {}
    for name in ("daily", "weekly", "monthly"):
        policy = config.cache_policies[name]
        caches[name] = CacheManager(
            CacheOptions(
                ttl=policy.ttl,
                max_size=policy.max_size,
                stale_while_revalidate=policy.stale_while_revalidate,
            ),
            clock=clock,
            name=name,
        )
    return CacheRegistry(**caches)


def invalidate_related_cache(registry: CacheRegistry, start_date: str, end_date: str) -> int:
    """
    Drop every cached response for a date range across all caches.

    Returns:
        Total number of entries removed
    """
    pattern = f"*start_date={start_date}*"
    total = sum(cache.invalidate(pattern) for cache in registry.all().values())
    logger.info(f"Invalidated {total} entries for date range {start_date} to {end_date}")
    return total
