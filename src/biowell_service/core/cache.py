"""In-memory TTL cache for outbound service responses.

Every outbound call checks the cache before touching the network and
populates it on success. Entries expire after a per-family TTL:

    chat replies         30 s
    nutrition analyses   15 min
    recipe searches      10 min
    synthesized speech   10 min
    metric lists         2 min

Expired entries are dropped lazily when they are looked up. The total
number of entries is capped; when the cap is reached expired entries are
purged first and then the oldest entry is evicted.

Writers tag entries with the clock reading taken *before* the request was
issued (``computed_at``). A slow response that completes after a fresher
value was stored is discarded instead of overwriting it.
"""

import hashlib
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar
from urllib.parse import quote

import structlog

logger = structlog.get_logger()

T = TypeVar("T")

# Longer free-text values are replaced by their digest in cache keys
MAX_RAW_KEY_VALUE = 64


@dataclass
class CacheEntry:
    """One cached response.

    Attributes:
        key: Cache key
        value: Cached value
        stored_at: Clock reading at which the value was computed
        ttl_seconds: Lifetime of the entry
    """

    key: str
    value: Any
    stored_at: float
    ttl_seconds: float

    def is_fresh(self, now: float) -> bool:
        """Check whether the entry may still be served."""
        return now - self.stored_at < self.ttl_seconds


@dataclass
class CacheStats:
    """Cache counters for diagnostics."""

    size: int
    max_entries: int
    hits: int
    misses: int
    evictions: int
    stale_writes: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "size": self.size,
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "stale_writes": self.stale_writes,
            "hit_rate": round(self.hit_rate, 4),
        }


def _encode_key_part(value: object) -> str:
    text = str(value.value) if isinstance(value, Enum) else str(value)
    if len(text) > MAX_RAW_KEY_VALUE:
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:32]
        return f"sha256-{digest}"
    return quote(text, safe="")


def cache_key(namespace: str, *scope: object, **params: object) -> str:
    """Build a deterministic cache key.

    Scope segments keep their order (user id, session id). Parameters are
    sorted by name so keyword order never matters, and ``None`` parameters
    are left out. Long free-text values are hashed so the whole text
    participates in the key.

    Args:
        namespace: Call family, e.g. ``"chat"`` or ``"nutrition"``
        *scope: Ordered identifiers the response belongs to
        **params: Request parameters that affect the response

    Returns:
        Cache key string

    Example:
        >>> cache_key("nutrition", "user-1", food="apple", quantity="1 cup")
        'nutrition:user-1?food=apple&quantity=1%20cup'
    """
    head = ":".join(
        [namespace, *("-" if part is None else _encode_key_part(part) for part in scope)]
    )
    query = "&".join(
        f"{name}={_encode_key_part(value)}"
        for name, value in sorted(params.items())
        if value is not None
    )
    return f"{head}?{query}" if query else head


class CacheService:
    """Bounded key/value cache with per-entry expiry.

    Usage:
        cache = CacheService(max_entries=1000)
        cache.set("recipes:pasta", result, ttl_seconds=600)
        cache.get("recipes:pasta")
    """

    def __init__(
        self,
        max_entries: int = 1000,
        default_ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize cache.

        Args:
            max_entries: Maximum number of entries held at once
            default_ttl_seconds: TTL used when ``set`` is called without one
            clock: Monotonic clock returning seconds
        """
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.default_ttl_seconds = default_ttl_seconds
        self.clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._stale_writes = 0
        self.logger = logger.bind(component="cache")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def now(self) -> float:
        """Current clock reading; callers use it to tag ``computed_at``."""
        return self.clock()

    def _lookup(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self.clock()):
            del self._entries[key]
            return None
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value, or ``default`` on a miss.

        An expired entry counts as a miss and is dropped.
        """
        entry = self._lookup(key)
        if entry is None:
            self._misses += 1
            return default
        self._hits += 1
        return entry.value

    def has(self, key: str) -> bool:
        """Check for an unexpired entry without touching the hit counters."""
        return self._lookup(key) is not None

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: float | None = None,
        computed_at: float | None = None,
    ) -> bool:
        """Store a value.

        Args:
            key: Cache key
            value: Value to cache
            ttl_seconds: Entry lifetime (defaults to ``default_ttl_seconds``)
            computed_at: Clock reading taken before the value was computed

        Returns:
            False when the write was discarded because a fresher value exists
        """
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")
        stored_at = self.clock() if computed_at is None else computed_at

        existing = self._entries.get(key)
        if existing is not None and stored_at < existing.stored_at:
            self._stale_writes += 1
            self.logger.debug("Discarded stale cache write", key=key)
            return False

        if existing is None and len(self._entries) >= self.max_entries:
            self._make_room()

        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            stored_at=stored_at,
            ttl_seconds=ttl,
        )
        return True

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        ttl_seconds: float | None = None,
    ) -> T:
        """Return the cached value or await ``fetch`` and cache its result.

        The entry is tagged with the time the fetch started.
        """
        entry = self._lookup(key)
        if entry is not None:
            self._hits += 1
            return entry.value  # type: ignore[no-any-return]
        self._misses += 1

        computed_at = self.clock()
        value = await fetch()
        self.set(key, value, ttl_seconds=ttl_seconds, computed_at=computed_at)
        return value

    def delete(self, key: str) -> bool:
        """Remove an entry. Returns True if one existed."""
        return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with ``prefix``."""
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def purge_expired(self) -> int:
        """Drop all expired entries.

        Returns:
            Number of entries removed
        """
        now = self.clock()
        expired = [key for key, entry in self._entries.items() if not entry.is_fresh(now)]
        for key in expired:
            del self._entries[key]
        self._evictions += len(expired)
        return len(expired)

    def clear(self) -> None:
        """Remove all entries and reset counters."""
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._stale_writes = 0

    def stats(self) -> CacheStats:
        return CacheStats(
            size=len(self._entries),
            max_entries=self.max_entries,
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            stale_writes=self._stale_writes,
        )

    def _make_room(self) -> None:
        if self.purge_expired():
            return
        oldest = min(self._entries.values(), key=lambda entry: entry.stored_at)
        del self._entries[oldest.key]
        self._evictions += 1
        self.logger.debug("Evicted oldest cache entry", key=oldest.key)
