"""Selector cache contract and the in-memory backend."""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from ..core.models.healing_models import (
    CachedSelector, CacheMetrics, CacheType, HealingConfiguration
)


logger = logging.getLogger(__name__)


def merge_entries(existing: Optional[CachedSelector], incoming: CachedSelector) -> CachedSelector:
    """Apply upsert semantics shared by every backend.

    A different selector string replaces the entry and its counters. The same
    selector keeps the original creation time and adds the incoming counters.
    """
    if existing is None or existing.selector != incoming.selector:
        return incoming.copy()
    return CachedSelector(
        selector=existing.selector,
        fingerprint=incoming.fingerprint or existing.fingerprint,
        success_count=existing.success_count + incoming.success_count,
        failure_count=existing.failure_count + incoming.failure_count,
        created_at=existing.created_at,
        last_used_at=max(existing.last_used_at, incoming.last_used_at)
    )


class SelectorCache(ABC):
    """Backend-agnostic store of previously successful selectors.

    Entries are candidates only: callers re-validate a cached selector
    against the live page before trusting it.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[CachedSelector]:
        """Return a copy of the entry for ``key``, or None."""

    @abstractmethod
    async def put(self, key: str, value: CachedSelector) -> None:
        """Insert or merge an entry (see ``merge_entries``)."""

    @abstractmethod
    async def update_success(self, key: str, success: bool) -> bool:
        """Increment the success or failure counter of an existing entry.

        Returns:
            False when no entry exists for ``key``; nothing is created
        """

    @abstractmethod
    async def remove(self, key: str) -> bool:
        """Delete a single entry, returning whether it existed."""

    @abstractmethod
    async def clear_all(self) -> None:
        """Delete every entry."""

    @abstractmethod
    async def evict_expired(self) -> int:
        """Remove entries idle for longer than the TTL, returning how many."""

    @abstractmethod
    async def size(self) -> int:
        """Number of stored entries."""

    @abstractmethod
    def get_metrics(self) -> CacheMetrics:
        """Hit, miss and eviction counters."""

    async def close(self) -> None:
        """Release backend resources."""


class _CacheStats:
    """Hit/miss/eviction counters."""

    def __init__(self):
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def record_hit(self):
        with self._lock:
            self.hits += 1

    def record_miss(self):
        with self._lock:
            self.misses += 1

    def record_evictions(self, count: int = 1):
        with self._lock:
            self.evictions += count

    def snapshot(self, size: int) -> CacheMetrics:
        with self._lock:
            return CacheMetrics(hits=self.hits, misses=self.misses, evictions=self.evictions, size=size)


class _StripedLocks:
    """Fixed pool of locks; a key always maps to the same lock."""

    def __init__(self, stripes: int = 64):
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(stripes)]

    def for_key(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]


class InMemorySelectorCache(SelectorCache):
    """Bounded in-process cache.

    Stored records are never mutated in place; every update swaps in a new
    ``CachedSelector`` under the key's stripe lock, so readers never observe a
    half-updated record. On overflow the entry with the oldest
    ``last_used_at`` is evicted.
    """

    def __init__(self, max_size: int = 10000, ttl_seconds: int = 86400, lock_stripes: int = 64):
        self.max_size = max_size
        self.ttl = timedelta(seconds=ttl_seconds)
        self._entries: Dict[str, CachedSelector] = {}
        self._locks = _StripedLocks(lock_stripes)
        self._stats = _CacheStats()

    async def get(self, key: str) -> Optional[CachedSelector]:
        return self._get(key)

    async def put(self, key: str, value: CachedSelector) -> None:
        self._put(key, value)

    async def update_success(self, key: str, success: bool) -> bool:
        return self._update_success(key, success)

    async def remove(self, key: str) -> bool:
        return self._remove(key)

    async def clear_all(self) -> None:
        self._clear_all()

    async def evict_expired(self) -> int:
        return self._evict_expired()

    async def size(self) -> int:
        return len(self._entries)

    def get_metrics(self) -> CacheMetrics:
        return self._stats.snapshot(len(self._entries))

    def _get(self, key: str) -> Optional[CachedSelector]:
        with self._locks.for_key(key):
            entry = self._entries.get(key)
        if entry is None or self._is_expired(entry):
            self._stats.record_miss()
            return None
        self._stats.record_hit()
        return entry.copy()

    def _put(self, key: str, value: CachedSelector):
        with self._locks.for_key(key):
            self._entries[key] = merge_entries(self._entries.get(key), value)
        if len(self._entries) > self.max_size:
            self._evict_overflow()

    def _update_success(self, key: str, success: bool) -> bool:
        with self._locks.for_key(key):
            entry = self._entries.get(key)
            if entry is None:
                return False
            if success:
                updated = replace(entry, success_count=entry.success_count + 1, last_used_at=datetime.now())
            else:
                updated = replace(entry, failure_count=entry.failure_count + 1, last_used_at=datetime.now())
            self._entries[key] = updated
        return True

    def _remove(self, key: str) -> bool:
        with self._locks.for_key(key):
            return self._entries.pop(key, None) is not None

    def _clear_all(self):
        for key in list(self._entries):
            with self._locks.for_key(key):
                self._entries.pop(key, None)
        logger.info("Selector cache cleared")

    def _evict_expired(self) -> int:
        evicted = 0
        for key, entry in list(self._entries.items()):
            if not self._is_expired(entry):
                continue
            with self._locks.for_key(key):
                current = self._entries.get(key)
                if current is not None and self._is_expired(current):
                    del self._entries[key]
                    evicted += 1
        if evicted:
            self._stats.record_evictions(evicted)
            logger.debug(f"Evicted {evicted} expired selector cache entries")
        return evicted

    def _evict_overflow(self):
        while len(self._entries) > self.max_size:
            snapshot = list(self._entries.items())
            if not snapshot:
                return
            victim, _ = min(snapshot, key=lambda item: item[1].last_used_at)
            with self._locks.for_key(victim):
                if self._entries.pop(victim, None) is not None:
                    self._stats.record_evictions()

    def _is_expired(self, entry: CachedSelector) -> bool:
        return datetime.now() - entry.last_used_at > self.ttl


def create_selector_cache(config: HealingConfiguration) -> SelectorCache:
    """Build the cache backend selected by the configuration.

    Persistent backends that cannot be initialised fall back to memory.
    """
    from .persistent_cache import FileSelectorCache, RedisSelectorCache

    if config.cache_type == CacheType.FILE:
        try:
            return FileSelectorCache(
                config.cache_file_path,
                max_size=config.cache_max_size,
                ttl_seconds=config.cache_ttl_seconds
            )
        except OSError as e:
            logger.warning(f"Failed to initialize file cache, falling back to memory: {e}")

    elif config.cache_type == CacheType.REDIS:
        try:
            return RedisSelectorCache(config.redis_url, ttl_seconds=config.cache_ttl_seconds)
        except ValueError as e:
            logger.warning(f"Failed to initialize Redis cache, falling back to memory: {e}")

    return InMemorySelectorCache(max_size=config.cache_max_size, ttl_seconds=config.cache_ttl_seconds)
