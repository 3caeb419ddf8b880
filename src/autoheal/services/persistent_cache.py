"""Persistent selector cache backends (JSON file and Redis)."""

import asyncio
import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from ..core.models.healing_models import CachedSelector, CacheMetrics
from .selector_cache import InMemorySelectorCache, SelectorCache, _CacheStats, merge_entries


logger = logging.getLogger(__name__)

FILE_FORMAT_VERSION = 1


class FileSelectorCache(InMemorySelectorCache):
    """In-memory cache mirrored to a JSON file.

    The file is reloaded at construction and rewritten after every mutation
    through a temporary file and an atomic replace.
    """

    def __init__(self, file_path: str, max_size: int = 10000, ttl_seconds: int = 86400):
        super().__init__(max_size=max_size, ttl_seconds=ttl_seconds)
        self.file_path = Path(file_path)
        self._file_lock = threading.Lock()
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        self._load()

    async def put(self, key: str, value: CachedSelector) -> None:
        self._put(key, value)
        await self._persist()

    async def update_success(self, key: str, success: bool) -> bool:
        updated = self._update_success(key, success)
        if updated:
            await self._persist()
        return updated

    async def remove(self, key: str) -> bool:
        removed = self._remove(key)
        if removed:
            await self._persist()
        return removed

    async def clear_all(self) -> None:
        self._clear_all()
        await self._persist()

    async def evict_expired(self) -> int:
        evicted = self._evict_expired()
        if evicted:
            await self._persist()
        return evicted

    async def close(self) -> None:
        await self._persist()

    def _load(self):
        if not self.file_path.exists():
            logger.info(f"No cache file at {self.file_path}, starting empty")
            return

        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Ignoring unreadable cache file {self.file_path}: {e}")
            return

        loaded = 0
        for key, raw in (data.get("entries") or {}).items():
            try:
                entry = CachedSelector.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed cache entry {key!r}: {e}")
                continue
            if not self._is_expired(entry):
                self._entries[key] = entry
                loaded += 1
        logger.info(f"Loaded {loaded} selector cache entries from {self.file_path}")

    async def _persist(self):
        await asyncio.to_thread(self._write_file)

    def _write_file(self):
        with self._file_lock:
            payload = {
                "version": FILE_FORMAT_VERSION,
                "saved_at": datetime.now().isoformat(),
                "entries": {key: entry.to_dict() for key, entry in list(self._entries.items())}
            }
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self.file_path.parent), prefix=".autoheal-cache-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                os.replace(tmp_path, self.file_path)
            except OSError:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise


class RedisSelectorCache(SelectorCache):
    """Selector cache shared across processes through Redis.

    Each entry is a JSON document under ``autoheal:selector:<cache key>``.
    Read-modify-write updates run in WATCH/MULTI transactions and expiry is
    delegated to Redis with a per-key TTL refreshed on every write.
    """

    KEY_PREFIX = "autoheal:selector:"

    def __init__(self, redis_url: Optional[str], ttl_seconds: int = 86400, client=None):
        if client is None and not redis_url:
            raise ValueError("redis_url is required for the Redis cache backend")
        self.ttl_seconds = ttl_seconds
        self._client = client if client is not None else redis.from_url(redis_url, decode_responses=True)
        self._stats = _CacheStats()
        self._size_hint = 0

    def _redis_key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    @staticmethod
    def _serialize(entry: CachedSelector) -> str:
        return json.dumps(entry.to_dict())

    @staticmethod
    def _deserialize(raw: Optional[str]) -> Optional[CachedSelector]:
        if not raw:
            return None
        return CachedSelector.from_dict(json.loads(raw))

    async def get(self, key: str) -> Optional[CachedSelector]:
        entry = self._deserialize(await self._client.get(self._redis_key(key)))
        if entry is None:
            self._stats.record_miss()
        else:
            self._stats.record_hit()
        return entry

    async def put(self, key: str, value: CachedSelector) -> None:
        redis_key = self._redis_key(key)
        async with self._client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(redis_key)
                    existing = self._deserialize(await pipe.get(redis_key))
                    merged = merge_entries(existing, value)
                    pipe.multi()
                    pipe.set(redis_key, self._serialize(merged), ex=self.ttl_seconds)
                    await pipe.execute()
                    return
                except WatchError:
                    logger.debug(f"Concurrent update of {redis_key}, retrying")

    async def update_success(self, key: str, success: bool) -> bool:
        redis_key = self._redis_key(key)
        async with self._client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(redis_key)
                    entry = self._deserialize(await pipe.get(redis_key))
                    if entry is None:
                        await pipe.unwatch()
                        return False
                    if success:
                        entry.success_count += 1
                    else:
                        entry.failure_count += 1
                    entry.last_used_at = datetime.now()
                    pipe.multi()
                    pipe.set(redis_key, self._serialize(entry), ex=self.ttl_seconds)
                    await pipe.execute()
                    return True
                except WatchError:
                    logger.debug(f"Concurrent update of {redis_key}, retrying")

    async def remove(self, key: str) -> bool:
        return await self._client.delete(self._redis_key(key)) > 0

    async def clear_all(self) -> None:
        batch = []
        async for redis_key in self._client.scan_iter(match=f"{self.KEY_PREFIX}*"):
            batch.append(redis_key)
            if len(batch) >= 500:
                await self._client.delete(*batch)
                batch = []
        if batch:
            await self._client.delete(*batch)
        logger.info("Redis selector cache cleared")

    async def evict_expired(self) -> int:
        # Redis drops expired keys on its own
        return 0

    async def size(self) -> int:
        count = 0
        async for _ in self._client.scan_iter(match=f"{self.KEY_PREFIX}*"):
            count += 1
        self._size_hint = count
        return count

    def get_metrics(self) -> CacheMetrics:
        return self._stats.snapshot(self._size_hint)

    async def close(self) -> None:
        await self._client.aclose()
