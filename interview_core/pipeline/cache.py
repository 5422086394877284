"""
Two-tier cache for synthesized speech.

Tier 1 is a bounded in-process LRU; tier 2 is a durable blob store. Keys are
content-addressed, so concurrent writers of one key store identical bytes
and last-writer-wins is safe.
"""

import asyncio
import hashlib
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, Set, TypeVar

from interview_core.errors import CacheUnavailable
from interview_core.models import CacheEntry
from interview_core.storage import BlobStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def normalize_text(text: str) -> str:
    """Lower-case, trim and collapse internal whitespace."""
    return " ".join(text.split()).lower()


def cache_key(text: str, voice: str, speed: float, model: str) -> str:
    """
    Derive the cache key for a synthesis request.

    ``"Hello World"`` and ``"  hello   world "`` map to the same key;
    a speed of ``1`` and ``1.0`` do too.
    """
    raw = f"{normalize_text(text)}:{voice}:{float(speed)}:{model}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16] + ".mp3"


# =============================================================================
# In-memory tier
# =============================================================================


class LRUCache(Generic[T]):
    """
    Bounded LRU (Least Recently Used) container.

    Eviction order: when full, the entry that was read or written longest
    ago is evicted first. Reads refresh recency. All mutation happens under
    a single asyncio lock.
    """

    def __init__(self, max_size: int = 50):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._entries: "OrderedDict[str, T]" = OrderedDict()
        self._lock = asyncio.Lock()
        self.evictions = 0

    async def get(self, key: str) -> Optional[T]:
        async with self._lock:
            value = self._entries.get(key)
            if value is None:
                return None
            # Move to end (most recently used)
            self._entries.move_to_end(key)
            return value

    async def set(self, key: str, value: T) -> None:
        async with self._lock:
            if key in self._entries:
                del self._entries[key]

            while len(self._entries) >= self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                self.evictions += 1
                logger.debug(f"Evicted {evicted} from memory cache")

            self._entries[key] = value

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def keys(self) -> list:
        """Keys from least to most recently used."""
        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries


# =============================================================================
# Two-tier cache
# =============================================================================


@dataclass
class CacheStats:
    """Cache statistics."""

    memory_hits: int = 0
    memory_misses: int = 0
    storage_hits: int = 0
    storage_misses: int = 0
    memory_cache_size: int = 0
    lookups: int = 0

    @property
    def hit_rate(self) -> float:
        if self.lookups == 0:
            return 0.0
        return round((self.memory_hits + self.storage_hits) / self.lookups, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memory_hits": self.memory_hits,
            "memory_misses": self.memory_misses,
            "storage_hits": self.storage_hits,
            "storage_misses": self.storage_misses,
            "memory_cache_size": self.memory_cache_size,
            "hit_rate": self.hit_rate,
        }


class SynthesisCache:
    """
    Two-level synthesis cache (memory + durable blob store).

    Lookup order is memory, then durable store, then miss. A durable hit
    is copied into memory before it is returned. Writes land in memory
    immediately; the durable write runs in the background.

    Durable-store outages are logged and treated as misses.
    """

    AUDIO_PREFIX = "audio"

    def __init__(
        self,
        store: Optional[BlobStore] = None,
        ttl_seconds: int = 7 * 24 * 60 * 60,
        max_memory_items: int = 50,
        enable_memory_cache: bool = True,
        enable_storage_cache: bool = True,
    ):
        self.store = store if enable_storage_cache else None
        self.ttl_seconds = ttl_seconds
        self._memory: Optional[LRUCache[CacheEntry]] = (
            LRUCache(max_memory_items) if enable_memory_cache else None
        )
        self._stats = CacheStats()
        self._pending: Set[asyncio.Task] = set()

    def _blob_key(self, key: str) -> str:
        return f"{self.AUDIO_PREFIX}/{key}"

    async def get(self, key: str) -> Optional[CacheEntry]:
        """Look up a key in memory, then in the durable store."""
        self._stats.lookups += 1

        if self._memory is not None:
            entry = await self._memory.get(key)
            if entry is not None and not entry.is_expired(self.ttl_seconds):
                self._stats.memory_hits += 1
                return entry
            if entry is not None:
                await self._memory.delete(key)
            self._stats.memory_misses += 1

        if self.store is None:
            return None

        try:
            obj = await self.store.get(self._blob_key(key))
        except CacheUnavailable as e:
            logger.warning(f"Durable cache unavailable on read, treating as miss: {e}")
            self._stats.storage_misses += 1
            return None

        if obj is None or obj.data is None or obj.age_seconds() > self.ttl_seconds:
            self._stats.storage_misses += 1
            return None

        self._stats.storage_hits += 1
        entry = CacheEntry(
            key=key,
            audio=obj.data,
            content_type=obj.content_type,
            created_at=obj.last_modified,
            url=obj.url,
        )
        if self._memory is not None:
            await self._memory.set(key, entry)
        return entry

    async def set(
        self,
        key: str,
        audio: bytes,
        content_type: str = "audio/mpeg",
    ) -> CacheEntry:
        """Store audio in memory now and in the durable store in the background."""
        entry = CacheEntry(key=key, audio=audio, content_type=content_type)

        if self._memory is not None:
            await self._memory.set(key, entry)

        if self.store is not None:
            task = asyncio.create_task(self._write_durable(key, audio, content_type))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        return entry

    async def _write_durable(self, key: str, audio: bytes, content_type: str) -> None:
        try:
            await self.store.put(self._blob_key(key), audio, content_type)
        except CacheUnavailable as e:
            logger.warning(f"Durable cache unavailable on write for {key}: {e}")

    async def flush(self) -> None:
        """Wait for in-flight durable writes."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def delete(self, key: str) -> bool:
        """Remove a key from both tiers."""
        deleted = False
        if self._memory is not None:
            deleted = await self._memory.delete(key)
        if self.store is not None:
            try:
                deleted = await self.store.delete(self._blob_key(key)) or deleted
            except CacheUnavailable as e:
                logger.warning(f"Durable cache unavailable on delete for {key}: {e}")
        return deleted

    async def clear(self) -> None:
        """Clear the in-memory tier. The durable tier ages out by TTL."""
        if self._memory is not None:
            await self._memory.clear()
        logger.info("Memory cache cleared")

    async def cleanup_expired(self) -> int:
        """Delete durable entries older than the TTL. Returns the count."""
        if self.store is None:
            return 0

        try:
            objects = await self.store.list(f"{self.AUDIO_PREFIX}/")
            now = time.time()
            deleted = 0
            for obj in objects:
                if obj.age_seconds(now) > self.ttl_seconds:
                    if await self.store.delete(obj.key):
                        deleted += 1
        except CacheUnavailable as e:
            logger.error(f"Cache cleanup failed: {e}")
            return 0

        logger.info(f"Cleaned up {deleted} expired cache entries")
        return deleted

    def stats(self) -> CacheStats:
        """Snapshot of cache statistics."""
        return CacheStats(
            memory_hits=self._stats.memory_hits,
            memory_misses=self._stats.memory_misses,
            storage_hits=self._stats.storage_hits,
            storage_misses=self._stats.storage_misses,
            memory_cache_size=len(self._memory) if self._memory is not None else 0,
            lookups=self._stats.lookups,
        )
