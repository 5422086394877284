"""Tests for the two-tier synthesis cache."""

import time

import pytest

from interview_core.errors import CacheUnavailable
from interview_core.pipeline.cache import LRUCache, SynthesisCache, cache_key, normalize_text
from interview_core.storage import InMemoryBlobStore


class UnavailableBlobStore(InMemoryBlobStore):
    """Blob store whose backend is down."""

    async def get(self, key):
        raise CacheUnavailable("connection refused")

    async def put(self, key, data, content_type=None):
        raise CacheUnavailable("connection refused")


class TestCacheKey:
    """Tests for cache key derivation."""

    def test_normalization(self):
        """Test case and whitespace differences map to one key."""
        assert normalize_text("  Hello   World ") == "hello world"
        assert cache_key("Hello World", "alloy", 1.0, "tts-1-hd") == cache_key(
            "  hello   world ", "alloy", 1.0, "tts-1-hd"
        )

    def test_speed_normalized(self):
        """Test integer and float speeds share a key."""
        assert cache_key("hi", "alloy", 1, "tts-1-hd") == cache_key("hi", "alloy", 1.0, "tts-1-hd")

    @pytest.mark.parametrize("text,voice,speed,model", [
        ("hello world!", "alloy", 1.0, "tts-1-hd"),
        ("hello world", "nova", 1.0, "tts-1-hd"),
        ("hello world", "alloy", 1.25, "tts-1-hd"),
        ("hello world", "alloy", 1.0, "tts-1"),
    ])
    def test_any_component_changes_key(self, text, voice, speed, model):
        """Test text, voice, speed and model all contribute to the key."""
        assert cache_key(text, voice, speed, model) != cache_key("hello world", "alloy", 1.0, "tts-1-hd")

    def test_key_format(self):
        """Test keys are 16 hex characters plus an extension."""
        key = cache_key("안녕하세요", "onyx", 1.0, "tts-1-hd")
        assert key.endswith(".mp3")
        assert len(key) == 20
        int(key[:16], 16)


class TestLRUCache:
    """Tests for the in-memory tier."""

    @pytest.mark.asyncio
    async def test_evicts_least_recently_used(self):
        """Test a read refreshes recency before eviction."""
        lru = LRUCache(max_size=2)
        await lru.set("a", 1)
        await lru.set("b", 2)
        assert await lru.get("a") == 1

        await lru.set("c", 3)

        assert "b" not in lru
        assert lru.keys() == ["a", "c"]
        assert lru.evictions == 1

    @pytest.mark.asyncio
    async def test_overwrite_does_not_evict(self):
        """Test rewriting an existing key keeps the size."""
        lru = LRUCache(max_size=2)
        await lru.set("a", 1)
        await lru.set("b", 2)
        await lru.set("a", 10)

        assert len(lru) == 2
        assert lru.evictions == 0
        assert await lru.get("a") == 10
        assert lru.keys() == ["b", "a"]

    def test_rejects_zero_size(self):
        """Test the cache needs room for at least one entry."""
        with pytest.raises(ValueError):
            LRUCache(max_size=0)


class TestSynthesisCache:
    """Tests for SynthesisCache."""

    @pytest.mark.asyncio
    async def test_memory_hit_after_set(self, cache):
        """Test a write is readable from memory immediately."""
        await cache.set("k1.mp3", b"audio-bytes")

        entry = await cache.get("k1.mp3")
        await cache.flush()

        assert entry.audio == b"audio-bytes"
        stats = cache.stats()
        assert stats.memory_hits == 1
        assert stats.storage_hits == 0

    @pytest.mark.asyncio
    async def test_miss_counts_both_tiers(self, cache):
        """Test a full miss is recorded on both tiers."""
        assert await cache.get("missing.mp3") is None

        stats = cache.stats()
        assert stats.memory_misses == 1
        assert stats.storage_misses == 1
        assert stats.hit_rate == 0.0

    @pytest.mark.asyncio
    async def test_durable_hit_populates_memory(self, blob_store):
        """Test a durable hit is promoted into the memory tier."""
        writer = SynthesisCache(store=blob_store)
        await writer.set("k2.mp3", b"durable")
        await writer.flush()

        reader = SynthesisCache(store=blob_store)
        first = await reader.get("k2.mp3")
        second = await reader.get("k2.mp3")

        assert first.audio == b"durable"
        assert first.url == "memory://tts-cache/audio/k2.mp3"
        assert second.audio == b"durable"
        stats = reader.stats()
        assert stats.storage_hits == 1
        assert stats.memory_hits == 1
        assert stats.hit_rate == 1.0

    @pytest.mark.asyncio
    async def test_durable_write_uses_audio_prefix(self, cache, blob_store):
        """Test durable objects live under the audio prefix."""
        await cache.set("k3.mp3", b"x")
        await cache.flush()

        objects = await blob_store.list("audio/")
        assert [o.key for o in objects] == ["audio/k3.mp3"]

    @pytest.mark.asyncio
    async def test_expired_durable_entry_is_miss(self, blob_store):
        """Test entries older than the TTL are not served."""
        cache = SynthesisCache(store=blob_store, ttl_seconds=60, enable_memory_cache=False)
        await cache.set("old.mp3", b"stale")
        await cache.flush()
        blob_store._objects["audio/old.mp3"].last_modified = time.time() - 120

        assert await cache.get("old.mp3") is None
        assert cache.stats().storage_misses == 1

    @pytest.mark.asyncio
    async def test_unavailable_store_read_is_miss(self):
        """Test a durable-store outage on read degrades to a miss."""
        cache = SynthesisCache(store=UnavailableBlobStore())

        assert await cache.get("k.mp3") is None
        assert cache.stats().storage_misses == 1

    @pytest.mark.asyncio
    async def test_unavailable_store_write_is_not_raised(self):
        """Test a failed durable write still leaves the memory entry."""
        cache = SynthesisCache(store=UnavailableBlobStore())

        await cache.set("k.mp3", b"audio")
        await cache.flush()

        entry = await cache.get("k.mp3")
        assert entry.audio == b"audio"

    @pytest.mark.asyncio
    async def test_memory_only_cache(self):
        """Test the cache works without a durable store."""
        cache = SynthesisCache(store=None)
        await cache.set("k.mp3", b"audio")

        assert (await cache.get("k.mp3")).audio == b"audio"
        assert await cache.get("other.mp3") is None

    @pytest.mark.asyncio
    async def test_memory_tier_bounded(self, blob_store):
        """Test memory keeps at most max_memory_items entries."""
        cache = SynthesisCache(store=blob_store, max_memory_items=2)
        for i in range(3):
            await cache.set(f"k{i}.mp3", b"a")
        await cache.flush()

        assert cache.stats().memory_cache_size == 2

    @pytest.mark.asyncio
    async def test_clear_only_affects_memory(self, cache):
        """Test clearing memory leaves durable entries reachable."""
        await cache.set("k.mp3", b"audio")
        await cache.flush()
        await cache.clear()

        entry = await cache.get("k.mp3")

        assert entry.audio == b"audio"
        assert cache.stats().storage_hits == 1

    @pytest.mark.asyncio
    async def test_delete_removes_both_tiers(self, cache):
        """Test delete removes the entry everywhere."""
        await cache.set("k.mp3", b"audio")
        await cache.flush()

        assert await cache.delete("k.mp3") is True
        assert await cache.get("k.mp3") is None

    @pytest.mark.asyncio
    async def test_cleanup_expired(self, blob_store):
        """Test cleanup deletes only entries past the TTL."""
        cache = SynthesisCache(store=blob_store, ttl_seconds=60)
        await cache.set("old.mp3", b"old")
        await cache.set("new.mp3", b"new")
        await cache.flush()
        blob_store._objects["audio/old.mp3"].last_modified = time.time() - 600

        deleted = await cache.cleanup_expired()

        assert deleted == 1
        assert [o.key for o in await blob_store.list("audio/")] == ["audio/new.mp3"]

    def test_stats_serialization(self, cache):
        """Test stats serialize with the hit rate."""
        data = cache.stats().to_dict()

        assert set(data) == {
            "memory_hits",
            "memory_misses",
            "storage_hits",
            "storage_misses",
            "memory_cache_size",
            "hit_rate",
        }
