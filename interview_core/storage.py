"""
Blob storage backends for the durable tier of the synthesis cache.

Supports:
- Local filesystem (``<root>/<bucket>/<key>``)
- In-process memory (tests and single-node development)
"""

import asyncio
import hashlib
import logging
import mimetypes
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import aiofiles

from interview_core.errors import CacheUnavailable

logger = logging.getLogger(__name__)


@dataclass
class BlobObject:
    """Stored object metadata, plus the bytes when fetched with ``get``."""

    key: str
    size: int
    content_type: str
    last_modified: float = field(default_factory=time.time)
    etag: Optional[str] = None
    url: Optional[str] = None
    data: Optional[bytes] = None

    def age_seconds(self, now: Optional[float] = None) -> float:
        return (now or time.time()) - self.last_modified


class BlobStore(ABC):
    """Abstract blob store scoped to a single bucket."""

    bucket: str

    @abstractmethod
    async def get(self, key: str) -> Optional[BlobObject]:
        """Fetch an object with its bytes, or None if it does not exist."""
        pass

    @abstractmethod
    async def put(
        self,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> BlobObject:
        """Store an object, replacing any previous content."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete an object. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def list(self, prefix: str = "") -> List[BlobObject]:
        """List objects (without bytes) under a prefix."""
        pass


def _guess_content_type(key: str) -> str:
    mime_type, _ = mimetypes.guess_type(key)
    return mime_type or "application/octet-stream"


class LocalBlobStore(BlobStore):
    """
    Local filesystem blob store.

    Usage:
        store = LocalBlobStore(base_path="/data/storage", bucket="tts-cache")
        await store.put("audio/3f2a9c.mp3", audio_bytes, "audio/mpeg")

    Filesystem errors other than a missing file are raised as
    CacheUnavailable so callers can degrade to a cache miss.
    """

    def __init__(
        self,
        base_path: str = "/tmp/interview-core/storage",
        bucket: str = "tts-cache",
        base_url: Optional[str] = None,
    ):
        self.bucket = bucket
        self.root = Path(base_path) / bucket
        self.base_url = (base_url or f"file://{self.root}").rstrip("/")

    def _get_full_path(self, key: str) -> Path:
        return self.root / key

    def _url(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    async def get(self, key: str) -> Optional[BlobObject]:
        """Read an object from disk."""
        file_path = self._get_full_path(key)
        try:
            async with aiofiles.open(file_path, "rb") as f:
                data = await f.read()
            stat = file_path.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CacheUnavailable(f"Failed to read {key}: {e}")

        return BlobObject(
            key=key,
            size=len(data),
            content_type=_guess_content_type(key),
            last_modified=stat.st_mtime,
            url=self._url(key),
            data=data,
        )

    async def put(
        self,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> BlobObject:
        """Write an object to disk."""
        file_path = self._get_full_path(key)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(file_path, "wb") as f:
                await f.write(data)
        except OSError as e:
            raise CacheUnavailable(f"Failed to write {key}: {e}")

        return BlobObject(
            key=key,
            size=len(data),
            content_type=content_type or _guess_content_type(key),
            etag=hashlib.md5(data).hexdigest(),
            url=self._url(key),
        )

    async def delete(self, key: str) -> bool:
        """Delete an object from disk."""
        try:
            self._get_full_path(key).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CacheUnavailable(f"Failed to delete {key}: {e}")

    async def list(self, prefix: str = "") -> List[BlobObject]:
        """List objects on disk under a prefix."""
        base = self._get_full_path(prefix)
        objects: List[BlobObject] = []

        if not base.exists():
            return objects

        try:
            for path in base.rglob("*"):
                if not path.is_file():
                    continue
                key = path.relative_to(self.root).as_posix()
                stat = path.stat()
                objects.append(BlobObject(
                    key=key,
                    size=stat.st_size,
                    content_type=_guess_content_type(key),
                    last_modified=stat.st_mtime,
                    url=self._url(key),
                ))
        except OSError as e:
            raise CacheUnavailable(f"Failed to list {prefix or '/'}: {e}")

        return objects


class InMemoryBlobStore(BlobStore):
    """Blob store kept in process memory."""

    def __init__(self, bucket: str = "tts-cache", base_url: str = "memory://"):
        self.bucket = bucket
        # keep the scheme separator intact for bare "scheme://" bases
        self.base_url = base_url if base_url.endswith("://") else base_url.rstrip("/") + "/"
        self._objects: Dict[str, BlobObject] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[BlobObject]:
        async with self._lock:
            return self._objects.get(key)

    async def put(
        self,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> BlobObject:
        obj = BlobObject(
            key=key,
            size=len(data),
            content_type=content_type or _guess_content_type(key),
            etag=hashlib.md5(data).hexdigest(),
            url=f"{self.base_url}{self.bucket}/{key}",
            data=data,
        )
        async with self._lock:
            self._objects[key] = obj
        return obj

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._objects.pop(key, None) is not None

    async def list(self, prefix: str = "") -> List[BlobObject]:
        async with self._lock:
            return [
                BlobObject(
                    key=obj.key,
                    size=obj.size,
                    content_type=obj.content_type,
                    last_modified=obj.last_modified,
                    etag=obj.etag,
                    url=obj.url,
                )
                for key, obj in self._objects.items()
                if key.startswith(prefix)
            ]
