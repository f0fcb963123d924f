import asyncio
import json
import os
import re
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any

from fastapi.encoders import jsonable_encoder
from loguru import logger
from redis.asyncio import Redis


# ============ Cache Key Management ============


class CacheKey(str, Enum):
    """
    Centralized cache key definitions.

    Pattern: {prefix}:{identifier}
    Example: device:owner-1_abc123_1718000000000

    Usage:
        await cache_manager.set(CacheKey.DEVICE_RECORD, record_id, data)
        data = await cache_manager.get(CacheKey.DEVICE_RECORD, record_id)
    """

    DEVICE_RECORD = "device"  # device:{record_id}

    def format_key(self, *identifiers: str) -> str:
        """Format cache key with identifiers, e.g. "device:{record_id}"."""
        parts = [self.value] + list(identifiers)
        return ":".join(parts)

    def pattern(self) -> str:
        """Get wildcard pattern for this key prefix."""
        return f"{self.value}:*"


# ============ Cache Manager Base Class ============


class BaseCacheManager(ABC):
    """
    Abstract key -> JSON blob store.

    Used as the local cache of device records so a restarted process can
    show state before any registry round-trip. Backends: JSON files on disk
    (default) or Redis.
    """

    @abstractmethod
    async def get(self, key: CacheKey | str, *identifiers: str) -> dict | None:
        """Get value from cache."""

    @abstractmethod
    async def set(self, key: CacheKey | str, value: dict | Any, *identifiers: str) -> None:
        """Store value in cache."""

    @abstractmethod
    async def delete(self, key: CacheKey | str, *identifiers: str) -> None:
        """Delete key from cache."""

    @abstractmethod
    async def exists(self, key: CacheKey | str, *identifiers: str) -> bool:
        """Check if key exists in cache."""

    @abstractmethod
    async def values(self, key: CacheKey | str) -> list[dict]:
        """Return every value stored under a key prefix."""

    async def close(self) -> None:
        """Release backend resources."""

    def _build_key(self, key: CacheKey | str, *identifiers: str) -> str:
        """Build full cache key."""
        if isinstance(key, CacheKey):
            return key.format_key(*identifiers)
        if identifiers:
            return f"{key}:{':'.join(identifiers)}"
        return key

    @staticmethod
    def _serialize(value: dict | Any) -> str:
        return json.dumps(jsonable_encoder(value), default=str, ensure_ascii=False)


# ============ File Cache Manager Implementation ============

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class FileCacheManager(BaseCacheManager):
    """
    One JSON file per key inside a directory.

    Writes go to a temporary file and are moved into place with os.replace so
    a crash mid-write never leaves a truncated blob behind.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path_for(self, cache_key: str) -> Path:
        return self.directory / f"{_UNSAFE_CHARS.sub('_', cache_key)}.json"

    def _read(self, path: Path) -> dict | None:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            raise ValueError(f"Failed to deserialize cache file {path.name}: {e}")

    def _write(self, path: Path, payload: str) -> None:
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(payload)
        os.replace(tmp_path, path)

    async def get(self, key: CacheKey | str, *identifiers: str) -> dict | None:
        path = self._path_for(self._build_key(key, *identifiers))
        return await asyncio.to_thread(self._read, path)

    async def set(self, key: CacheKey | str, value: dict | Any, *identifiers: str) -> None:
        path = self._path_for(self._build_key(key, *identifiers))
        try:
            await asyncio.to_thread(self._write, path, self._serialize(value))
        except OSError as e:
            raise RuntimeError(f"Cache set error for key {key}: {e}")

    async def delete(self, key: CacheKey | str, *identifiers: str) -> None:
        path = self._path_for(self._build_key(key, *identifiers))
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as e:
            raise RuntimeError(f"Cache delete error for key {key}: {e}")

    async def exists(self, key: CacheKey | str, *identifiers: str) -> bool:
        path = self._path_for(self._build_key(key, *identifiers))
        return path.exists()

    async def values(self, key: CacheKey | str) -> list[dict]:
        prefix = _UNSAFE_CHARS.sub("_", self._build_key(key)) + "_"
        paths = sorted(self.directory.glob(f"{prefix}*.json"))
        results = []
        for path in paths:
            try:
                value = await asyncio.to_thread(self._read, path)
            except ValueError as e:
                logger.warning(f"Bỏ qua cache file hỏng: {e}")
                continue
            if value is not None:
                results.append(value)
        return results


# ============ Redis Cache Manager Implementation ============


class RedisCacheManager(BaseCacheManager):
    """
    Redis-based cache manager with JSON serialization.

    Device blobs are stored without TTL: the cache must survive restarts.
    """

    def __init__(self, redis_client: Redis):
        self.redis = redis_client

    async def get(self, key: CacheKey | str, *identifiers: str) -> dict | None:
        try:
            value = await self.redis.get(self._build_key(key, *identifiers))
            if value is None:
                return None
            value_str = value.decode() if isinstance(value, bytes) else value
            return json.loads(value_str)
        except json.JSONDecodeError as e:
            raise ValueError(f"Failed to deserialize cache value for key {key}: {e}")
        except Exception as e:
            raise RuntimeError(f"Cache get error for key {key}: {e}")

    async def set(self, key: CacheKey | str, value: dict | Any, *identifiers: str) -> None:
        try:
            await self.redis.set(self._build_key(key, *identifiers), self._serialize(value))
        except Exception as e:
            raise RuntimeError(f"Cache set error for key {key}: {e}")

    async def delete(self, key: CacheKey | str, *identifiers: str) -> None:
        try:
            await self.redis.delete(self._build_key(key, *identifiers))
        except Exception as e:
            raise RuntimeError(f"Cache delete error for key {key}: {e}")

    async def exists(self, key: CacheKey | str, *identifiers: str) -> bool:
        try:
            return bool(await self.redis.exists(self._build_key(key, *identifiers)))
        except Exception as e:
            raise RuntimeError(f"Cache exists error for key {key}: {e}")

    async def values(self, key: CacheKey | str) -> list[dict]:
        pattern = key.pattern() if isinstance(key, CacheKey) else f"{key}:*"
        results = []
        try:
            cursor = 0
            while True:
                cursor, keys = await self.redis.scan(cursor, match=pattern, count=100)
                for cache_key in keys:
                    raw = await self.redis.get(cache_key)
                    if raw is None:
                        continue
                    try:
                        results.append(
                            json.loads(raw.decode() if isinstance(raw, bytes) else raw)
                        )
                    except ValueError as e:
                        logger.warning(f"Bỏ qua cache key hỏng {cache_key}: {e}")
                if cursor == 0:
                    break
        except Exception as e:
            raise RuntimeError(f"Cache scan error for {pattern}: {e}")
        return results

    async def close(self) -> None:
        await self.redis.aclose()


def create_cache_manager(cache_settings, default_directory: Path) -> BaseCacheManager:
    """Factory chọn backend local cache theo cấu hình."""
    if cache_settings.backend == "redis":
        client = Redis.from_url(cache_settings.redis_url)
        return RedisCacheManager(client)
    directory = Path(cache_settings.directory) if cache_settings.directory else default_directory
    return FileCacheManager(directory)
