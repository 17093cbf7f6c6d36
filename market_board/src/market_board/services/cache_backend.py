"""
Cache backends for the price fetch service.

A backend is a minimal asynchronous key/value store for
:class:`~market_board.models.CacheEntry` objects.  Backends never
validate entries (TTL, schema and checksum checks belong to the fetch
service) and never raise for a missing key; absence is reported as
``None``.

Three implementations are provided:

* :class:`InMemoryCacheBackend` – process-local dictionary, the default.
* :class:`JsonFileCacheBackend` – a single JSON document on disk so that
  prices survive restarts.  File access runs via ``asyncio.to_thread``.
* :class:`RedisCacheBackend` – shared cache in Redis using
  ``redis.asyncio``, suitable when several processes query the same
  upstream.

Usage:

    backend = build_cache_backend(PriceApiSettings.from_env())
    fetcher = PriceFetchService(client, backend)
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Dict, List, Optional, Protocol

import redis.asyncio as aioredis
from pydantic import ValidationError

from ..config import PriceApiSettings
from ..models import CacheEntry

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    """Protocol implemented by every price cache backend."""

    async def get(self, key: str) -> Optional[CacheEntry]: ...

    async def set(self, key: str, entry: CacheEntry) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def clear(self) -> None: ...

    async def keys(self) -> List[str]: ...


class InMemoryCacheBackend:
    """Dictionary-backed cache with no eviction of its own."""

    def __init__(self) -> None:
        self._entries: Dict[str, CacheEntry] = {}

    async def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    async def set(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()

    async def keys(self) -> List[str]:
        return list(self._entries.keys())


class JsonFileCacheBackend:
    """Persist cache entries to a JSON file.

    The whole document is loaded once and kept in memory; every mutation
    rewrites the file.  It is not built for high throughput, only for a
    single client that wants its price cache to survive a restart.  A
    missing or unreadable file starts the cache empty.
    """

    def __init__(self, path: str = "price_cache.json") -> None:
        self.path = os.path.abspath(path)
        self._entries: Optional[Dict[str, CacheEntry]] = None
        self._lock = asyncio.Lock()

    def _read_file(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write_file(self, data: Dict[str, Any]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    async def _load(self) -> Dict[str, CacheEntry]:
        if self._entries is not None:
            return self._entries
        try:
            raw = await asyncio.to_thread(self._read_file)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable price cache file %s: %s", self.path, exc)
            raw = {}
        entries: Dict[str, CacheEntry] = {}
        dropped = 0
        for key, value in raw.items() if isinstance(raw, dict) else ():
            try:
                entries[key] = CacheEntry.model_validate(value)
            except ValidationError:
                logger.warning("Dropping malformed cache entry %s from %s", key, self.path)
                dropped += 1
        self._entries = entries
        if dropped:
            await self._flush(entries)
        if entries:
            logger.debug("Loaded %d price cache entries from %s", len(entries), self.path)
        return entries

    async def _flush(self, entries: Dict[str, CacheEntry]) -> None:
        snapshot = {key: entry.model_dump(mode="json") for key, entry in entries.items()}
        await asyncio.to_thread(self._write_file, snapshot)

    async def get(self, key: str) -> Optional[CacheEntry]:
        async with self._lock:
            entries = await self._load()
            return entries.get(key)

    async def set(self, key: str, entry: CacheEntry) -> None:
        async with self._lock:
            entries = await self._load()
            entries[key] = entry
            await self._flush(entries)

    async def delete(self, key: str) -> None:
        async with self._lock:
            entries = await self._load()
            if entries.pop(key, None) is not None:
                await self._flush(entries)

    async def clear(self) -> None:
        async with self._lock:
            self._entries = {}
            await self._flush(self._entries)

    async def keys(self) -> List[str]:
        async with self._lock:
            entries = await self._load()
            return list(entries.keys())


class RedisCacheBackend:
    """Redis-based cache backend.

    Entries are stored as JSON strings under ``{prefix}{key}``.  Values
    that no longer decode into a :class:`CacheEntry` are deleted on read
    and reported as absent, so the fetch service treats them as a miss.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        *,
        prefix: str = "market_board:price:",
        client: Optional[Any] = None,
    ) -> None:
        self.prefix = prefix
        self._redis = client if client is not None else aioredis.Redis(host=host, port=port, decode_responses=True)

    async def get(self, key: str) -> Optional[CacheEntry]:
        raw = await self._redis.get(self.prefix + key)
        if raw is None:
            return None
        try:
            return CacheEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning("Evicting undecodable cache entry in Redis for key %s", key)
            await self._redis.delete(self.prefix + key)
            return None

    async def set(self, key: str, entry: CacheEntry) -> None:
        await self._redis.set(self.prefix + key, entry.model_dump_json())

    async def delete(self, key: str) -> None:
        await self._redis.delete(self.prefix + key)

    async def clear(self) -> None:
        stale = [name async for name in self._redis.scan_iter(match=self.prefix + "*")]
        if stale:
            await self._redis.delete(*stale)

    async def keys(self) -> List[str]:
        return [name[len(self.prefix):] async for name in self._redis.scan_iter(match=self.prefix + "*")]

    async def close(self) -> None:
        await self._redis.aclose()


def build_cache_backend(settings: PriceApiSettings) -> CacheBackend:
    """Construct the backend selected by ``settings.cache_backend``."""
    if settings.cache_backend == "file":
        return JsonFileCacheBackend(settings.cache_path)
    if settings.cache_backend == "redis":
        return RedisCacheBackend(settings.redis_host, settings.redis_port)
    return InMemoryCacheBackend()
