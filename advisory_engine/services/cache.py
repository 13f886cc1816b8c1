"""
Artifact cache for the generation pipeline
Fingerprint-keyed, TTL-based storage for rosters, ICP profiles and persona
sets, with a Redis backend and an in-process backend
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

import redis.asyncio as redis
import structlog
from pydantic import BaseModel, Field, ValidationError

from ..core import config
from ..logging_config import configure_logging
from ..models.base import ArtifactType
from ..utils.date_utils import expires_in, get_current_utc, is_expired
from .metrics import metrics

configure_logging()
logger = structlog.get_logger(__name__)


DEFAULT_TTL_CONFIG: Dict[ArtifactType, int] = {
    ArtifactType.ROSTER: config.CACHE_TTL_ROSTER_SECONDS,
    ArtifactType.ICP_PROFILE: config.CACHE_TTL_ICP_PROFILE_SECONDS,
    ArtifactType.PERSONA_SET: config.CACHE_TTL_PERSONA_SET_SECONDS,
    # Analysis reports are never cached
}


class CacheEntry(BaseModel):
    fingerprint: str
    artifact_type: ArtifactType
    content: Any = None
    created_at: datetime = Field(default_factory=get_current_utc)
    expires_at: datetime

    def expired(self, now: Optional[datetime] = None) -> bool:
        return is_expired(self.expires_at, now)


class CacheBackend(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def keys(self, prefix: str) -> List[str]: ...

    async def close(self) -> None: ...


class MemoryCacheBackend:
    """Process-local backend. Expiry is enforced by ``ArtifactCache`` on read."""

    name = "memory"

    def __init__(self):
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str) -> List[str]:
        return [k for k in list(self._data) if k.startswith(prefix)]

    async def close(self) -> None:
        self._data.clear()


class RedisCacheBackend:
    """Redis backend sharing one connection pool across sessions."""

    name = "redis"

    def __init__(self, redis_url: str, max_connections: int = config.REDIS_MAX_CONNECTIONS):
        self.redis_url = redis_url
        self.redis_pool = redis.ConnectionPool.from_url(
            redis_url, max_connections=max_connections, decode_responses=True
        )

    @asynccontextmanager
    async def get_client(self):
        """Context manager for Redis client"""
        client = redis.Redis(connection_pool=self.redis_pool)
        try:
            yield client
        finally:
            await client.aclose()

    async def ping(self) -> bool:
        async with self.get_client() as client:
            return bool(await client.ping())

    async def get(self, key: str) -> Optional[str]:
        async with self.get_client() as client:
            return await client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        async with self.get_client() as client:
            await client.setex(key, max(1, int(ttl_seconds)), value)

    async def delete(self, key: str) -> None:
        async with self.get_client() as client:
            await client.delete(key)

    async def keys(self, prefix: str) -> List[str]:
        async with self.get_client() as client:
            return [k async for k in client.scan_iter(match=f"{prefix}*")]

    async def close(self) -> None:
        await self.redis_pool.disconnect()


class ArtifactCache:
    """Fingerprint-keyed artifact cache with per-type TTLs.

    Lookups are exact: the stored fingerprint and artifact type must equal
    the query byte for byte. Expired entries read as a miss and are deleted
    on the spot. Writes are last-write-wins per ``(type, fingerprint)``.
    Backend failures never propagate; they read as a miss or a skipped write.
    """

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        *,
        ttl_config: Optional[Dict[ArtifactType, int]] = None,
        key_prefix: str = config.CACHE_KEY_PREFIX,
    ):
        self.backend = backend or MemoryCacheBackend()
        self.ttl_config = dict(DEFAULT_TTL_CONFIG)
        if ttl_config:
            self.ttl_config.update(ttl_config)
        self.key_prefix = key_prefix
        self.hit_count = 0
        self.miss_count = 0

    def cacheable(self, artifact_type: ArtifactType) -> bool:
        return artifact_type in self.ttl_config

    def _cache_key(self, artifact_type: ArtifactType, fingerprint: str) -> str:
        return f"{self.key_prefix}{artifact_type.value}:{fingerprint}"

    def _record_cache_event(self, artifact_type: ArtifactType, hit: bool) -> None:
        if hit:
            self.hit_count += 1
        else:
            self.miss_count += 1
        metrics.increment("cache_hits" if hit else "cache_misses", artifact_type.value)

    async def get(self, artifact_type: ArtifactType, fingerprint: str) -> Optional[CacheEntry]:
        """Return the live entry for ``(artifact_type, fingerprint)`` or None."""
        if not self.cacheable(artifact_type) or not fingerprint:
            return None

        key = self._cache_key(artifact_type, fingerprint)
        try:
            raw = await self.backend.get(key)
        except Exception as e:
            logger.error("cache.get_failed", artifact_type=artifact_type.value, error=str(e))
            self._record_cache_event(artifact_type, False)
            return None

        if not raw:
            self._record_cache_event(artifact_type, False)
            return None

        try:
            entry = CacheEntry.model_validate_json(raw)
        except (ValidationError, ValueError) as e:
            logger.warning("cache.corrupt_entry", key=key, error=str(e))
            await self._evict(key)
            self._record_cache_event(artifact_type, False)
            return None

        if entry.fingerprint != fingerprint or entry.artifact_type != artifact_type:
            self._record_cache_event(artifact_type, False)
            return None

        if entry.expired():
            logger.debug("cache.expired", artifact_type=artifact_type.value, fingerprint=fingerprint)
            await self._evict(key)
            self._record_cache_event(artifact_type, False)
            return None

        self._record_cache_event(artifact_type, True)
        logger.debug("cache.hit", artifact_type=artifact_type.value, fingerprint=fingerprint)
        return entry

    async def put(
        self,
        artifact_type: ArtifactType,
        fingerprint: str,
        content: Any,
        ttl: Optional[int] = None,
    ) -> bool:
        """Store ``content``; returns False when skipped or on backend failure."""
        if not self.cacheable(artifact_type):
            logger.debug("cache.skip_uncacheable", artifact_type=artifact_type.value)
            return False

        ttl_seconds = int(ttl if ttl is not None else self.ttl_config[artifact_type])
        entry = CacheEntry(
            fingerprint=fingerprint,
            artifact_type=artifact_type,
            content=content,
            expires_at=expires_in(ttl_seconds),
        )
        try:
            await self.backend.set(
                self._cache_key(artifact_type, fingerprint),
                entry.model_dump_json(),
                ttl_seconds,
            )
            return True
        except Exception as e:
            logger.error("cache.set_failed", artifact_type=artifact_type.value, error=str(e))
            return False

    async def _evict(self, key: str) -> None:
        try:
            await self.backend.delete(key)
        except Exception as e:
            logger.warning("cache.evict_failed", key=key, error=str(e))

    async def clear_expired(self) -> int:
        """Sweep expired entries; returns the number removed."""
        removed = 0
        now = get_current_utc()
        try:
            keys = await self.backend.keys(self.key_prefix)
        except Exception as e:
            logger.error("cache.sweep_failed", error=str(e))
            return 0
        for key in keys:
            try:
                raw = await self.backend.get(key)
            except Exception as e:
                logger.warning("cache.sweep_read_failed", key=key, error=str(e))
                continue
            if raw is None:
                continue
            try:
                expired = CacheEntry.model_validate_json(raw).expired(now)
            except (ValidationError, ValueError):
                expired = True
            if expired:
                await self._evict(key)
                removed += 1
        if removed:
            logger.info("cache.cleared_expired", removed=removed)
        return removed

    async def clear_by_type(self, artifact_type: ArtifactType) -> int:
        prefix = f"{self.key_prefix}{artifact_type.value}:"
        try:
            keys = await self.backend.keys(prefix)
        except Exception as e:
            logger.error("cache.clear_failed", artifact_type=artifact_type.value, error=str(e))
            return 0
        for key in keys:
            await self._evict(key)
        return len(keys)

    async def clear_all(self) -> int:
        total = 0
        for artifact_type in list(self.ttl_config):
            total += await self.clear_by_type(artifact_type)
        return total

    def stats(self) -> Dict[str, Any]:
        total = self.hit_count + self.miss_count
        return {
            "backend": getattr(self.backend, "name", type(self.backend).__name__),
            "hits": self.hit_count,
            "misses": self.miss_count,
            "hit_rate": round(self.hit_count / total, 4) if total else 0.0,
        }

    async def close(self) -> None:
        await self.backend.close()


async def create_artifact_cache(redis_url: Optional[str] = None, **kwargs) -> ArtifactCache:
    """Build a cache on Redis when reachable, otherwise in-process."""
    url = redis_url or config.REDIS_URL
    if url:
        backend = RedisCacheBackend(url)
        try:
            await backend.ping()
            logger.info("cache.redis_ready", url=url)
            return ArtifactCache(backend, **kwargs)
        except Exception as e:
            logger.warning("cache.redis_unavailable", url=url, error=str(e))
            await backend.close()
    return ArtifactCache(MemoryCacheBackend(), **kwargs)
