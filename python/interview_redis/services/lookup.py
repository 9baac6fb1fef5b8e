"""
캐시 스탬피드 방지 조회 (Cache-Aside + 키별 Singleflight)

1. 캐시 조회 - 있으면 락 없이 바로 반환
2. 없으면 해당 키의 락 획득
3. 락 안에서 다시 캐시 조회 (기다리는 동안 다른 호출자가 채웠을 수 있음)
4. 그래도 없으면 load 한 번 실행 후 캐시에 저장

load가 실패하면 락은 풀리고 캐시는 비어 있는 상태로 남는다.
실패는 load를 호출한 한 명에게만 전달되고, 기다리던 호출자들은 3단계부터 스스로 다시 시도한다.
"""
from __future__ import annotations

import inspect
import logging
import random
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import redis
import redis.asyncio as aioredis

from ..core.config import Settings, SingleflightScope, settings
from ..core.dist_lock import AsyncRedisKeyLocks, RedisKeyLocks
from ..core.errors import LoadFailed, require_key
from ..core.locks import AsyncLocalKeyLocks, LocalKeyLocks
from ..core.store import AsyncSharedStore, SharedStore, as_stored, get_async_redis_client, get_redis_client

logger = logging.getLogger(__name__)

LoadFunction = Callable[[str], Any]
AsyncLoadFunction = Callable[[str], Union[Any, Awaitable[Any]]]

_METRIC_NAMES = ("hits", "misses", "coalesced", "loads", "load_failures")


class _LookupBase:
    def __init__(self, ttl: Optional[int] = None, jitter_percent: int = 0):
        self.ttl = ttl
        self.jitter_percent = jitter_percent
        self._metrics_lock = threading.Lock()
        self.metrics: Dict[str, int] = dict.fromkeys(_METRIC_NAMES, 0)

    def _count(self, name: str) -> None:
        with self._metrics_lock:
            self.metrics[name] += 1

    def _ttl_with_jitter(self) -> Optional[int]:
        """TTL에 지터를 적용하여 동시 만료 방지"""
        if self.ttl is None:
            return None
        jitter_range = self.ttl * self.jitter_percent // 100
        jitter = random.randint(-jitter_range, jitter_range)
        return max(1, self.ttl + jitter)

    def _load_failed(self, key: str, exc: Exception) -> LoadFailed:
        self._count("load_failures")
        logger.warning(f"Load failed for key {key}: {exc!r}")
        return LoadFailed(key, f"load failed for key {key!r}: {exc}")

    def get_metrics(self) -> Dict[str, Any]:
        """조회 메트릭 반환"""
        with self._metrics_lock:
            snapshot = dict(self.metrics)
        total_requests = snapshot["hits"] + snapshot["misses"]
        hit_rate = (snapshot["hits"] / total_requests * 100) if total_requests > 0 else 0
        return {
            **snapshot,
            "total_requests": total_requests,
            "hit_rate_percent": round(hit_rate, 2),
        }

    def reset_metrics(self) -> None:
        with self._metrics_lock:
            self.metrics = dict.fromkeys(_METRIC_NAMES, 0)
        logger.info("Lookup metrics reset")


class StampedeSafeLookup(_LookupBase):
    """스레드용 스탬피드 방지 조회"""

    def __init__(self, store: SharedStore, locks=None, ttl: Optional[int] = None, jitter_percent: int = 0):
        super().__init__(ttl, jitter_percent)
        self.store = store
        self.locks = locks if locks is not None else LocalKeyLocks()

    @classmethod
    def from_settings(cls, store: SharedStore, client: Optional[redis.Redis] = None,
                      config: Settings = settings) -> "StampedeSafeLookup":
        """SINGLEFLIGHT_SCOPE에 따라 락 범위를 고른다"""
        if config.SINGLEFLIGHT_SCOPE == SingleflightScope.DISTRIBUTED:
            locks = RedisKeyLocks(
                client if client is not None else get_redis_client(),
                ttl_ms=config.LOCK_TTL_MS,
                retry_ms=config.LOCK_RETRY_MS,
                jitter_ms=config.LOCK_JITTER_MS,
            )
        else:
            locks = LocalKeyLocks()
        return cls(store, locks, ttl=config.CACHE_TTL, jitter_percent=config.CACHE_JITTER_PERCENT)

    def get(self, key: str, load: LoadFunction) -> Any:
        require_key(key)

        value, present = self.store.get(key)
        if present:
            self._count("hits")
            logger.debug(f"Cache HIT: {key}")
            return value

        self._count("misses")
        logger.debug(f"Cache MISS: {key}")

        with self.locks.hold(key):
            value, present = self.store.get(key)
            if present:
                self._count("coalesced")
                logger.debug(f"Got value from cache after waiting: {key}")
                return value

            value = self._load(key, load)
            self.store.set(key, value, ttl=self._ttl_with_jitter())
            return as_stored(key, value)

    def _load(self, key: str, load: LoadFunction) -> Any:
        self._count("loads")
        start = time.perf_counter()
        try:
            value = load(key)
        except Exception as e:
            raise self._load_failed(key, e) from e
        logger.info(f"Loaded key {key} in {(time.perf_counter() - start) * 1000:.1f}ms")
        return value


class AsyncStampedeSafeLookup(_LookupBase):
    """asyncio 태스크용 스탬피드 방지 조회. load는 코루틴 함수여도 되고 일반 함수여도 된다."""

    def __init__(self, store: AsyncSharedStore, locks=None, ttl: Optional[int] = None, jitter_percent: int = 0):
        super().__init__(ttl, jitter_percent)
        self.store = store
        self.locks = locks if locks is not None else AsyncLocalKeyLocks()

    @classmethod
    def from_settings(cls, store: AsyncSharedStore, client: Optional[aioredis.Redis] = None,
                      config: Settings = settings) -> "AsyncStampedeSafeLookup":
        if config.SINGLEFLIGHT_SCOPE == SingleflightScope.DISTRIBUTED:
            locks = AsyncRedisKeyLocks(
                client if client is not None else get_async_redis_client(),
                ttl_ms=config.LOCK_TTL_MS,
                retry_ms=config.LOCK_RETRY_MS,
                jitter_ms=config.LOCK_JITTER_MS,
            )
        else:
            locks = AsyncLocalKeyLocks()
        return cls(store, locks, ttl=config.CACHE_TTL, jitter_percent=config.CACHE_JITTER_PERCENT)

    async def get(self, key: str, load: AsyncLoadFunction) -> Any:
        require_key(key)

        value, present = await self.store.get(key)
        if present:
            self._count("hits")
            logger.debug(f"Cache HIT: {key}")
            return value

        self._count("misses")
        logger.debug(f"Cache MISS: {key}")

        async with self.locks.hold(key):
            value, present = await self.store.get(key)
            if present:
                self._count("coalesced")
                logger.debug(f"Got value from cache after waiting: {key}")
                return value

            value = await self._load(key, load)
            await self.store.set(key, value, ttl=self._ttl_with_jitter())
            return as_stored(key, value)

    async def _load(self, key: str, load: AsyncLoadFunction) -> Any:
        self._count("loads")
        start = time.perf_counter()
        try:
            value = load(key)
            if inspect.isawaitable(value):
                value = await value
        except Exception as e:
            raise self._load_failed(key, e) from e
        logger.info(f"Loaded key {key} in {(time.perf_counter() - start) * 1000:.1f}ms")
        return value
