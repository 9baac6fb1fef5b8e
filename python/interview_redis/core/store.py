"""
공유 저장소 추상화

ID 발급기와 캐시 조회는 increment / get / set 세 가지 연산만 사용한다.
Redis 구현은 redis-py 클라이언트를 감싸고, RedisError는 모두 StoreUnavailable로 바꾼다.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Optional, Protocol, Tuple

import redis
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .config import settings
from .errors import StoreUnavailable

logger = logging.getLogger(__name__)


class SharedStore(Protocol):
    def increment(self, counter_key: str) -> int: ...

    def get(self, key: str) -> Tuple[Any, bool]: ...

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None: ...


class AsyncSharedStore(Protocol):
    async def increment(self, counter_key: str) -> int: ...

    async def get(self, key: str) -> Tuple[Any, bool]: ...

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None: ...


def _resolve_url(url: Optional[str]) -> str:
    return url or os.getenv("REDIS_URL") or settings.REDIS_URL


def get_redis_client(url: Optional[str] = None) -> redis.Redis:
    """Redis 클라이언트를 생성해 반환합니다.
    - url 인자 > 환경변수 REDIS_URL > settings.REDIS_URL 순으로 사용합니다.
    - decode_responses=True로 지정해 str 타입으로 응답을 받습니다.
    """
    return redis.Redis.from_url(
        _resolve_url(url),
        decode_responses=True,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
    )


def get_async_redis_client(url: Optional[str] = None) -> aioredis.Redis:
    """asyncio용 Redis 클라이언트 (설정 규칙은 get_redis_client와 동일)
    - 동시 태스크가 풀 크기를 넘으면 에러 대신 빈 연결을 기다리도록 BlockingConnectionPool을 씁니다.
    """
    pool = aioredis.BlockingConnectionPool.from_url(
        _resolve_url(url),
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        timeout=settings.REDIS_SOCKET_TIMEOUT,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
    )
    return aioredis.Redis.from_pool(pool)


def encode_value(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def decode_value(key: str, raw: Any) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        # JSON이 아니면 원문 반환 (비정상 케이스)
        logger.warning(f"Cache value for key {key} is not valid JSON; returning raw")
        return raw


def as_stored(key: str, value: Any) -> Any:
    """저장 후 다시 읽었을 때와 같은 형태 (tuple -> list, date -> str)"""
    return decode_value(key, encode_value(value))


class RedisStore:
    """redis.Redis 기반 SharedStore"""

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: Optional[str] = None) -> "RedisStore":
        return cls(get_redis_client(url))

    def increment(self, counter_key: str) -> int:
        try:
            return int(self.client.incr(counter_key))
        except RedisError as e:
            logger.error(f"INCR failed for key {counter_key}: {e}")
            raise StoreUnavailable(f"INCR {counter_key} failed: {e}") from e

    def get(self, key: str) -> Tuple[Any, bool]:
        try:
            raw = self.client.get(key)
        except RedisError as e:
            logger.error(f"Cache get error for key {key}: {e}")
            raise StoreUnavailable(f"GET {key} failed: {e}") from e
        if raw is None:
            return None, False
        return decode_value(key, raw), True

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        payload = encode_value(value)
        try:
            if ttl:
                self.client.setex(key, ttl, payload)
            else:
                self.client.set(key, payload)
        except RedisError as e:
            logger.error(f"Cache set error for key {key}: {e}")
            raise StoreUnavailable(f"SET {key} failed: {e}") from e

    def close(self) -> None:
        self.client.close()


class AsyncRedisStore:
    """redis.asyncio 기반 AsyncSharedStore"""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: Optional[str] = None) -> "AsyncRedisStore":
        return cls(get_async_redis_client(url))

    async def increment(self, counter_key: str) -> int:
        try:
            return int(await self.client.incr(counter_key))
        except RedisError as e:
            logger.error(f"INCR failed for key {counter_key}: {e}")
            raise StoreUnavailable(f"INCR {counter_key} failed: {e}") from e

    async def get(self, key: str) -> Tuple[Any, bool]:
        try:
            raw = await self.client.get(key)
        except RedisError as e:
            logger.error(f"Cache get error for key {key}: {e}")
            raise StoreUnavailable(f"GET {key} failed: {e}") from e
        if raw is None:
            return None, False
        return decode_value(key, raw), True

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        payload = encode_value(value)
        try:
            if ttl:
                await self.client.setex(key, ttl, payload)
            else:
                await self.client.set(key, payload)
        except RedisError as e:
            logger.error(f"Cache set error for key {key}: {e}")
            raise StoreUnavailable(f"SET {key} failed: {e}") from e

    async def close(self) -> None:
        await self.client.aclose()
