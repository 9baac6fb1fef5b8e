from __future__ import annotations

import asyncio
import logging
import random
import threading
import time
import uuid
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Iterator, Optional

import redis
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

UNLOCK_IF_OWNER = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""

PEXPIRE_IF_OWNER = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('pexpire', KEYS[1], ARGV[2])
end
return 0
"""


def _backoff_seconds(retry_ms: int, jitter_ms: int) -> float:
    return (retry_ms + random.randint(0, jitter_ms)) / 1000.0


@dataclass
class DistLock:
    client: redis.Redis
    resource: str
    ttl_ms: int = 8000
    owner: Optional[str] = None

    def __post_init__(self) -> None:
        self.key = f"lock:{self.resource}"
        self.owner = self.owner or str(uuid.uuid4())
        self._renew_thread: Optional[threading.Thread] = None
        self._renew_stop = threading.Event()
        self._unlock_lua = self.client.register_script(UNLOCK_IF_OWNER)
        self._pexpire_lua = self.client.register_script(PEXPIRE_IF_OWNER)

    # Acquire lock once (non-blocking)
    def try_acquire(self) -> bool:
        ok = self.client.set(self.key, self.owner, nx=True, px=self.ttl_ms)
        return bool(ok)

    # Blocking acquire with backoff; timeout_ms=None waits forever, 0 tries once
    def acquire(self, timeout_ms: Optional[int] = None, retry_ms: int = 100, jitter_ms: int = 50) -> bool:
        if timeout_ms is not None and timeout_ms <= 0:
            return self.try_acquire()
        deadline = None if timeout_ms is None else time.monotonic() + timeout_ms / 1000.0
        while True:
            if self.try_acquire():
                return True
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(_backoff_seconds(retry_ms, jitter_ms))

    # Release only if owner matches (atomic Lua)
    def release(self) -> bool:
        try:
            res = self._unlock_lua(keys=[self.key], args=[self.owner])
            return int(res) == 1
        finally:
            self.stop_renew()

    # Extend TTL if still owner
    def renew(self, ttl_ms: Optional[int] = None) -> bool:
        ttl = str(ttl_ms or self.ttl_ms)
        res = self._pexpire_lua(keys=[self.key], args=[self.owner, ttl])
        return int(res) == 1

    # Background watchdog: periodically renew until stopped
    def start_renew(self, every_ms: Optional[int] = None) -> None:
        if self._renew_thread and self._renew_thread.is_alive():
            return
        period = (every_ms or max(100, self.ttl_ms // 2)) / 1000.0
        self._renew_stop.clear()

        def _loop():
            while not self._renew_stop.wait(period):
                try:
                    if not self.renew():
                        # Lost ownership or key expired
                        logger.warning(f"Lock ownership lost: {self.key}")
                        break
                except RedisError as e:
                    logger.error(f"Lock renew failed for {self.key}: {e}")
                    break

        self._renew_thread = threading.Thread(target=_loop, name=f"DistLockRenew-{self.resource}", daemon=True)
        self._renew_thread.start()

    def stop_renew(self) -> None:
        if self._renew_thread and self._renew_thread.is_alive():
            self._renew_stop.set()
            self._renew_thread.join(timeout=1.0)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


@dataclass
class AsyncDistLock:
    client: aioredis.Redis
    resource: str
    ttl_ms: int = 8000
    owner: Optional[str] = None

    def __post_init__(self) -> None:
        self.key = f"lock:{self.resource}"
        self.owner = self.owner or str(uuid.uuid4())
        self._renew_task: Optional[asyncio.Task] = None
        self._unlock_lua = self.client.register_script(UNLOCK_IF_OWNER)
        self._pexpire_lua = self.client.register_script(PEXPIRE_IF_OWNER)

    async def try_acquire(self) -> bool:
        try:
            ok = await self.client.set(self.key, self.owner, nx=True, px=self.ttl_ms)
        except asyncio.CancelledError:
            # 응답 전에 취소돼도 서버에서는 SET NX가 이미 실행됐을 수 있다
            await self._discard_if_owner()
            raise
        return bool(ok)

    async def _discard_if_owner(self) -> None:
        try:
            await self._unlock_lua(keys=[self.key], args=[self.owner])
        except RedisError as e:
            logger.error(f"Lock cleanup after cancel failed for {self.key}: {e}")

    async def acquire(self, timeout_ms: Optional[int] = None, retry_ms: int = 100, jitter_ms: int = 50) -> bool:
        if timeout_ms is not None and timeout_ms <= 0:
            return await self.try_acquire()
        deadline = None if timeout_ms is None else time.monotonic() + timeout_ms / 1000.0
        while True:
            if await self.try_acquire():
                return True
            if deadline is not None and time.monotonic() >= deadline:
                return False
            await asyncio.sleep(_backoff_seconds(retry_ms, jitter_ms))

    async def release(self) -> bool:
        await self.stop_renew()
        res = await self._unlock_lua(keys=[self.key], args=[self.owner])
        return int(res) == 1

    async def renew(self, ttl_ms: Optional[int] = None) -> bool:
        ttl = str(ttl_ms or self.ttl_ms)
        res = await self._pexpire_lua(keys=[self.key], args=[self.owner, ttl])
        return int(res) == 1

    def start_renew(self, every_ms: Optional[int] = None) -> None:
        if self._renew_task and not self._renew_task.done():
            return
        period = (every_ms or max(100, self.ttl_ms // 2)) / 1000.0

        async def _loop():
            while True:
                await asyncio.sleep(period)
                try:
                    if not await self.renew():
                        logger.warning(f"Lock ownership lost: {self.key}")
                        return
                except RedisError as e:
                    logger.error(f"Lock renew failed for {self.key}: {e}")
                    return

        self._renew_task = asyncio.ensure_future(_loop())

    async def stop_renew(self) -> None:
        task, self._renew_task = self._renew_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


class RedisKeyLocks:
    """Redis 락 기반 키별 락 (여러 프로세스에 걸친 singleflight)

    락 키: lock:{prefix}:{key}. 해제하면 키가 지워지므로 별도 회수가 필요 없고,
    소유자가 죽어도 TTL이 지나면 풀린다.
    """

    def __init__(self, client: redis.Redis, ttl_ms: int = 8000, retry_ms: int = 50,
                 jitter_ms: int = 25, prefix: str = "singleflight"):
        self.client = client
        self.ttl_ms = ttl_ms
        self.retry_ms = retry_ms
        self.jitter_ms = jitter_ms
        self.prefix = prefix

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = DistLock(self.client, resource=f"{self.prefix}:{key}", ttl_ms=self.ttl_ms)
        try:
            lock.acquire(timeout_ms=None, retry_ms=self.retry_ms, jitter_ms=self.jitter_ms)
        except RedisError as e:
            raise StoreUnavailable(f"lock acquire failed for {lock.key}: {e}") from e
        logger.debug(f"Lock acquired for key: {key} (owner={lock.owner})")
        lock.start_renew()
        try:
            yield
        finally:
            try:
                released = lock.release()
                logger.debug(f"Lock released for key: {key} released={released}")
            except RedisError as e:
                # 해제 실패 시 TTL 만료로 풀린다
                logger.error(f"Lock release failed for {lock.key}: {e}")


class AsyncRedisKeyLocks:
    """RedisKeyLocks의 asyncio 버전"""

    def __init__(self, client: aioredis.Redis, ttl_ms: int = 8000, retry_ms: int = 50,
                 jitter_ms: int = 25, prefix: str = "singleflight"):
        self.client = client
        self.ttl_ms = ttl_ms
        self.retry_ms = retry_ms
        self.jitter_ms = jitter_ms
        self.prefix = prefix

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = AsyncDistLock(self.client, resource=f"{self.prefix}:{key}", ttl_ms=self.ttl_ms)
        try:
            await lock.acquire(timeout_ms=None, retry_ms=self.retry_ms, jitter_ms=self.jitter_ms)
        except RedisError as e:
            raise StoreUnavailable(f"lock acquire failed for {lock.key}: {e}") from e
        logger.debug(f"Lock acquired for key: {key} (owner={lock.owner})")
        lock.start_renew()
        try:
            yield
        finally:
            try:
                released = await lock.release()
                logger.debug(f"Lock released for key: {key} released={released}")
            except RedisError as e:
                logger.error(f"Lock release failed for {lock.key}: {e}")
