"""
공통 모듈: 설정, 예외, 저장소, 키별 락
"""

from .config import Settings, SingleflightScope, settings
from .errors import InterviewRedisError, InvalidArgument, LoadFailed, StoreUnavailable
from .store import (
    AsyncRedisStore,
    AsyncSharedStore,
    RedisStore,
    SharedStore,
    get_async_redis_client,
    get_redis_client,
)
from .memory_store import MemoryStore
from .locks import AsyncLocalKeyLocks, LocalKeyLocks
from .dist_lock import AsyncDistLock, AsyncRedisKeyLocks, DistLock, RedisKeyLocks

__all__ = [
    "Settings",
    "SingleflightScope",
    "settings",
    "InterviewRedisError",
    "InvalidArgument",
    "LoadFailed",
    "StoreUnavailable",
    "SharedStore",
    "AsyncSharedStore",
    "RedisStore",
    "AsyncRedisStore",
    "MemoryStore",
    "get_redis_client",
    "get_async_redis_client",
    "LocalKeyLocks",
    "AsyncLocalKeyLocks",
    "DistLock",
    "AsyncDistLock",
    "RedisKeyLocks",
    "AsyncRedisKeyLocks",
]
