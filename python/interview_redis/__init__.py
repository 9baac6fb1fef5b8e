"""
Redis 분산 ID 발급 + 캐시 스탬피드 방지 조회
"""

from .core import (
    InvalidArgument,
    LoadFailed,
    MemoryStore,
    RedisStore,
    AsyncRedisStore,
    StoreUnavailable,
    settings,
)
from .services import (
    AsyncIdentifierIssuer,
    AsyncStampedeSafeLookup,
    IdentifierIssuer,
    StampedeSafeLookup,
)

__version__ = "0.1.0"

__all__ = [
    "IdentifierIssuer",
    "AsyncIdentifierIssuer",
    "StampedeSafeLookup",
    "AsyncStampedeSafeLookup",
    "MemoryStore",
    "RedisStore",
    "AsyncRedisStore",
    "StoreUnavailable",
    "LoadFailed",
    "InvalidArgument",
    "settings",
]
