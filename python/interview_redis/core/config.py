from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class SingleflightScope(str, Enum):
    """Singleflight 락 범위"""
    PROCESS = "process"            # 프로세스 내부 키별 락
    DISTRIBUTED = "distributed"    # Redis SET NX PX 기반 키별 락


class Settings(BaseSettings):
    """애플리케이션 설정"""

    # 애플리케이션 기본 설정
    APP_NAME: str = "interview-redis"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Redis 설정
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_SOCKET_TIMEOUT: float = 5.0
    REDIS_MAX_CONNECTIONS: int = 50  # asyncio 풀 크기 (가득 차면 대기)

    # 분산 ID 설정 (기준 시각, Unix 초)
    ID_EPOCH: int = 1714808352

    # 캐시 설정
    CACHE_TTL: Optional[int] = None  # None이면 만료 없음
    CACHE_JITTER_PERCENT: int = 10  # TTL ±10% 지터

    # Singleflight 설정
    SINGLEFLIGHT_SCOPE: SingleflightScope = SingleflightScope.PROCESS
    LOCK_TTL_MS: int = 8000
    LOCK_RETRY_MS: int = 50
    LOCK_JITTER_MS: int = 25

    @field_validator("ID_EPOCH")
    @classmethod
    def _check_epoch(cls, v: int) -> int:
        if v < 0:
            raise ValueError("ID_EPOCH must be >= 0")
        return v

    @field_validator("CACHE_JITTER_PERCENT")
    @classmethod
    def _check_jitter(cls, v: int) -> int:
        if not 0 <= v <= 100:
            raise ValueError("CACHE_JITTER_PERCENT must be between 0 and 100")
        return v

    @field_validator("CACHE_TTL")
    @classmethod
    def _check_ttl(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("CACHE_TTL must be positive")
        return v

    @field_validator("REDIS_MAX_CONNECTIONS")
    @classmethod
    def _check_pool_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("REDIS_MAX_CONNECTIONS must be positive")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def _normalize_level(cls, v: str) -> str:
        return v.upper()

    class Config:
        env_file = ".env"
        case_sensitive = True


# 전역 설정 인스턴스
settings = Settings()
