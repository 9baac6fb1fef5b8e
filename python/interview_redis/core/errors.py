"""
예외 정의

모든 컴포넌트는 오류를 재시도 없이 호출자에게 그대로 전달한다.
"""
from __future__ import annotations


class InterviewRedisError(Exception):
    """패키지 공통 예외"""


class StoreUnavailable(InterviewRedisError):
    """저장소 연결 실패 또는 명령 실패"""


class LoadFailed(InterviewRedisError):
    """호출자가 넘긴 load 함수가 예외를 던짐 (원인은 __cause__)"""

    def __init__(self, key: str, message: str = ""):
        self.key = key
        super().__init__(message or f"load failed for key {key!r}")


class InvalidArgument(InterviewRedisError, ValueError):
    """빈 키 / 빈 비즈니스 타입 등 잘못된 인자"""


def require_key(value: object, name: str = "key") -> str:
    """비어 있지 않은 문자열인지 검증"""
    if not isinstance(value, str) or not value:
        raise InvalidArgument(f"{name} must be a non-empty string, got {value!r}")
    return value
