# Redis의 String 명령(SET/GET/INCR/EXPIRE/TTL)만 흉내 낸 인메모리 저장소
# - 멀티 스레드에서 안전하도록 모든 명령을 하나의 락 안에서 실행합니다.
# - 만료는 조회할 때만 삭제하는 지연 삭제 방식입니다.
# - close() 이후에는 모든 명령이 StoreUnavailable을 던집니다 (연결 끊김 재현용).

from __future__ import annotations

import threading
from dataclasses import dataclass
from time import time
from typing import Any, Dict, Optional, Tuple

from .errors import StoreUnavailable
from .store import decode_value, encode_value


@dataclass
class Entry:
    """데이터 저장을 위한 엔트리 클래스"""
    value: str         # 직렬화된 값 (카운터는 정수 문자열)
    expire_at: Optional[float] = None  # 만료 시간 (Unix timestamp, None이면 만료 없음)


class MemoryStore:
    """SharedStore 프로토콜을 따르는 스레드 안전 인메모리 저장소"""

    def __init__(self):
        self.store: Dict[str, Entry] = {}
        self._lock = threading.Lock()
        self._closed = False

    # -------------- 내부 헬퍼 메서드들 --------------

    def _check_open(self, command: str, key: str) -> None:
        if self._closed:
            raise StoreUnavailable(f"{command} {key} failed: store is closed")

    def _live(self, key: str) -> Optional[Entry]:
        """만료된 키는 지연 삭제 후 None"""
        e = self.store.get(key)
        if e is None:
            return None
        if e.expire_at is not None and time() >= e.expire_at:
            del self.store[key]
            return None
        return e

    # -------------- SharedStore 연산 --------------

    def increment(self, counter_key: str) -> int:
        """INCR: 키가 없으면 0에서 시작"""
        with self._lock:
            self._check_open("INCR", counter_key)
            e = self._live(counter_key)
            try:
                num = int(e.value) if e else 0
            except ValueError:
                raise StoreUnavailable(f"INCR {counter_key} failed: value is not an integer")
            num += 1
            if e:
                e.value = str(num)
            else:
                self.store[counter_key] = Entry(str(num))
            return num

    def get(self, key: str) -> Tuple[Any, bool]:
        with self._lock:
            self._check_open("GET", key)
            e = self._live(key)
            if e is None:
                return None, False
            raw = e.value
        return decode_value(key, raw), True

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        payload = encode_value(value)
        with self._lock:
            self._check_open("SET", key)
            expire_at = time() + ttl if ttl else None
            self.store[key] = Entry(payload, expire_at)

    # -------------- 부가 명령 --------------

    def delete(self, key: str) -> int:
        """키 삭제 (DEL 명령어)"""
        with self._lock:
            self._check_open("DEL", key)
            if self._live(key) is None:
                return 0
            del self.store[key]
            return 1

    def ttl(self, key: str) -> int:
        """-2: 키 없음, -1: 만료 없음, >=0: 남은 초"""
        with self._lock:
            self._check_open("TTL", key)
            e = self._live(key)
            if e is None:
                return -2
            if e.expire_at is None:
                return -1
            return max(int(e.expire_at - time()), 0)

    def close(self) -> None:
        with self._lock:
            self._closed = True
