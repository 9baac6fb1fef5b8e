"""
프로세스 내부 키별 락

전역 락 하나로 모든 키를 직렬화하지 않도록 키마다 락을 따로 둔다.
락은 처음 필요할 때 만들고, 잡고 있거나 기다리는 호출자가 없어지면 바로 회수한다.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import asynccontextmanager, contextmanager
from typing import AsyncIterator, Dict, Iterator, Union

logger = logging.getLogger(__name__)


class _Slot:
    __slots__ = ("lock", "refs")

    def __init__(self, lock: Union[threading.Lock, asyncio.Lock]):
        self.lock = lock
        self.refs = 0  # 보유자 + 대기자 수


class LocalKeyLocks:
    """threading.Lock 기반 키별 락 레지스트리"""

    def __init__(self):
        self._guard = threading.Lock()
        self._slots: Dict[str, _Slot] = {}

    def _checkout(self, key: str) -> _Slot:
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _Slot(threading.Lock())
            slot.refs += 1
            return slot

    def _checkin(self, key: str, slot: _Slot) -> None:
        with self._guard:
            slot.refs -= 1
            if slot.refs == 0:
                del self._slots[key]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        slot = self._checkout(key)
        try:
            slot.lock.acquire()
            logger.debug(f"Lock acquired for key: {key}")
            try:
                yield
            finally:
                slot.lock.release()
                logger.debug(f"Lock released for key: {key}")
        finally:
            self._checkin(key, slot)

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)


class AsyncLocalKeyLocks:
    """asyncio.Lock 기반 키별 락 레지스트리 (단일 이벤트 루프 전용)"""

    def __init__(self):
        self._slots: Dict[str, _Slot] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _Slot(asyncio.Lock())
        slot.refs += 1
        try:
            # 대기 중 취소되면 CancelledError가 그대로 올라가고 아래 finally에서 등록만 해제된다
            await slot.lock.acquire()
            logger.debug(f"Lock acquired for key: {key}")
            try:
                yield
            finally:
                slot.lock.release()
                logger.debug(f"Lock released for key: {key}")
        finally:
            slot.refs -= 1
            if slot.refs == 0:
                del self._slots[key]

    def __len__(self) -> int:
        return len(self._slots)
