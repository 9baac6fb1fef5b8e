"""
Redis INCR 기반 분산 ID 발급기

ID 구조 (64bit):
    상위 32bit = 현재 Unix 초 - epoch
    하위 32bit = 비즈니스 타입 카운터 INCR 결과

같은 초 안에서 카운터가 2^32를 넘겨 한 바퀴 돌면 충돌할 수 있다. 알려진 한계로 그대로 둔다.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Tuple

from ..core.config import settings
from ..core.errors import InvalidArgument, require_key
from ..core.store import AsyncSharedStore, SharedStore

logger = logging.getLogger(__name__)

COUNTER_BITS = 32
COUNTER_MASK = 0xFFFFFFFF


def compose_id(delta: int, counter: int) -> int:
    # 시간 차이를 32bit 왼쪽으로 밀고 카운터를 붙인다
    return (delta << COUNTER_BITS) | (counter & COUNTER_MASK)


def split_id(identifier: int) -> Tuple[int, int]:
    """ID -> (epoch 기준 경과 초, 카운터 하위 32bit)"""
    return identifier >> COUNTER_BITS, identifier & COUNTER_MASK


def _check_epoch(epoch: int) -> int:
    if epoch < 0:
        raise InvalidArgument(f"epoch must be >= 0, got {epoch}")
    return epoch


class _IssuerBase:
    def __init__(self, epoch: Optional[int] = None, clock: Callable[[], float] = time.time):
        self.epoch = _check_epoch(settings.ID_EPOCH if epoch is None else epoch)
        self.clock = clock

    def _compose(self, business_type: str, counter: int) -> int:
        now = int(self.clock())
        delta = now - self.epoch
        if delta < 0:
            raise InvalidArgument(f"clock {now} is before epoch {self.epoch}")
        identifier = compose_id(delta, counter)
        logger.debug(f"Issued id {identifier} for {business_type} (delta={delta}, counter={counter})")
        return identifier

    def timestamp_of(self, identifier: int) -> int:
        """ID에 담긴 발급 시각 (Unix 초)"""
        return split_id(identifier)[0] + self.epoch


class IdentifierIssuer(_IssuerBase):
    """동기 저장소용 ID 발급기. 동시성은 저장소의 INCR 원자성에만 의존한다."""

    def __init__(self, store: SharedStore, epoch: Optional[int] = None,
                 clock: Callable[[], float] = time.time):
        super().__init__(epoch, clock)
        self.store = store

    def next_id(self, business_type: str) -> int:
        require_key(business_type, "business_type")
        counter = self.store.increment(business_type)
        return self._compose(business_type, counter)


class AsyncIdentifierIssuer(_IssuerBase):
    """asyncio 저장소용 ID 발급기"""

    def __init__(self, store: AsyncSharedStore, epoch: Optional[int] = None,
                 clock: Callable[[], float] = time.time):
        super().__init__(epoch, clock)
        self.store = store

    async def next_id(self, business_type: str) -> int:
        require_key(business_type, "business_type")
        counter = await self.store.increment(business_type)
        return self._compose(business_type, counter)
