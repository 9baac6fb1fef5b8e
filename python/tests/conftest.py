import fakeredis
import fakeredis.aioredis
import pytest

from interview_redis.core.memory_store import MemoryStore
from interview_redis.core.store import AsyncRedisStore, RedisStore


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def fake_server():
    # 테스트마다 독립된 서버 (FakeRedis 기본 서버는 인스턴스끼리 공유됨)
    return fakeredis.FakeServer()


@pytest.fixture
def fake_redis(fake_server):
    return fakeredis.FakeRedis(server=fake_server, decode_responses=True)


@pytest.fixture
def redis_store(fake_redis):
    return RedisStore(fake_redis)


@pytest.fixture
def fake_async_redis(fake_server):
    return fakeredis.aioredis.FakeRedis(server=fake_server, decode_responses=True)


@pytest.fixture
def async_redis_store(fake_async_redis):
    return AsyncRedisStore(fake_async_redis)
