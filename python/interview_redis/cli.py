from __future__ import annotations

import argparse
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

import redis
from redis.exceptions import RedisError

from .core.config import SingleflightScope, settings
from .core.errors import InterviewRedisError, StoreUnavailable
from .core.memory_store import MemoryStore
from .core.store import RedisStore, SharedStore, get_redis_client
from .services.id_issuer import IdentifierIssuer, split_id
from .services.lookup import StampedeSafeLookup


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--url", default=None, help="Redis URL (default: REDIS_URL or settings)")
    common.add_argument("--memory", action="store_true", help="Use in-process MemoryStore instead of Redis")
    common.add_argument("--epoch", type=int, default=None, help=f"ID epoch seconds (default: {settings.ID_EPOCH})")

    p = argparse.ArgumentParser(prog="interview-redis", description="Distributed ID + stampede-safe cache demos")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("next-id", parents=[common], help="Issue identifiers for a business type")
    s.add_argument("--type", default="order", help="Business type / counter key (default: order)")
    s.add_argument("--count", type=int, default=5, help="How many ids to issue (default: 5)")

    s = sub.add_parser("id-race", parents=[common], help="Issue ids from a thread pool and check uniqueness")
    s.add_argument("--type", default="order", help="Business type / counter key (default: order)")
    s.add_argument("--total", type=int, default=10000, help="Total ids (default: 10000)")
    s.add_argument("--workers", type=int, default=8, help="Thread pool size (default: 8)")

    s = sub.add_parser("stampede", parents=[common], help="Concurrent cold-cache reads for one key")
    s.add_argument("--key", default="user:1", help="Cache key (default: user:1)")
    s.add_argument("--callers", type=int, default=50, help="Concurrent callers (default: 50)")
    s.add_argument("--db-ms", type=int, default=200, help="Simulated DB latency ms (default: 200)")
    s.add_argument("--cache-ttl", type=int, default=settings.CACHE_TTL, help="Cache TTL seconds (default: none)")
    s.add_argument("--scope", choices=[scope.value for scope in SingleflightScope],
                   default=settings.SINGLEFLIGHT_SCOPE.value, help="Singleflight lock scope")

    a = p.parse_args(argv)
    if getattr(a, "scope", None) == SingleflightScope.DISTRIBUTED.value and a.memory:
        p.error("--scope distributed needs Redis; drop --memory")
    return a


def cmd_next_id(a: argparse.Namespace, store: SharedStore) -> int:
    issuer = IdentifierIssuer(store, epoch=a.epoch)
    for _ in range(a.count):
        new_id = issuer.next_id(a.type)
        _, counter = split_id(new_id)
        print(f"[id] {new_id} ts={issuer.timestamp_of(new_id)} counter={counter}")
    return 0


def cmd_id_race(a: argparse.Namespace, store: SharedStore) -> int:
    issuer = IdentifierIssuer(store, epoch=a.epoch)
    with ThreadPoolExecutor(max_workers=a.workers) as ex:
        ids = list(ex.map(lambda _: issuer.next_id(a.type), range(a.total)))
    unique = len(set(ids))
    print(f"[THREAD] expected={a.total}, unique={unique}, duplicates={a.total - unique}")
    return 0 if unique == a.total else 2


def cmd_stampede(a: argparse.Namespace, store: SharedStore, client: Optional[redis.Redis]) -> int:
    calls = 0
    calls_lock = threading.Lock()

    def simulate_db_fetch(key: str) -> str:
        nonlocal calls
        with calls_lock:
            calls += 1
        time.sleep(a.db_ms / 1000.0)
        return f"db-value@{int(time.time())}"

    if client is not None:
        # 콜드 캐시에서 시작
        try:
            client.delete(a.key)
        except RedisError as e:
            raise StoreUnavailable(f"DEL {a.key} failed: {e}") from e

    config = settings.model_copy(update={
        "SINGLEFLIGHT_SCOPE": SingleflightScope(a.scope),
        "CACHE_TTL": a.cache_ttl,
    })
    lookup = StampedeSafeLookup.from_settings(store, client=client, config=config)

    start = time.perf_counter()
    with ThreadPoolExecutor(max_workers=a.callers) as ex:
        results = list(ex.map(lambda _: lookup.get(a.key, simulate_db_fetch), range(a.callers)))
    elapsed_ms = (time.perf_counter() - start) * 1000

    print(f"[stampede] key={a.key} scope={a.scope} callers={a.callers} loads={calls} "
          f"elapsed={elapsed_ms:.0f}ms distinct_values={len(set(results))}")
    print(f"[metrics] {lookup.get_metrics()}")
    return 0 if calls == 1 else 2


def main(argv: Optional[List[str]] = None) -> int:
    a = parse_args(argv)
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(message)s")

    client = None
    if a.memory:
        store: SharedStore = MemoryStore()
    else:
        client = get_redis_client(a.url)
        store = RedisStore(client)

    try:
        if a.command == "next-id":
            return cmd_next_id(a, store)
        if a.command == "id-race":
            return cmd_id_race(a, store)
        return cmd_stampede(a, store, client)
    except StoreUnavailable as e:
        print(f"[error] store unavailable: {e}")
        return 1
    except InterviewRedisError as e:
        print(f"[error] {e}")
        return 2
    finally:
        if client is not None:
            client.close()
