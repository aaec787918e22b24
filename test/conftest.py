import fakeredis
import pytest
from fakeredis.aioredis import FakeRedis

from _helper import InMemoryOrderStore, StepClock
from handoff.idempotency import IdempotencyCache
from handoff.locks import LockManager
from handoff.orchestrator import HandoffOrchestrator


@pytest.fixture()
def redis_client() -> FakeRedis:
    return FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture()
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture()
def locks(redis_client: FakeRedis) -> LockManager:
    return LockManager(redis_client, ttl_ms=30_000, attempts=3, retry_delays_ms=[50, 100, 200])


@pytest.fixture()
def cache(redis_client: FakeRedis) -> IdempotencyCache:
    return IdempotencyCache(redis_client, ttl_seconds=86400)


@pytest.fixture()
def orchestrator(store: InMemoryOrderStore, locks: LockManager, cache: IdempotencyCache) -> HandoffOrchestrator:
    return HandoffOrchestrator(store=store, locks=locks, cache=cache, clock=StepClock())
