from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from sitecloner.errors import InfrastructureError
from sitecloner.pipeline.state import JobState, JobStatus, begin
from sitecloner.store.job_store import InMemoryJobStateStore, RedisJobStateStore, create_store


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_in_memory_round_trip():
    store = InMemoryJobStateStore()
    state = begin(JobState.new("job-1", "https://example.com", "Dark theme"))

    await store.save(state)
    loaded = await store.load("job-1")

    assert loaded == state
    assert loaded is not state
    assert await store.load("job-unknown") is None


@pytest.mark.asyncio
async def test_in_memory_expiry_resets_on_write():
    clock = FakeClock()
    store = InMemoryJobStateStore(ttl_seconds=100, clock=clock)
    state = JobState.new("job-1", "https://example.com")

    await store.save(state)
    clock.now += 90
    await store.save(begin(state))
    clock.now += 90
    assert (await store.load("job-1")).status == JobStatus.SCOUTING

    clock.now += 20
    assert await store.load("job-1") is None


def test_purge_expired():
    clock = FakeClock()
    store = InMemoryJobStateStore(ttl_seconds=10, clock=clock)
    store._entries = {"clone:a": (clock.now - 1, "{}"), "clone:b": (clock.now + 5, "{}")}
    assert store.purge_expired() == 1
    assert list(store._entries) == ["clone:b"]


@pytest.mark.asyncio
async def test_save_reclaims_expired_jobs_without_loading_them():
    clock = FakeClock()
    store = InMemoryJobStateStore(ttl_seconds=10, clock=clock)
    for job_id in ("job-1", "job-2", "job-3"):
        await store.save(JobState.new(job_id, "https://example.com"))

    clock.now += 100
    await store.save(JobState.new("job-4", "https://example.com"))

    assert list(store._entries) == ["clone:job-4"]


@pytest.mark.asyncio
async def test_redis_store_uses_setex():
    client = AsyncMock()
    store = RedisJobStateStore("redis://localhost", ttl_seconds=86400, client=client)
    state = JobState.new("job-1", "https://example.com")

    await store.save(state)

    key, ttl, payload = client.setex.await_args.args
    assert key == "clone:job-1"
    assert ttl == 86400
    client.get.return_value = payload
    assert await store.load("job-1") == state


@pytest.mark.asyncio
async def test_redis_store_missing_key():
    client = AsyncMock()
    client.get.return_value = None
    store = RedisJobStateStore("redis://localhost", client=client)
    assert await store.load("job-1") is None


@pytest.mark.asyncio
async def test_redis_errors_are_infrastructure_errors():
    client = AsyncMock()
    client.setex.side_effect = ConnectionError("refused")
    store = RedisJobStateStore("redis://localhost", client=client)

    with pytest.raises(InfrastructureError):
        await store.save(JobState.new("job-1", "https://example.com"))


def test_create_store_defaults_to_memory():
    settings = SimpleNamespace(redis_url=None, job_ttl_seconds=60, job_key_prefix="clone:")
    store = create_store(settings)
    assert isinstance(store, InMemoryJobStateStore)
    assert store.ttl_seconds == 60
