import asyncio
from datetime import timedelta

import pytest

from conftest import StubProvider
from ruleflow.agent.sessions import SessionCache
from ruleflow.errors import ToolSessionUnavailable


@pytest.mark.asyncio
async def test_session_is_cached_until_ttl(clock):
    provider = StubProvider()
    cache = SessionCache(provider, ttl=timedelta(hours=1), clock=clock)

    first = await cache.acquire("user_1")
    clock.advance(minutes=59)
    assert await cache.acquire("user_1") is first

    clock.advance(minutes=1)
    refreshed = await cache.acquire("user_1")
    assert refreshed is not first
    assert provider.sessions_created == ["user_1", "user_1"]


@pytest.mark.asyncio
async def test_failure_propagates_and_is_not_cached(clock):
    provider = StubProvider(session_error=ToolSessionUnavailable("nope"))
    cache = SessionCache(provider, clock=clock)
    with pytest.raises(ToolSessionUnavailable):
        await cache.acquire("user_1")
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_cleanup_and_invalidate(clock):
    cache = SessionCache(StubProvider(), ttl=timedelta(minutes=10), clock=clock)
    await cache.acquire("old")
    clock.advance(minutes=11)
    await cache.acquire("fresh")

    assert await cache.cleanup() == 1
    assert len(cache) == 1

    await cache.invalidate("fresh")
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_concurrent_acquire_for_one_user(clock):
    provider = StubProvider()
    cache = SessionCache(provider, clock=clock)

    sessions = await asyncio.gather(*(cache.acquire("user_1") for _ in range(5)))

    assert all(s.user_id == "user_1" for s in sessions)
    assert len(cache) == 1
    assert await cache.acquire("user_1") in sessions
