import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import LockError

from app.storage.generation_locks import GenerationLocks, RedisGenerationLocks


class TestGenerationLocks:
    @pytest.mark.asyncio
    async def test_same_generation_is_serialised(self):
        locks = GenerationLocks()
        order = []

        async def work(name):
            async with locks.hold("proj-a", "gen-1"):
                order.append(f"{name}-start")
                await asyncio.sleep(0)
                order.append(f"{name}-end")

        await asyncio.gather(work("a"), work("b"))

        assert order == ["a-start", "a-end", "b-start", "b-end"]
        assert locks.active() == 0

    @pytest.mark.asyncio
    async def test_different_generations_do_not_block_each_other(self):
        locks = GenerationLocks()
        async with locks.hold("proj-a", "gen-1"):
            async with locks.hold("proj-a", "gen-2"):
                assert locks.active() == 2
        assert locks.active() == 0

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        locks = GenerationLocks()
        with pytest.raises(RuntimeError):
            async with locks.hold("proj-a", "gen-1"):
                raise RuntimeError("boom")
        assert locks.active() == 0


class TestRedisGenerationLocks:
    @pytest.fixture
    def lock(self):
        lock = MagicMock()
        lock.__aenter__ = AsyncMock(return_value=lock)
        lock.__aexit__ = AsyncMock(return_value=None)
        return lock

    @pytest.fixture
    def redis(self, lock):
        redis = MagicMock()
        redis.lock.return_value = lock
        return redis

    @pytest.mark.asyncio
    async def test_holds_redis_lock_per_generation(self, redis, lock):
        locks = RedisGenerationLocks(redis, prefix="ingestion", timeout=30, wait=5)

        async with locks.hold("proj-a", "gen-1"):
            lock.__aenter__.assert_awaited_once()
            lock.__aexit__.assert_not_awaited()

        redis.lock.assert_called_once_with(
            "ingestion:lock:proj-a:gen-1", timeout=30, blocking_timeout=5
        )
        lock.__aexit__.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_acquire_timeout_propagates(self, redis, lock):
        lock.__aenter__.side_effect = LockError("Unable to acquire lock within the time specified")
        locks = RedisGenerationLocks(redis, prefix="ingestion")

        with pytest.raises(LockError):
            async with locks.hold("proj-a", "gen-1"):
                pass
