"""
Per-generation mutual exclusion for the ingestion worker.

Events for one generation are merged read-modify-write, so two consumers
holding events for the same (project_id, generation id) must not interleave.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Tuple

from redis.asyncio import Redis


class GenerationLocks:
    """In-process locks; sufficient for a single worker process."""

    def __init__(self):
        # key -> [lock, holders and waiters]
        self._locks: Dict[Tuple[str, str], List] = {}

    @asynccontextmanager
    async def hold(self, project_id: str, generation_id: str) -> AsyncIterator[None]:
        key = (project_id, generation_id)
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    def active(self) -> int:
        return len(self._locks)


class RedisGenerationLocks:
    """
    Locks shared by every worker process through Redis.

    The lock expires after `timeout` seconds so a crashed holder cannot block
    a generation forever. Failing to acquire within `wait` seconds raises
    redis.exceptions.LockError and the job is retried.
    """

    def __init__(self, redis: Redis, prefix: str, timeout: int = 30, wait: int = 10):
        self._redis = redis
        self.prefix = prefix
        self.timeout = timeout
        self.wait = wait

    def key(self, project_id: str, generation_id: str) -> str:
        return f"{self.prefix}:lock:{project_id}:{generation_id}"

    @asynccontextmanager
    async def hold(self, project_id: str, generation_id: str) -> AsyncIterator[None]:
        lock = self._redis.lock(
            self.key(project_id, generation_id),
            timeout=self.timeout,
            blocking_timeout=self.wait,
        )
        async with lock:
            yield
