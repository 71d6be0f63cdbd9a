from __future__ import annotations

import os
import socket
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import orjson
from redis.asyncio import Redis
from redis.exceptions import RedisError, ResponseError

from app.core.exceptions import QueueConfigurationError, QueueUnavailableError
from app.core.logging import get_logger
from app.core.timeutils import utcnow
from app.models.ingestion import QueueJob

logger = get_logger(__name__)

REQUIRED_EVICTION_POLICY = "noeviction"


@dataclass
class ReceivedJob:
    job: QueueJob
    raw: str  # exact payload as stored, needed to remove it from the processing list


def new_consumer_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:8]}"


class IngestionQueue:
    """
    Durable at-least-once job queue on Redis lists.

      {name}:pending                 LPUSH by producers, consumed from the tail
      {name}:processing:{consumer}   jobs a consumer holds but has not acked
      {name}:consumer:{consumer}     heartbeat key, expires when a consumer dies
      {name}:dead                    jobs that exhausted their attempts

    A job leaves its processing list only on ack, retry or dead-letter, so a
    crashed consumer's jobs are recovered and redelivered.
    """

    def __init__(
        self,
        redis: Redis,
        name: str = "ingestion",
        max_attempts: int = 5,
        heartbeat_ttl_seconds: int = 30,
    ):
        self._redis = redis
        self.name = name
        self.max_attempts = max_attempts
        self.heartbeat_ttl_seconds = heartbeat_ttl_seconds

    @classmethod
    def from_settings(cls, settings) -> "IngestionQueue":
        redis = Redis.from_url(settings.redis_connection_url, decode_responses=True)
        return cls(
            redis,
            name=settings.ingestion_queue_name,
            max_attempts=settings.queue_max_attempts,
            heartbeat_ttl_seconds=settings.queue_heartbeat_ttl_seconds,
        )

    @property
    def redis(self) -> Redis:
        return self._redis

    @property
    def pending_key(self) -> str:
        return f"{self.name}:pending"

    @property
    def dead_key(self) -> str:
        return f"{self.name}:dead"

    def processing_key(self, consumer_id: str) -> str:
        return f"{self.name}:processing:{consumer_id}"

    def heartbeat_key(self, consumer_id: str) -> str:
        return f"{self.name}:consumer:{consumer_id}"

    async def check_eviction_policy(self, enforce: bool = True) -> str:
        """Queued jobs may be silently dropped unless Redis never evicts keys."""
        try:
            config = await self._redis.config_get("maxmemory-policy")
        except ResponseError as e:
            # Managed Redis offerings often disable CONFIG
            logger.warning("redis_eviction_policy_unverifiable", error=str(e))
            return "unknown"
        except RedisError as e:
            raise QueueUnavailableError(f"Redis unreachable: {e}") from e

        policy = config.get("maxmemory-policy", "")
        if policy != REQUIRED_EVICTION_POLICY:
            message = (
                f"Redis maxmemory-policy is '{policy}'; it must be "
                f"'{REQUIRED_EVICTION_POLICY}' so queued ingestion events are never evicted"
            )
            if enforce:
                raise QueueConfigurationError(message)
            logger.warning("redis_eviction_policy_unsafe", policy=policy)
        return policy

    async def enqueue(self, project_id: str, event: Dict[str, Any]) -> QueueJob:
        job = QueueJob(
            id=uuid.uuid4().hex,
            project_id=project_id,
            event=event,
            enqueued_at=utcnow(),
        )
        try:
            await self._redis.lpush(self.pending_key, _encode(job))
        except RedisError as e:
            logger.error("queue_enqueue_failed", job_id=job.id, error=str(e))
            raise QueueUnavailableError(f"Could not enqueue event: {e}") from e
        return job

    async def dequeue(self, consumer_id: str, timeout: int = 5) -> Optional[ReceivedJob]:
        raw = await self._redis.blmove(
            self.pending_key,
            self.processing_key(consumer_id),
            timeout,
            src="RIGHT",
            dest="LEFT",
        )
        if raw is None:
            return None
        try:
            job = QueueJob.model_validate(orjson.loads(raw))
        except ValueError as e:
            logger.error("queue_payload_invalid", consumer=consumer_id, error=str(e))
            await self._move_raw_to_dead(consumer_id, raw)
            return None
        return ReceivedJob(job=job, raw=raw)

    async def ack(self, consumer_id: str, received: ReceivedJob) -> None:
        await self._redis.lrem(self.processing_key(consumer_id), 1, received.raw)

    async def retry_or_dead_letter(
        self, consumer_id: str, received: ReceivedJob, error: str
    ) -> bool:
        """Requeue a failed job; returns False when it was dead-lettered instead."""
        job = received.job.model_copy(
            update={"attempts": received.job.attempts + 1, "last_error": error}
        )
        retry = job.attempts < self.max_attempts
        target = self.pending_key if retry else self.dead_key

        pipe = self._redis.pipeline(transaction=True)
        pipe.lpush(target, _encode(job))
        pipe.lrem(self.processing_key(consumer_id), 1, received.raw)
        await pipe.execute()

        if retry:
            logger.warning("queue_job_retry", job_id=job.id, attempts=job.attempts, error=error)
        else:
            logger.error("queue_job_dead_lettered", job_id=job.id, attempts=job.attempts, error=error)
        return retry

    async def _move_raw_to_dead(self, consumer_id: str, raw: str) -> None:
        pipe = self._redis.pipeline(transaction=True)
        pipe.lpush(self.dead_key, raw)
        pipe.lrem(self.processing_key(consumer_id), 1, raw)
        await pipe.execute()

    async def heartbeat(self, consumer_id: str) -> None:
        await self._redis.set(
            self.heartbeat_key(consumer_id), utcnow().isoformat(), ex=self.heartbeat_ttl_seconds
        )

    async def release(self, consumer_id: str) -> int:
        """Return a stopping consumer's unacked jobs to the queue."""
        moved = await self._drain(self.processing_key(consumer_id))
        await self._redis.delete(self.heartbeat_key(consumer_id))
        return moved

    async def recover_orphaned(self) -> int:
        """Requeue jobs held by consumers whose heartbeat has expired."""
        recovered = 0
        prefix = self.processing_key("")
        async for key in self._redis.scan_iter(match=f"{prefix}*"):
            consumer_id = key[len(prefix):]
            if await self._redis.exists(self.heartbeat_key(consumer_id)):
                continue
            moved = await self._drain(key)
            if moved:
                logger.warning("queue_orphaned_jobs_recovered", consumer=consumer_id, count=moved)
            recovered += moved
        return recovered

    async def _drain(self, processing_key: str) -> int:
        moved = 0
        # Newest held job first, so the oldest ends up nearest the consumption end
        while await self._redis.lmove(processing_key, self.pending_key, "LEFT", "RIGHT") is not None:
            moved += 1
        return moved

    async def stats(self) -> Dict[str, int]:
        pending, dead = await self._redis.llen(self.pending_key), await self._redis.llen(self.dead_key)
        return {"pending": int(pending), "dead": int(dead)}

    async def health_check(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception:
            return False

    async def close(self) -> None:
        await self._redis.aclose()


def _encode(job: QueueJob) -> str:
    return orjson.dumps(job.model_dump(mode="json")).decode()
