import asyncio
import contextlib
from typing import List

import structlog
from redis.exceptions import RedisError

from app.core.logging import get_logger
from app.storage.ingestion_queue import IngestionQueue, ReceivedJob, new_consumer_id
from app.worker.processor import IngestionProcessor

logger = get_logger(__name__)

REDIS_BACKOFF_SECONDS = 1.0


class IngestionWorker:
    """
    Runs N independent consumers against the ingestion queue.

    Each consumer has its own processing list and heartbeat, so jobs held by a
    consumer that dies are recovered by the next worker start. Generations are
    processed independently; there is no ordering across consumers.
    """

    def __init__(
        self,
        queue: IngestionQueue,
        processor: IngestionProcessor,
        concurrency: int = 4,
        block_timeout_seconds: int = 5,
    ):
        self.queue = queue
        self.processor = processor
        self.concurrency = max(1, concurrency)
        self.block_timeout_seconds = block_timeout_seconds
        self.consumer_ids: List[str] = [new_consumer_id() for _ in range(self.concurrency)]
        self._stopping = asyncio.Event()

    def stop(self) -> None:
        if not self._stopping.is_set():
            logger.info("worker_stopping")
        self._stopping.set()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    async def run(self) -> None:
        for consumer_id in self.consumer_ids:
            await self.queue.heartbeat(consumer_id)
        recovered = await self.queue.recover_orphaned()
        logger.info("worker_started", consumers=self.concurrency, recovered=recovered)

        heartbeat = asyncio.create_task(self._heartbeat_loop(), name="worker-heartbeat")
        try:
            await asyncio.gather(*(self._consume(cid) for cid in self.consumer_ids))
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat
            for consumer_id in self.consumer_ids:
                await self.queue.release(consumer_id)
            logger.info("worker_stopped")

    async def _heartbeat_loop(self) -> None:
        interval = max(1, self.queue.heartbeat_ttl_seconds // 3)
        while True:
            await asyncio.sleep(interval)
            for consumer_id in self.consumer_ids:
                try:
                    await self.queue.heartbeat(consumer_id)
                except RedisError as e:
                    logger.warning("worker_heartbeat_failed", consumer=consumer_id, error=str(e))

    async def _consume(self, consumer_id: str) -> None:
        while not self.stopping:
            try:
                received = await self.queue.dequeue(consumer_id, self.block_timeout_seconds)
            except RedisError as e:
                logger.warning("worker_dequeue_failed", consumer=consumer_id, error=str(e))
                await asyncio.sleep(REDIS_BACKOFF_SECONDS)
                continue
            if received is not None:
                await self.handle(consumer_id, received)

    async def handle(self, consumer_id: str, received: ReceivedJob) -> bool:
        """Process one job; True when acked, False when retried or dead-lettered."""
        with structlog.contextvars.bound_contextvars(job_id=received.job.id, consumer=consumer_id):
            try:
                await self.processor.process(received.job)
            except Exception as e:
                logger.exception("worker_job_failed", error=str(e))
                await self.queue.retry_or_dead_letter(consumer_id, received, str(e))
                return False
            await self.queue.ack(consumer_id, received)
            return True
