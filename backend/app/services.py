"""
Component wiring shared by the API process and the ingestion worker.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from app.core.config import Settings
from app.core.logging import get_logger
from app.pricing.catalog import load_system_definitions
from app.pricing.matcher import ModelMatcher
from app.pricing.resolver import UsageCostResolver
from app.pricing.tokenizers import TokenizerRegistry
from app.storage.db import create_db_engine, init_schema
from app.storage.generation_locks import RedisGenerationLocks
from app.storage.generation_store import GenerationStore, SqlGenerationStore
from app.storage.ingestion_queue import IngestionQueue
from app.storage.model_store import ModelDefinitionStore, SqlModelDefinitionStore
from app.worker.processor import IngestionProcessor

logger = get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    model_store: ModelDefinitionStore
    generation_store: GenerationStore
    queue: IngestionQueue
    processor: IngestionProcessor
    engine: Optional[AsyncEngine] = None

    async def close(self) -> None:
        await self.queue.close()
        if self.engine is not None:
            await self.engine.dispose()


async def build_services(settings: Settings) -> Services:
    engine = create_db_engine(settings.database_url)
    await init_schema(engine)

    model_store = SqlModelDefinitionStore(engine)
    await model_store.upsert_system(load_system_definitions(settings.models_config_path))

    queue = IngestionQueue.from_settings(settings)
    await queue.check_eviction_policy(enforce=settings.redis_enforce_noeviction)

    generation_store = SqlGenerationStore(engine)
    processor = IngestionProcessor(
        model_store=model_store,
        generation_store=generation_store,
        matcher=ModelMatcher(),
        resolver=UsageCostResolver(TokenizerRegistry.from_settings(settings)),
        locks=RedisGenerationLocks(
            queue.redis,
            prefix=queue.name,
            timeout=settings.generation_lock_timeout_seconds,
            wait=settings.generation_lock_wait_seconds,
        ),
    )

    logger.info("services_ready", queue=queue.name)
    return Services(
        settings=settings,
        model_store=model_store,
        generation_store=generation_store,
        queue=queue,
        processor=processor,
        engine=engine,
    )
