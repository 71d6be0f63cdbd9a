from typing import Optional

from pydantic import ValidationError

from app.core.logging import get_logger
from app.models.generation import Generation
from app.models.ingestion import GenerationBody, IngestionEvent, QueueJob
from app.pricing.matcher import ModelMatcher
from app.pricing.resolver import UsageCostResolver
from app.storage.generation_locks import GenerationLocks
from app.storage.generation_store import GenerationStore
from app.storage.model_store import ModelDefinitionStore

logger = get_logger(__name__)

# Generation fields an ingestion event may set; later non-null values win
MERGED_FIELDS = (
    "trace_id", "name", "model", "model_parameters", "start_time",
    "end_time", "input", "output", "metadata",
)


def merge_event(
    existing: Optional[Generation], project_id: str, body: GenerationBody, event: IngestionEvent
) -> Generation:
    base = existing or Generation(id=body.id, project_id=project_id)

    updates = {}
    for field in MERGED_FIELDS:
        value = getattr(body, field)
        if value is not None:
            updates[field] = value

    if body.usage is not None:
        updates["provided_usage"] = base.provided_usage.merged_with(body.usage.usage_details())
        updates["provided_cost"] = base.provided_cost.merged_with(body.usage.cost_details())

    merged = base.model_copy(update=updates)
    if merged.start_time is None:
        merged = merged.model_copy(update={"start_time": event.timestamp})
    return merged


class IngestionProcessor:
    """
    Turns one queued ingestion event into a stored, priced generation.

    Events for the same generation are processed one at a time under `locks`.
    """

    def __init__(
        self,
        model_store: ModelDefinitionStore,
        generation_store: GenerationStore,
        matcher: ModelMatcher,
        resolver: UsageCostResolver,
        locks=None,
    ):
        self.model_store = model_store
        self.generation_store = generation_store
        self.matcher = matcher
        self.resolver = resolver
        self.locks = locks or GenerationLocks()

    async def process(self, job: QueueJob) -> Optional[Generation]:
        try:
            event = IngestionEvent.model_validate(job.event)
        except ValidationError as e:
            # Retrying cannot fix a malformed event
            logger.error("ingestion_event_invalid", job_id=job.id, error=str(e))
            return None

        body = event.body
        async with self.locks.hold(job.project_id, body.id):
            existing = await self.generation_store.get(job.project_id, body.id)
            generation = merge_event(existing, job.project_id, body, event)

            definitions = await self.model_store.candidates(job.project_id)
            definition = self.matcher.match(
                definitions,
                generation.model,
                generation.unit,
                generation.start_time,
                project_id=job.project_id,
            )
            resolved = await self.resolver.resolve(generation, definition)
            saved = await self.generation_store.save(resolved)

        logger.info(
            "generation_processed",
            job_id=job.id,
            event_id=event.id,
            event_type=event.type.value,
            generation_id=saved.id,
            model=saved.model,
            model_id=saved.internal_model_id,
            usage_inferred=saved.usage_inferred,
            cost_inferred=saved.cost_inferred,
        )
        return saved
