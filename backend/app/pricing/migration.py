"""
Price-only cost migration.

Stored generations are never re-priced automatically when a definition
changes. This is the explicit operation that applies a definition's current
prices to generations already matched to it. Matching and usage are left
untouched; generations with ingested cost are never modified.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from app.core.exceptions import ModelDefinitionNotFoundError
from app.core.logging import get_logger
from app.pricing.resolver import compute_cost
from app.storage.generation_store import GenerationStore
from app.storage.model_store import ModelDefinitionStore

logger = get_logger(__name__)


@dataclass
class MigrationResult:
    model_id: str
    updated: int = 0
    skipped: int = 0


async def recalculate_costs(
    model_store: ModelDefinitionStore,
    generation_store: GenerationStore,
    model_id: str,
    project_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> MigrationResult:
    definition = await model_store.get(model_id, project_id)
    if definition is None:
        raise ModelDefinitionNotFoundError(f"Model definition '{model_id}' not found")

    result = MigrationResult(model_id=model_id)
    # System definitions are shared; a project only migrates its own generations
    for generation in await generation_store.list_by_model(project_id, model_id, start, end):
        if not generation.provided_cost.is_empty() or generation.usage.is_empty():
            result.skipped += 1
            continue
        if definition.hidden_reasoning_tokens and generation.provided_usage.is_empty():
            result.skipped += 1
            continue

        cost = compute_cost(generation.usage, definition)
        if cost == generation.cost:
            result.skipped += 1
            continue

        await generation_store.save(
            generation.model_copy(update={"cost": cost, "cost_inferred": not cost.is_empty()})
        )
        result.updated += 1

    logger.info(
        "cost_migration_complete",
        model_id=model_id,
        project_id=project_id,
        updated=result.updated,
        skipped=result.skipped,
    )
    return result
