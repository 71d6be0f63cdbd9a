from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from app.api.deps import get_generation_store, get_model_store, get_project_id
from app.core.exceptions import InvalidRequestError
from app.core.timeutils import as_utc
from app.pricing.migration import recalculate_costs
from app.storage.generation_store import GenerationStore
from app.storage.model_store import ModelDefinitionStore

router = APIRouter()


class RecalculateCostsRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())

    model_id: str
    from_start_time: Optional[datetime] = None
    to_start_time: Optional[datetime] = None


@router.post("/migrations/recalculate-costs")
async def recalculate_model_costs(
    body: RecalculateCostsRequest,
    project_id: str = Depends(get_project_id),
    model_store: ModelDefinitionStore = Depends(get_model_store),
    generation_store: GenerationStore = Depends(get_generation_store),
):
    """
    Re-price generations already matched to a model definition using its
    current prices. Generations with ingested cost are left as they are.
    """
    start, end = as_utc(body.from_start_time), as_utc(body.to_start_time)
    if start and end and start >= end:
        raise InvalidRequestError("fromStartTime must be before toStartTime")

    result = await recalculate_costs(
        model_store, generation_store, body.model_id, project_id, start, end
    )
    return {"modelId": result.model_id, "updated": result.updated, "skipped": result.skipped}
