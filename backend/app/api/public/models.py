import math
import re
import uuid

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_model_store, get_project_id
from app.core.exceptions import (
    ForbiddenOperationError,
    InvalidRequestError,
    ModelDefinitionNotFoundError,
)
from app.core.logging import get_logger
from app.models.model_definition import (
    TOKENIZER_IDS,
    ModelDefinition,
    ModelDefinitionCreate,
    ModelDefinitionOut,
    ModelDefinitionPage,
    PageMeta,
)
from app.storage.model_store import ModelDefinitionStore

logger = get_logger(__name__)
router = APIRouter()


def _validate(body: ModelDefinitionCreate) -> None:
    try:
        re.compile(body.match_pattern)
    except re.error as e:
        raise InvalidRequestError(f"Invalid matchPattern '{body.match_pattern}': {e}") from e

    if body.tokenizer_id is not None and body.tokenizer_id not in TOKENIZER_IDS:
        raise InvalidRequestError(
            f"Unknown tokenizerId '{body.tokenizer_id}'. Supported: {', '.join(TOKENIZER_IDS)}"
        )
    if body.tokenizer_config is not None and body.tokenizer_id is None:
        raise InvalidRequestError("tokenizerConfig requires tokenizerId")


@router.get("/models", response_model=ModelDefinitionPage)
async def list_models(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    project_id: str = Depends(get_project_id),
    store: ModelDefinitionStore = Depends(get_model_store),
):
    definitions, total = await store.list_visible(project_id, page, limit)
    return ModelDefinitionPage(
        data=[ModelDefinitionOut.from_definition(d) for d in definitions],
        meta=PageMeta(
            page=page,
            limit=limit,
            total_items=total,
            total_pages=math.ceil(total / limit) if total else 0,
        ),
    )


@router.post("/models", response_model=ModelDefinitionOut)
async def create_model(
    body: ModelDefinitionCreate,
    project_id: str = Depends(get_project_id),
    store: ModelDefinitionStore = Depends(get_model_store),
):
    _validate(body)
    definition = ModelDefinition(
        id=f"model-{uuid.uuid4().hex}",
        project_id=project_id,
        **body.model_dump(),
    )
    created = await store.create(definition)
    logger.info(
        "model_definition_created",
        model_id=created.id,
        project_id=project_id,
        model_name=created.model_name,
        unit=created.unit.value,
    )
    return ModelDefinitionOut.from_definition(created)


@router.get("/models/{model_id}", response_model=ModelDefinitionOut)
async def get_model(
    model_id: str,
    project_id: str = Depends(get_project_id),
    store: ModelDefinitionStore = Depends(get_model_store),
):
    definition = await store.get(model_id, project_id)
    if definition is None:
        raise ModelDefinitionNotFoundError(f"Model definition '{model_id}' not found")
    return ModelDefinitionOut.from_definition(definition)


@router.delete("/models/{model_id}")
async def delete_model(
    model_id: str,
    project_id: str = Depends(get_project_id),
    store: ModelDefinitionStore = Depends(get_model_store),
):
    definition = await store.get(model_id, project_id)
    if definition is None:
        raise ModelDefinitionNotFoundError(f"Model definition '{model_id}' not found")
    if definition.is_system_managed:
        raise ForbiddenOperationError(
            "System-maintained model definitions cannot be deleted; "
            "create a project definition with the same matchPattern to override it"
        )

    await store.delete(model_id)
    logger.info("model_definition_deleted", model_id=model_id, project_id=project_id)
    return {"message": "Model definition successfully deleted"}
