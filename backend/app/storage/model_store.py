from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from app.core.logging import get_logger
from app.models.model_definition import ModelDefinition
from app.storage.db import dump_json, load_json

logger = get_logger(__name__)


def _visible(definition: ModelDefinition, project_id: Optional[str]) -> bool:
    return definition.project_id is None or definition.project_id == project_id


def _listing_order(definition: ModelDefinition):
    # Project definitions first, then by name, newest start_date first
    start = definition.start_date.timestamp() if definition.start_date else float("-inf")
    return (definition.project_id is None, definition.model_name, -start, definition.id)


class ModelDefinitionStore:
    async def list_visible(
        self, project_id: str, page: int, limit: int
    ) -> Tuple[List[ModelDefinition], int]:
        raise NotImplementedError

    async def candidates(self, project_id: str) -> List[ModelDefinition]:
        """Project-owned plus system definitions, the matcher's input."""
        raise NotImplementedError

    async def get(self, model_id: str, project_id: str) -> Optional[ModelDefinition]:
        raise NotImplementedError

    async def create(self, definition: ModelDefinition) -> ModelDefinition:
        raise NotImplementedError

    async def delete(self, model_id: str) -> bool:
        raise NotImplementedError

    async def upsert_system(self, definitions: List[ModelDefinition]) -> None:
        raise NotImplementedError


class InMemoryModelDefinitionStore(ModelDefinitionStore):
    def __init__(self, definitions: Optional[List[ModelDefinition]] = None):
        self._items: Dict[str, ModelDefinition] = {}
        for d in definitions or []:
            self._items[d.id] = d

    async def list_visible(self, project_id, page, limit):
        visible = sorted(
            (d for d in self._items.values() if _visible(d, project_id)),
            key=_listing_order,
        )
        offset = (page - 1) * limit
        return visible[offset:offset + limit], len(visible)

    async def candidates(self, project_id):
        return [d for d in self._items.values() if _visible(d, project_id)]

    async def get(self, model_id, project_id):
        definition = self._items.get(model_id)
        if definition and _visible(definition, project_id):
            return definition
        return None

    async def create(self, definition):
        if definition.created_at is None:
            definition = definition.model_copy(update={"created_at": datetime.now(timezone.utc)})
        self._items[definition.id] = definition
        return definition

    async def delete(self, model_id):
        return self._items.pop(model_id, None) is not None

    async def upsert_system(self, definitions):
        for d in definitions:
            self._items[d.id] = d.model_copy(update={"project_id": None})


_COLUMNS = (
    "id, project_id, model_name, match_pattern, start_date, unit, input_price, "
    "output_price, total_price, tokenizer_id, tokenizer_config, "
    "hidden_reasoning_tokens, created_at"
)

_ORDER = "order by project_id is null, model_name, start_date desc nulls last, id"


def _row_to_definition(row) -> ModelDefinition:
    data = dict(row)
    data["tokenizer_config"] = load_json(data.get("tokenizer_config"))
    return ModelDefinition.model_validate(data)


def _params(definition: ModelDefinition) -> dict:
    return {
        "id": definition.id,
        "project_id": definition.project_id,
        "model_name": definition.model_name,
        "match_pattern": definition.match_pattern,
        "start_date": definition.start_date,
        "unit": definition.unit.value,
        "input_price": definition.input_price,
        "output_price": definition.output_price,
        "total_price": definition.total_price,
        "tokenizer_id": definition.tokenizer_id,
        "tokenizer_config": dump_json(
            definition.tokenizer_config.model_dump(by_alias=True, exclude_none=True)
            if definition.tokenizer_config else None
        ),
        "hidden_reasoning_tokens": definition.hidden_reasoning_tokens,
        "created_at": definition.created_at or datetime.now(timezone.utc),
    }


_INSERT = f"""
    insert into model_definitions ({_COLUMNS})
    values (:id, :project_id, :model_name, :match_pattern, :start_date, :unit,
            :input_price, :output_price, :total_price, :tokenizer_id,
            cast(:tokenizer_config as jsonb), :hidden_reasoning_tokens, :created_at)
"""


class SqlModelDefinitionStore(ModelDefinitionStore):
    """Model definitions in Postgres (public.model_definitions)."""

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    async def list_visible(self, project_id, page, limit):
        where = "where project_id is null or project_id = :project_id"
        async with self._engine.connect() as conn:
            total = (
                await conn.execute(
                    text(f"select count(*) from model_definitions {where}"),
                    {"project_id": project_id},
                )
            ).scalar_one()
            rows = (
                await conn.execute(
                    text(
                        f"select {_COLUMNS} from model_definitions {where} {_ORDER} "
                        "limit :limit offset :offset"
                    ),
                    {"project_id": project_id, "limit": limit, "offset": (page - 1) * limit},
                )
            ).mappings().all()
        return [_row_to_definition(r) for r in rows], int(total)

    async def candidates(self, project_id):
        query = text(
            f"select {_COLUMNS} from model_definitions "
            "where project_id is null or project_id = :project_id"
        )
        async with self._engine.connect() as conn:
            rows = (await conn.execute(query, {"project_id": project_id})).mappings().all()
        return [_row_to_definition(r) for r in rows]

    async def get(self, model_id, project_id):
        query = text(
            f"select {_COLUMNS} from model_definitions "
            "where id = :id and (project_id is null or project_id = :project_id)"
        )
        async with self._engine.connect() as conn:
            row = (await conn.execute(query, {"id": model_id, "project_id": project_id})).mappings().first()
        return _row_to_definition(row) if row else None

    async def create(self, definition):
        params = _params(definition)
        async with self._engine.begin() as conn:
            await conn.execute(text(_INSERT), params)
        return definition.model_copy(update={"created_at": params["created_at"]})

    async def delete(self, model_id):
        async with self._engine.begin() as conn:
            result = await conn.execute(
                text("delete from model_definitions where id = :id"), {"id": model_id}
            )
        return result.rowcount > 0

    async def upsert_system(self, definitions):
        upsert = text(
            _INSERT
            + """
            on conflict (id) do update set
              project_id = null,
              model_name = excluded.model_name,
              match_pattern = excluded.match_pattern,
              start_date = excluded.start_date,
              unit = excluded.unit,
              input_price = excluded.input_price,
              output_price = excluded.output_price,
              total_price = excluded.total_price,
              tokenizer_id = excluded.tokenizer_id,
              tokenizer_config = excluded.tokenizer_config,
              hidden_reasoning_tokens = excluded.hidden_reasoning_tokens
            """
        )
        async with self._engine.begin() as conn:
            for definition in definitions:
                params = _params(definition.model_copy(update={"project_id": None}))
                await conn.execute(upsert, params)
        logger.info("system_models_synced", count=len(definitions))
