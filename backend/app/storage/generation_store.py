from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from app.core.logging import get_logger
from app.core.timeutils import as_utc
from app.models.generation import Generation
from app.storage.db import dump_json, load_json

logger = get_logger(__name__)

JSON_FIELDS = (
    "model_parameters", "input", "output", "metadata",
    "provided_usage", "provided_cost", "usage", "cost",
)


def _in_window(generation: Generation, start: Optional[datetime], end: Optional[datetime]) -> bool:
    start_time = as_utc(generation.start_time)
    if start_time is None:
        return start is None and end is None
    if start is not None and start_time < as_utc(start):
        return False
    if end is not None and start_time >= as_utc(end):
        return False
    return True


class GenerationStore:
    async def get(self, project_id: str, generation_id: str) -> Optional[Generation]:
        raise NotImplementedError

    async def save(self, generation: Generation) -> Generation:
        raise NotImplementedError

    async def list_by_model(
        self,
        project_id: str,
        internal_model_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Generation]:
        raise NotImplementedError


class InMemoryGenerationStore(GenerationStore):
    def __init__(self):
        self._items: Dict[Tuple[str, str], Generation] = {}

    async def get(self, project_id, generation_id):
        return self._items.get((project_id, generation_id))

    async def save(self, generation):
        now = datetime.now(timezone.utc)
        existing = self._items.get((generation.project_id, generation.id))
        generation = generation.model_copy(
            update={
                "created_at": existing.created_at if existing else (generation.created_at or now),
                "updated_at": now,
            }
        )
        self._items[(generation.project_id, generation.id)] = generation
        return generation

    async def list_by_model(self, project_id, internal_model_id, start=None, end=None):
        return [
            g for g in self._items.values()
            if g.project_id == project_id
            and g.internal_model_id == internal_model_id
            and _in_window(g, start, end)
        ]


_COLUMNS = (
    "project_id, id, trace_id, name, model, model_parameters, start_time, end_time, "
    "input, output, metadata, provided_usage, provided_cost, usage, cost, "
    "internal_model_id, usage_inferred, cost_inferred, created_at, updated_at"
)


def _row_to_generation(row) -> Generation:
    data = dict(row)
    for field in JSON_FIELDS:
        data[field] = load_json(data.get(field))
    return Generation.model_validate(data)


class SqlGenerationStore(GenerationStore):
    """Generations in Postgres (public.generations), keyed by (project_id, id)."""

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    async def get(self, project_id, generation_id):
        query = text(
            f"select {_COLUMNS} from generations where project_id = :project_id and id = :id"
        )
        async with self._engine.connect() as conn:
            row = (
                await conn.execute(query, {"project_id": project_id, "id": generation_id})
            ).mappings().first()
        return _row_to_generation(row) if row else None

    async def save(self, generation):
        data = generation.model_dump()
        params = {k: data[k] for k in (
            "project_id", "id", "trace_id", "name", "model", "start_time", "end_time",
            "internal_model_id", "usage_inferred", "cost_inferred",
        )}
        for field in JSON_FIELDS:
            params[field] = dump_json(data[field])

        query = text(
            """
            insert into generations (
              project_id, id, trace_id, name, model, model_parameters, start_time,
              end_time, input, output, metadata, provided_usage, provided_cost,
              usage, cost, internal_model_id, usage_inferred, cost_inferred
            ) values (
              :project_id, :id, :trace_id, :name, :model, cast(:model_parameters as jsonb),
              :start_time, :end_time, cast(:input as jsonb), cast(:output as jsonb),
              cast(:metadata as jsonb), cast(:provided_usage as jsonb),
              cast(:provided_cost as jsonb), cast(:usage as jsonb), cast(:cost as jsonb),
              :internal_model_id, :usage_inferred, :cost_inferred
            )
            on conflict (project_id, id) do update set
              trace_id = excluded.trace_id,
              name = excluded.name,
              model = excluded.model,
              model_parameters = excluded.model_parameters,
              start_time = excluded.start_time,
              end_time = excluded.end_time,
              input = excluded.input,
              output = excluded.output,
              metadata = excluded.metadata,
              provided_usage = excluded.provided_usage,
              provided_cost = excluded.provided_cost,
              usage = excluded.usage,
              cost = excluded.cost,
              internal_model_id = excluded.internal_model_id,
              usage_inferred = excluded.usage_inferred,
              cost_inferred = excluded.cost_inferred,
              updated_at = now()
            returning created_at, updated_at
            """
        )
        async with self._engine.begin() as conn:
            stamps = (await conn.execute(query, params)).mappings().first()
        return generation.model_copy(
            update={"created_at": stamps["created_at"], "updated_at": stamps["updated_at"]}
        )

    async def list_by_model(self, project_id, internal_model_id, start=None, end=None):
        conditions = ["project_id = :project_id", "internal_model_id = :model_id"]
        params: dict = {"project_id": project_id, "model_id": internal_model_id}
        if start is not None:
            conditions.append("start_time >= :start")
            params["start"] = start
        if end is not None:
            conditions.append("start_time < :end")
            params["end"] = end
        query = text(
            f"select {_COLUMNS} from generations where {' and '.join(conditions)} "
            "order by start_time"
        )
        async with self._engine.connect() as conn:
            rows = (await conn.execute(query, params)).mappings().all()
        return [_row_to_generation(r) for r in rows]
