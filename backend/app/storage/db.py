from __future__ import annotations

from typing import Any

import orjson
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from app.core.logging import get_logger

logger = get_logger(__name__)

SCHEMA_STATEMENTS = [
    """
    create table if not exists model_definitions (
      id text primary key,
      project_id text null,
      model_name text not null,
      match_pattern text not null,
      start_date timestamptz null,
      unit text not null,
      input_price numeric null,
      output_price numeric null,
      total_price numeric null,
      tokenizer_id text null,
      tokenizer_config jsonb null,
      hidden_reasoning_tokens boolean not null default false,
      created_at timestamptz not null default now()
    )
    """,
    "create index if not exists model_definitions_project_idx on model_definitions (project_id)",
    """
    create table if not exists generations (
      project_id text not null,
      id text not null,
      trace_id text null,
      name text null,
      model text null,
      model_parameters jsonb null,
      start_time timestamptz null,
      end_time timestamptz null,
      input jsonb null,
      output jsonb null,
      metadata jsonb null,
      provided_usage jsonb not null,
      provided_cost jsonb not null,
      usage jsonb not null,
      cost jsonb not null,
      internal_model_id text null,
      usage_inferred boolean not null default false,
      cost_inferred boolean not null default false,
      created_at timestamptz not null default now(),
      updated_at timestamptz not null default now(),
      primary key (project_id, id)
    )
    """,
    "create index if not exists generations_model_idx on generations (internal_model_id, start_time)",
]


def create_db_engine(database_url: str) -> AsyncEngine:
    """Create shared async SQLAlchemy engine for app storage modules."""
    return create_async_engine(
        database_url,
        future=True,
        pool_pre_ping=True,
    )


async def init_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(text(statement))
    logger.info("db_schema_ready")


async def health_check(engine: AsyncEngine) -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("select 1"))
        return True
    except Exception as e:
        logger.warning("db_health_check_failed", error=str(e))
        return False


def dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return orjson.dumps(value, default=str).decode()


def load_json(value: Any) -> Any:
    # asyncpg hands back jsonb as text unless a codec is registered
    if isinstance(value, (str, bytes)):
        return orjson.loads(value)
    return value
