from fastapi import APIRouter, Request

from app.storage.db import health_check as db_health_check

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    queue = request.app.state.queue
    engine = getattr(request.app.state, "engine", None)
    redis_ok = await queue.health_check()
    db_ok = await db_health_check(engine) if engine is not None else False
    queue_stats = await queue.stats() if redis_ok else None
    return {
        "status": "ok" if redis_ok and db_ok else "degraded",
        "redis": redis_ok,
        "database": db_ok,
        "queue": queue_stats,
    }


@router.get("/ready")
async def ready():
    return {"status": "ready"}
