from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.internal import health, migrations
from app.api.public import generations, ingestion, models
from app.core.config import Settings, get_settings
from app.core.exceptions import UsageCostError, usage_cost_exception_handler
from app.core.logging import configure_logging, get_logger
from app.middleware.auth import AuthMiddleware
from app.middleware.request_id import RequestIdMiddleware
from app.services import build_services

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    configure_logging(settings.log_level, settings.log_json)

    logger.info("startup", env=settings.app_env)

    services = await build_services(settings)

    # Store on app state for dependency injection
    app.state.model_store = services.model_store
    app.state.generation_store = services.generation_store
    app.state.queue = services.queue
    app.state.engine = services.engine

    yield

    await services.close()
    logger.info("shutdown")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="UsageCost",
        description="Generation usage and cost resolution service",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )

    # Auth middleware (dev mode: skip auth when no keys configured)
    app.add_middleware(
        AuthMiddleware,
        api_key_projects=settings.api_key_projects,
        dev_mode=settings.is_development,
    )

    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(UsageCostError, usage_cost_exception_handler)

    # Routes: public API
    app.include_router(ingestion.router, prefix="/api/public")
    app.include_router(models.router, prefix="/api/public")
    app.include_router(generations.router, prefix="/api/public")

    # Routes: internal
    app.include_router(health.router)
    app.include_router(health.router, prefix="/internal")
    app.include_router(migrations.router, prefix="/internal")

    return app


app = create_app()
