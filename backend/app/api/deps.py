from fastapi import Request

from app.core.config import Settings
from app.core.exceptions import AuthenticationError
from app.storage.generation_store import GenerationStore
from app.storage.ingestion_queue import IngestionQueue
from app.storage.model_store import ModelDefinitionStore


def get_settings_state(request: Request) -> Settings:
    return request.app.state.settings


def get_model_store(request: Request) -> ModelDefinitionStore:
    return request.app.state.model_store


def get_generation_store(request: Request) -> GenerationStore:
    return request.app.state.generation_store


def get_queue(request: Request) -> IngestionQueue:
    return request.app.state.queue


def get_project_id(request: Request) -> str:
    project_id = getattr(request.state, "project_id", None)
    if not project_id:
        raise AuthenticationError("No project bound to this request")
    return project_id
