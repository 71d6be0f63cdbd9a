from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from app.models.usage import UsageIn


class IngestionEventType(str, Enum):
    GENERATION_CREATE = "generation-create"
    GENERATION_UPDATE = "generation-update"
    OBSERVATION_CREATE = "observation-create"
    OBSERVATION_UPDATE = "observation-update"


OBSERVATION_EVENT_TYPES = {
    IngestionEventType.OBSERVATION_CREATE,
    IngestionEventType.OBSERVATION_UPDATE,
}


class GenerationBody(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore", protected_namespaces=()
    )

    id: str = Field(min_length=1)
    type: Optional[str] = None  # only meaningful for observation-* events
    trace_id: Optional[str] = None
    name: Optional[str] = None
    model: Optional[str] = None
    model_parameters: Optional[Dict[str, Any]] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    input: Optional[Any] = None
    output: Optional[Any] = None
    metadata: Optional[Any] = None
    usage: Optional[UsageIn] = None


class IngestionEvent(BaseModel):
    id: str = Field(min_length=1)
    type: IngestionEventType
    timestamp: datetime
    body: GenerationBody

    @model_validator(mode="after")
    def _observation_must_be_generation(self) -> "IngestionEvent":
        if self.type in OBSERVATION_EVENT_TYPES and (self.body.type or "").upper() != "GENERATION":
            raise ValueError("only observations of type GENERATION are supported")
        return self


class IngestionBatch(BaseModel):
    batch: List[Any]
    metadata: Optional[Dict[str, Any]] = None


class IngestionSuccess(BaseModel):
    id: str
    status: int = 201


class IngestionErrorItem(BaseModel):
    id: str
    status: int
    message: str
    error: Optional[str] = None


class IngestionResponse(BaseModel):
    successes: List[IngestionSuccess] = Field(default_factory=list)
    errors: List[IngestionErrorItem] = Field(default_factory=list)


class QueueJob(BaseModel):
    id: str
    project_id: str
    event: Dict[str, Any]
    attempts: int = 0
    enqueued_at: datetime
    last_error: Optional[str] = None
