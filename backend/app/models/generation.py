from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import Field

from app.models.model_definition import CamelModel
from app.models.usage import DEFAULT_UNIT, CostDetails, UsageDetails, UsageUnit


class Generation(CamelModel):
    """
    A single LLM call record.

    provided_usage / provided_cost hold exactly what was ingested; usage / cost
    hold the resolved values (ingested values copied through, gaps inferred).
    """

    id: str
    project_id: str
    trace_id: Optional[str] = None
    name: Optional[str] = None
    model: Optional[str] = None
    model_parameters: Optional[Dict[str, Any]] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    input: Optional[Any] = None
    output: Optional[Any] = None
    metadata: Optional[Any] = None

    provided_usage: UsageDetails = Field(default_factory=UsageDetails)
    provided_cost: CostDetails = Field(default_factory=CostDetails)

    usage: UsageDetails = Field(default_factory=UsageDetails)
    cost: CostDetails = Field(default_factory=CostDetails)
    internal_model_id: Optional[str] = None
    usage_inferred: bool = False
    cost_inferred: bool = False

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def unit(self) -> UsageUnit:
        return self.provided_usage.unit or DEFAULT_UNIT
