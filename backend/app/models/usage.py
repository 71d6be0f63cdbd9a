from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, model_validator
from pydantic.alias_generators import to_camel

# Decimals stay exact internally and are rendered as JSON numbers.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class UsageUnit(str, Enum):
    TOKENS = "TOKENS"
    CHARACTERS = "CHARACTERS"
    MILLISECONDS = "MILLISECONDS"
    SECONDS = "SECONDS"
    IMAGES = "IMAGES"
    REQUESTS = "REQUESTS"


DEFAULT_UNIT = UsageUnit.TOKENS

# OpenAI-compatible keys and the canonical field each one maps to
USAGE_ALIASES: Dict[str, str] = {
    "promptTokens": "input",
    "prompt_tokens": "input",
    "completionTokens": "output",
    "completion_tokens": "output",
    "totalTokens": "total",
    "total_tokens": "total",
    "inputCost": "input_cost",
    "outputCost": "output_cost",
    "totalCost": "total_cost",
}

OPENAI_TOKEN_KEYS = {
    "promptTokens", "prompt_tokens", "completionTokens",
    "completion_tokens", "totalTokens", "total_tokens",
}


class UsageIn(BaseModel):
    """Usage object as accepted on ingestion, aliases already folded in."""

    model_config = ConfigDict(extra="ignore")

    input: Optional[int] = Field(default=None, ge=0)
    output: Optional[int] = Field(default=None, ge=0)
    total: Optional[int] = Field(default=None, ge=0)
    unit: Optional[UsageUnit] = None
    input_cost: Optional[Decimal] = Field(default=None, ge=0)
    output_cost: Optional[Decimal] = Field(default=None, ge=0)
    total_cost: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _fold_aliases(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        folded = {k: v for k, v in data.items() if k not in USAGE_ALIASES}
        for key, target in USAGE_ALIASES.items():
            if folded.get(target) is None and data.get(key) is not None:
                folded[target] = data[key]

        if isinstance(folded.get("unit"), str):
            folded["unit"] = folded["unit"].upper()
        if folded.get("unit") is None and any(k in data for k in OPENAI_TOKEN_KEYS):
            folded["unit"] = UsageUnit.TOKENS
        return folded

    def usage_details(self) -> "UsageDetails":
        return UsageDetails(
            input=self.input, output=self.output, total=self.total, unit=self.unit
        )

    def cost_details(self) -> "CostDetails":
        return CostDetails(
            input=self.input_cost, output=self.output_cost, total=self.total_cost
        )


class UsageDetails(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    input: Optional[int] = None
    output: Optional[int] = None
    total: Optional[int] = None
    unit: Optional[UsageUnit] = None

    def is_empty(self) -> bool:
        return self.input is None and self.output is None and self.total is None

    def merged_with(self, newer: "UsageDetails") -> "UsageDetails":
        return UsageDetails(
            input=newer.input if newer.input is not None else self.input,
            output=newer.output if newer.output is not None else self.output,
            total=newer.total if newer.total is not None else self.total,
            unit=newer.unit or self.unit,
        )


class CostDetails(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    input: Optional[Money] = None
    output: Optional[Money] = None
    total: Optional[Money] = None

    def is_empty(self) -> bool:
        return self.input is None and self.output is None and self.total is None

    def merged_with(self, newer: "CostDetails") -> "CostDetails":
        return CostDetails(
            input=newer.input if newer.input is not None else self.input,
            output=newer.output if newer.output is not None else self.output,
            total=newer.total if newer.total is not None else self.total,
        )
