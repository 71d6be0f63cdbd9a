from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.usage import Money, UsageUnit

TOKENIZER_IDS = ("openai", "claude")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())


class TokenizerConfig(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow", protected_namespaces=()
    )

    tokenizer_model: Optional[str] = None
    tokens_per_message: Optional[int] = None
    tokens_per_name: Optional[int] = None


class ModelDefinition(CamelModel):
    id: str
    project_id: Optional[str] = None  # None = system-maintained
    model_name: str
    match_pattern: str
    start_date: Optional[datetime] = None
    unit: UsageUnit = UsageUnit.TOKENS
    input_price: Optional[Money] = None    # USD per unit
    output_price: Optional[Money] = None   # USD per unit
    total_price: Optional[Money] = None    # USD per unit
    tokenizer_id: Optional[str] = None
    tokenizer_config: Optional[TokenizerConfig] = None
    hidden_reasoning_tokens: bool = False
    created_at: Optional[datetime] = None

    @property
    def is_system_managed(self) -> bool:
        return self.project_id is None

    @property
    def has_prices(self) -> bool:
        return any(
            p is not None for p in (self.input_price, self.output_price, self.total_price)
        )


class ModelDefinitionCreate(CamelModel):
    model_name: str = Field(min_length=1)
    match_pattern: str = Field(min_length=1)
    start_date: Optional[datetime] = None
    unit: UsageUnit = UsageUnit.TOKENS
    input_price: Optional[Decimal] = Field(default=None, ge=0)
    output_price: Optional[Decimal] = Field(default=None, ge=0)
    total_price: Optional[Decimal] = Field(default=None, ge=0)
    tokenizer_id: Optional[str] = None
    tokenizer_config: Optional[TokenizerConfig] = None
    hidden_reasoning_tokens: bool = False


class ModelDefinitionOut(ModelDefinition):
    is_system_managed_flag: bool = Field(default=False, alias="isSystemManaged")

    @classmethod
    def from_definition(cls, definition: ModelDefinition) -> "ModelDefinitionOut":
        return cls(
            **definition.model_dump(),
            is_system_managed_flag=definition.is_system_managed,
        )


class PageMeta(CamelModel):
    page: int
    limit: int
    total_items: int
    total_pages: int


class ModelDefinitionPage(CamelModel):
    data: List[ModelDefinitionOut]
    meta: PageMeta
