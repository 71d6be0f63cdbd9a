from decimal import Decimal
from typing import Optional

from app.core.exceptions import TokenizerError
from app.core.logging import get_logger
from app.models.generation import Generation
from app.models.model_definition import ModelDefinition, TokenizerConfig
from app.models.usage import CostDetails, UsageDetails
from app.pricing.tokenizers import TokenizerRegistry

logger = get_logger(__name__)


def _sum_present(*values):
    present = [v for v in values if v is not None]
    if not present:
        return None
    return sum(present[1:], present[0])


def _with_derived_total(usage: UsageDetails) -> UsageDetails:
    if usage.total is None:
        usage = usage.model_copy(update={"total": _sum_present(usage.input, usage.output)})
    return usage


def _cost_with_derived_total(cost: CostDetails) -> CostDetails:
    if cost.total is None:
        cost = cost.model_copy(update={"total": _sum_present(cost.input, cost.output)})
    return cost


def _multiply(units: Optional[int], price: Optional[Decimal]) -> Optional[Decimal]:
    if units is None or price is None:
        return None
    return Decimal(units) * price


def compute_cost(usage: UsageDetails, definition: ModelDefinition) -> CostDetails:
    """
    Price a usage record against a definition's per-unit prices.

    A total price prices usage.total directly; the total is the sum of the
    input and output costs otherwise.
    """
    input_cost = _multiply(usage.input, definition.input_price)
    output_cost = _multiply(usage.output, definition.output_price)
    if definition.total_price is not None and usage.total is not None:
        total_cost = _multiply(usage.total, definition.total_price)
    else:
        total_cost = _sum_present(input_cost, output_cost)
    return CostDetails(input=input_cost, output=output_cost, total=total_cost)


class UsageCostResolver:
    """
    Fills missing usage and cost on a generation from its matched definition.

    Ingested values are never replaced: if any usage count was ingested the
    tokenizer is not consulted, and if any cost was ingested no price-based
    cost is computed. Only missing totals are derived from components.
    """

    def __init__(self, tokenizers: TokenizerRegistry):
        self._tokenizers = tokenizers

    async def resolve(
        self, generation: Generation, definition: Optional[ModelDefinition]
    ) -> Generation:
        usage, usage_inferred = await self._resolve_usage(generation, definition)
        cost, cost_inferred = self._resolve_cost(generation, definition, usage)

        return generation.model_copy(
            update={
                "usage": usage,
                "cost": cost,
                "internal_model_id": definition.id if definition else None,
                "usage_inferred": usage_inferred,
                "cost_inferred": cost_inferred,
            }
        )

    async def _resolve_usage(self, generation: Generation, definition: Optional[ModelDefinition]):
        provided = generation.provided_usage
        if not provided.is_empty():
            return _with_derived_total(provided.model_copy(update={"unit": generation.unit})), False

        empty = UsageDetails(unit=generation.unit)
        if definition is None:
            return empty, False

        if definition.hidden_reasoning_tokens:
            # Billed output includes hidden reasoning tokens the visible text lacks
            logger.info(
                "usage_inference_skipped_reasoning_model",
                generation_id=generation.id,
                model_id=definition.id,
            )
            return empty, False

        tokenizer = self._tokenizers.get(definition.tokenizer_id)
        if tokenizer is None:
            return empty, False

        config = definition.tokenizer_config or TokenizerConfig()
        try:
            input_tokens = await tokenizer.count_input(generation.input, config)
            output_tokens = await tokenizer.count_output(generation.output, config)
        except TokenizerError as e:
            logger.warning(
                "usage_inference_failed",
                generation_id=generation.id,
                tokenizer=e.tokenizer_id,
                error=e.message,
            )
            return empty, False

        inferred = _with_derived_total(
            UsageDetails(input=input_tokens, output=output_tokens, unit=generation.unit)
        )
        if inferred.is_empty():
            return empty, False
        return inferred, True

    def _resolve_cost(
        self,
        generation: Generation,
        definition: Optional[ModelDefinition],
        usage: UsageDetails,
    ):
        provided = generation.provided_cost
        if not provided.is_empty():
            return _cost_with_derived_total(provided), False

        if definition is None or not definition.has_prices or usage.is_empty():
            return CostDetails(), False

        if definition.hidden_reasoning_tokens and generation.provided_usage.is_empty():
            return CostDetails(), False

        cost = compute_cost(usage, definition)
        if cost.is_empty():
            return CostDetails(), False
        return cost, True
