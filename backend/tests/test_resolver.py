"""
Unit tests for usage and cost resolution.

Ingested values must never be replaced by inferred ones, totals are derived
from components, and reasoning models never get an approximated cost.
"""

from decimal import Decimal

import pytest
from conftest import make_definition

from app.core.exceptions import TokenizerError
from app.models.generation import Generation
from app.models.usage import CostDetails, UsageDetails, UsageUnit
from app.pricing.resolver import UsageCostResolver, compute_cost
from app.pricing.tokenizers import OpenAITokenizer, Tokenizer, TokenizerRegistry


def make_generation(**overrides) -> Generation:
    data = {
        "id": "gen-1",
        "project_id": "proj-a",
        "model": "gpt-4o",
        "input": "one two three",
        "output": "four five",
    }
    data.update(overrides)
    return Generation(**data)


class TestComputeCost:
    def test_input_and_output_prices(self):
        cost = compute_cost(UsageDetails(input=100, output=50, total=150), make_definition())
        assert cost.input == Decimal("1.00")
        assert cost.output == Decimal("1.00")
        assert cost.total == Decimal("2.00")

    def test_total_price_only(self):
        definition = make_definition(input_price=None, output_price=None, total_price=Decimal("0.5"))
        cost = compute_cost(UsageDetails(input=3, output=1, total=4), definition)
        assert cost.input is None
        assert cost.output is None
        assert cost.total == Decimal("2.0")

    def test_missing_component_is_left_out_of_total(self):
        cost = compute_cost(UsageDetails(input=10, total=10), make_definition())
        assert cost.output is None
        assert cost.total == Decimal("0.10")

    def test_total_price_prices_total_only_usage(self):
        definition = make_definition(total_price=Decimal("0.03"))
        cost = compute_cost(UsageDetails(total=100), definition)
        assert cost.input is None
        assert cost.output is None
        assert cost.total == Decimal("3.00")

    def test_total_price_takes_precedence_over_component_sum(self):
        definition = make_definition(total_price=Decimal("0.001"))
        cost = compute_cost(UsageDetails(input=100, output=50, total=150), definition)
        assert cost.input == Decimal("1.00")
        assert cost.output == Decimal("1.00")
        assert cost.total == Decimal("0.150")

    def test_total_price_without_usage_total_falls_back_to_sum(self):
        definition = make_definition(total_price=Decimal("0.001"))
        cost = compute_cost(UsageDetails(input=100, output=50), definition)
        assert cost.total == Decimal("2.00")


class TestUsageResolution:
    @pytest.mark.asyncio
    async def test_infers_usage_with_tokenizer(self, resolver):
        definition = make_definition(tokenizer_id="openai")
        resolved = await resolver.resolve(make_generation(), definition)

        assert resolved.usage.input == 3
        assert resolved.usage.output == 2
        assert resolved.usage.total == 5
        assert resolved.usage.unit == UsageUnit.TOKENS
        assert resolved.usage_inferred is True
        assert resolved.cost.total == Decimal("0.07")
        assert resolved.cost_inferred is True
        assert resolved.internal_model_id == definition.id

    @pytest.mark.asyncio
    async def test_ingested_usage_is_never_replaced(self, resolver, word_tokenizer):
        generation = make_generation(provided_usage=UsageDetails(input=1000, output=10))
        resolved = await resolver.resolve(generation, make_definition(tokenizer_id="openai"))

        assert resolved.usage.input == 1000
        assert resolved.usage.output == 10
        assert resolved.usage.total == 1010
        assert resolved.usage_inferred is False
        assert word_tokenizer.calls == 0

    @pytest.mark.asyncio
    async def test_partial_ingested_usage_derives_total_without_tokenizer(self, resolver, word_tokenizer):
        generation = make_generation(provided_usage=UsageDetails(input=7))
        resolved = await resolver.resolve(generation, make_definition(tokenizer_id="openai"))

        assert resolved.usage.input == 7
        assert resolved.usage.output is None
        assert resolved.usage.total == 7
        assert word_tokenizer.calls == 0

    @pytest.mark.asyncio
    async def test_ingested_total_is_kept_even_if_it_differs_from_sum(self, resolver):
        generation = make_generation(provided_usage=UsageDetails(input=1, output=1, total=5))
        resolved = await resolver.resolve(generation, make_definition())
        assert resolved.usage.total == 5

    @pytest.mark.asyncio
    async def test_no_tokenizer_leaves_usage_and_cost_absent(self, resolver):
        resolved = await resolver.resolve(make_generation(), make_definition(tokenizer_id=None))

        assert resolved.usage.is_empty()
        assert resolved.cost.is_empty()
        assert resolved.usage_inferred is False
        assert resolved.cost_inferred is False

    @pytest.mark.asyncio
    async def test_unregistered_tokenizer_leaves_usage_absent(self, resolver):
        resolved = await resolver.resolve(make_generation(), make_definition(tokenizer_id="claude"))
        assert resolved.usage.is_empty()

    @pytest.mark.asyncio
    async def test_no_match_leaves_everything_absent(self, resolver):
        resolved = await resolver.resolve(make_generation(), None)

        assert resolved.usage.is_empty()
        assert resolved.cost.is_empty()
        assert resolved.internal_model_id is None

    @pytest.mark.asyncio
    async def test_no_match_still_derives_ingested_totals(self, resolver):
        generation = make_generation(
            provided_usage=UsageDetails(input=2, output=3),
            provided_cost=CostDetails(input=Decimal("0.1"), output=Decimal("0.2")),
        )
        resolved = await resolver.resolve(generation, None)

        assert resolved.usage.total == 5
        assert resolved.cost.total == Decimal("0.3")

    @pytest.mark.asyncio
    async def test_tokenizer_failure_leaves_usage_absent(self):
        class FailingTokenizer(Tokenizer):
            async def count_input(self, value, config):
                raise TokenizerError("boom", "openai")

            async def count_output(self, value, config):
                raise TokenizerError("boom", "openai")

        resolver = UsageCostResolver(TokenizerRegistry({"openai": FailingTokenizer()}))
        resolved = await resolver.resolve(make_generation(), make_definition(tokenizer_id="openai"))

        assert resolved.usage.is_empty()
        assert resolved.cost.is_empty()

    @pytest.mark.asyncio
    async def test_unloadable_encoding_leaves_usage_absent(self):
        def unavailable(model):
            raise OSError("cannot download cl100k_base")

        resolver = UsageCostResolver(
            TokenizerRegistry({"openai": OpenAITokenizer(encoding_loader=unavailable)})
        )
        resolved = await resolver.resolve(make_generation(), make_definition(tokenizer_id="openai"))

        assert resolved.usage.is_empty()
        assert resolved.cost.is_empty()
        assert resolved.usage_inferred is False


class TestCostResolution:
    @pytest.mark.asyncio
    async def test_ingested_cost_is_never_replaced(self, resolver):
        generation = make_generation(
            provided_usage=UsageDetails(input=100, output=100),
            provided_cost=CostDetails(total=Decimal("9.99")),
        )
        resolved = await resolver.resolve(generation, make_definition())

        assert resolved.cost.total == Decimal("9.99")
        assert resolved.cost.input is None
        assert resolved.cost.output is None
        assert resolved.cost_inferred is False

    @pytest.mark.asyncio
    async def test_partial_ingested_cost_derives_total(self, resolver):
        generation = make_generation(provided_cost=CostDetails(input=Decimal("0.25")))
        resolved = await resolver.resolve(generation, make_definition(tokenizer_id="openai"))

        assert resolved.cost.input == Decimal("0.25")
        assert resolved.cost.output is None
        assert resolved.cost.total == Decimal("0.25")

    @pytest.mark.asyncio
    async def test_cost_from_ingested_usage(self, resolver):
        generation = make_generation(provided_usage=UsageDetails(input=10, output=20))
        resolved = await resolver.resolve(generation, make_definition())

        assert resolved.cost.input == Decimal("0.10")
        assert resolved.cost.output == Decimal("0.40")
        assert resolved.cost.total == Decimal("0.50")
        assert resolved.cost_inferred is True

    @pytest.mark.asyncio
    async def test_ingested_total_usage_priced_by_total_price(self, resolver):
        definition = make_definition(unit="IMAGES", total_price=Decimal("0.04"))
        generation = make_generation(
            model="dall-e-3", provided_usage=UsageDetails(total=3, unit=UsageUnit.IMAGES)
        )
        resolved = await resolver.resolve(generation, definition)

        assert resolved.usage.total == 3
        assert resolved.cost.total == Decimal("0.12")
        assert resolved.cost_inferred is True

    @pytest.mark.asyncio
    async def test_unpriced_definition_yields_no_cost(self, resolver):
        definition = make_definition(input_price=None, output_price=None, tokenizer_id="openai")
        resolved = await resolver.resolve(make_generation(), definition)

        assert resolved.usage.total == 5
        assert resolved.cost.is_empty()


class TestReasoningModels:
    @pytest.mark.asyncio
    async def test_no_ingested_usage_means_no_cost(self, resolver, word_tokenizer):
        definition = make_definition(
            model_name="o1", match_pattern="^o1$", tokenizer_id="openai", hidden_reasoning_tokens=True
        )
        resolved = await resolver.resolve(make_generation(model="o1"), definition)

        assert resolved.usage.is_empty()
        assert resolved.cost.is_empty()
        assert resolved.cost_inferred is False
        assert word_tokenizer.calls == 0

    @pytest.mark.asyncio
    async def test_ingested_usage_is_priced(self, resolver):
        definition = make_definition(model_name="o1", match_pattern="^o1$", hidden_reasoning_tokens=True)
        generation = make_generation(model="o1", provided_usage=UsageDetails(input=10, output=500))
        resolved = await resolver.resolve(generation, definition)

        assert resolved.usage.total == 510
        assert resolved.cost.total == Decimal("10.10")
