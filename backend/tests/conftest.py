from datetime import datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.main import create_app
from app.models.model_definition import ModelDefinition, TokenizerConfig
from app.pricing.matcher import ModelMatcher
from app.pricing.resolver import UsageCostResolver
from app.pricing.tokenizers import Tokenizer, TokenizerRegistry
from app.storage.generation_store import InMemoryGenerationStore
from app.storage.model_store import InMemoryModelDefinitionStore
from app.worker.processor import IngestionProcessor

API_KEY = "sk-test"
PROJECT_ID = "proj-a"


class WordTokenizer(Tokenizer):
    """Counts whitespace-separated words; stands in for a real tokenizer."""

    tokenizer_id = "openai"

    def __init__(self):
        self.calls = 0

    async def count_input(self, value, config):
        self.calls += 1
        return None if value is None else len(str(value).split())

    async def count_output(self, value, config):
        self.calls += 1
        return None if value is None else len(str(value).split())


class FakeQueue:
    def __init__(self):
        self.jobs = []

    async def enqueue(self, project_id, event):
        self.jobs.append((project_id, event))

    async def health_check(self):
        return True

    async def stats(self):
        return {"pending": len(self.jobs), "dead": 0}


def make_definition(**overrides) -> ModelDefinition:
    data = {
        "id": "def-1",
        "project_id": None,
        "model_name": "gpt-4o",
        "match_pattern": "(?i)^gpt-4o$",
        "unit": "TOKENS",
        "input_price": Decimal("0.01"),
        "output_price": Decimal("0.02"),
    }
    data.update(overrides)
    return ModelDefinition(**data)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def word_tokenizer():
    return WordTokenizer()


@pytest.fixture
def resolver(word_tokenizer):
    return UsageCostResolver(TokenizerRegistry({"openai": word_tokenizer}))


@pytest.fixture
def tokenized_definition():
    return make_definition(
        id="sys-gpt-4o",
        tokenizer_id="openai",
        tokenizer_config=TokenizerConfig(tokenizer_model="gpt-4o"),
    )


@pytest.fixture
def model_store(tokenized_definition):
    return InMemoryModelDefinitionStore([tokenized_definition])


@pytest.fixture
def generation_store():
    return InMemoryGenerationStore()


@pytest.fixture
def processor(model_store, generation_store, resolver):
    return IngestionProcessor(model_store, generation_store, ModelMatcher(), resolver)


@pytest.fixture
def fake_queue():
    return FakeQueue()


@pytest.fixture
def settings():
    return Settings(app_env="test", api_keys=f"{API_KEY}:{PROJECT_ID},sk-other:proj-b")


@pytest.fixture
def client(settings, model_store, generation_store, fake_queue):
    app = create_app(settings)
    app.state.model_store = model_store
    app.state.generation_store = generation_store
    app.state.queue = fake_queue
    return TestClient(app)


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {API_KEY}"}
