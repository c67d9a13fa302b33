"""Shared fixtures: fake GenAI clients and a seeded DuckDB CRM."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from crm_search.embeddings import EmbeddingProvider
from crm_search.indexing import EmbeddingPipeline
from crm_search.llm import LanguageModel
from crm_search.search import SemanticSearchEngine
from crm_search.services import Services
from crm_search.storage import DuckDBStorage

# Each dimension counts occurrences of one word, plus a small baseline so
# every vector has a defined cosine similarity with every other.
VOCAB = ["fintech", "healthcare", "retail", "logistics", "acme", "cloud", "security", "renewal"]


def vocab_vector(text: str) -> list[float]:
    lowered = text.lower()
    return [lowered.count(word) + 0.05 for word in VOCAB]


@dataclass
class _FakeEmbedding:
    values: list[float]


@dataclass
class _FakeEmbedResult:
    embeddings: list[_FakeEmbedding]


class _FakeEmbedModels:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.fail = False

    def embed_content(self, *, model: str, contents: list[str], config: dict) -> _FakeEmbedResult:
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.fail:
            raise RuntimeError("embedding service unavailable")
        return _FakeEmbedResult(
            embeddings=[_FakeEmbedding(values=vocab_vector(text)) for text in contents]
        )


class FakeEmbedClient:
    def __init__(self) -> None:
        self.models = _FakeEmbedModels()


@dataclass
class _FakeGenerateResponse:
    text: str | None


class _FakeGenerateModels:
    def __init__(self, answer: str | None) -> None:
        self.answer = answer
        self.calls: list[dict[str, Any]] = []
        self.fail = False

    def generate_content(self, *, model: str, contents: str, config: dict) -> _FakeGenerateResponse:
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.fail:
            raise RuntimeError("model overloaded")
        return _FakeGenerateResponse(text=self.answer)


class FakeLLMClient:
    def __init__(self, answer: str | None = "Alice Chen is the strongest fintech lead.") -> None:
        self.models = _FakeGenerateModels(answer)


@pytest.fixture()
def fake_embed_client() -> FakeEmbedClient:
    return FakeEmbedClient()


@pytest.fixture()
def embedder(fake_embed_client: FakeEmbedClient) -> EmbeddingProvider:
    return EmbeddingProvider(client=fake_embed_client, model="fake-embedding", dim=8, batch_size=2)


@pytest.fixture()
def fake_llm_client() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture()
def language_model(fake_llm_client: FakeLLMClient) -> LanguageModel:
    return LanguageModel(client=fake_llm_client, model="fake-llm")


@pytest.fixture()
def storage(tmp_path: Path):
    store = DuckDBStorage(str(tmp_path / "crm.duckdb"))
    yield store
    store.close()


def _ts(day: int) -> datetime:
    return datetime(2024, 3, day, 9, 0, 0)


@pytest.fixture()
def seeded_storage(storage: DuckDBStorage) -> DuckDBStorage:
    """Three leads, one contact, one deal, activities and companies for user-1."""
    storage.insert_record(
        "leads",
        {
            "id": "lead-alice",
            "user_id": "user-1",
            "name": "Alice Chen",
            "company": "Acme Fintech",
            "email": "alice@acme.io",
            "phone": "555-0101",
            "status": "new",
            "source": "website",
            "score": 80,
            "notes": "fintech buyer evaluating cloud security",
            "created_at": _ts(1),
        },
    )
    storage.insert_record(
        "leads",
        {
            "id": "lead-bob",
            "user_id": "user-1",
            "name": "Bob Smith",
            "company": "MedCore Health",
            "email": "bob@medcore.org",
            "phone": "555-0102",
            "status": "contacted",
            "source": "referral",
            "score": 40,
            "notes": "healthcare provider",
            "created_at": _ts(2),
        },
    )
    storage.insert_record(
        "leads",
        {
            "id": "lead-carla",
            "user_id": "user-1",
            "name": "Carla Diaz",
            "company": "ShopRight",
            "email": "carla@shopright.com",
            "status": "qualified",
            "source": "event",
            "score": 65,
            "notes": "retail chain logistics",
            "created_at": _ts(3),
        },
    )
    storage.insert_record(
        "leads",
        {
            "id": "lead-zed",
            "user_id": "user-2",
            "name": "Zed Acme",
            "company": "Acme Fintech",
            "notes": "fintech",
            "created_at": _ts(4),
        },
    )
    storage.insert_record(
        "contacts",
        {
            "id": "contact-dana",
            "user_id": "user-1",
            "name": "Dana Park",
            "company": "Acme Fintech",
            "email": "dana@acme.io",
            "title": "CTO",
            "status": "active",
            "persona": "security-focused buyer",
            "notes": "cloud security renewal",
            "created_at": _ts(1),
        },
    )
    storage.insert_record(
        "deals",
        {
            "id": "deal-acme",
            "user_id": "user-1",
            "title": "Acme cloud renewal",
            "company": "Acme Fintech",
            "value": 50000.0,
            "stage": "proposal",
            "priority": "High",
            "close_probability": 60,
            "contact_id": "contact-dana",
            "created_at": _ts(2),
        },
    )
    storage.insert_record(
        "activities",
        {
            "id": "act-call",
            "user_id": "user-1",
            "type": "call",
            "subject": "Intro call",
            "notes": "discussed security",
            "lead_id": "lead-alice",
            "created_at": _ts(5),
        },
    )
    storage.insert_record(
        "activities",
        {
            "id": "act-quote",
            "user_id": "user-1",
            "type": "email",
            "description": "Sent renewal quote",
            "outcome": "positive",
            "deal_id": "deal-acme",
            "contact_id": "contact-dana",
            "created_at": _ts(6),
        },
    )
    for company_id, name, industry, description, day in (
        ("company-acme", "Acme Fintech", "Fintech", "fintech cloud platform", 1),
        ("company-nova", "NovaPay", "Fintech", "fintech payments cloud", 2),
        ("company-medcore", "MedCore Health", "Healthcare", "healthcare provider network", 3),
    ):
        storage.insert_record(
            "companies",
            {
                "id": company_id,
                "user_id": "user-1",
                "name": name,
                "industry": industry,
                "description": description,
                "website": f"{name.split()[0].lower()}.example",
                "status": "active",
                "created_at": _ts(day),
            },
        )
    return storage


@pytest.fixture()
def pipeline(seeded_storage: DuckDBStorage, embedder: EmbeddingProvider) -> EmbeddingPipeline:
    return EmbeddingPipeline(seeded_storage, embedder, batch_pause=0)


@pytest.fixture()
def indexed_storage(seeded_storage: DuckDBStorage, pipeline: EmbeddingPipeline) -> DuckDBStorage:
    """Seeded storage with composite and company description embeddings."""
    for entity_type in ("lead", "contact", "deal"):
        pipeline.batch_embed_composite(entity_type, "user-1")
    pipeline.batch_embed_composite("lead", "user-2")
    pipeline.batch_embed_field("companies", "description", "user-1")
    return seeded_storage


@pytest.fixture()
def search_engine(
    indexed_storage: DuckDBStorage, embedder: EmbeddingProvider
) -> SemanticSearchEngine:
    return SemanticSearchEngine(indexed_storage, embedder)


@pytest.fixture()
def services(
    indexed_storage: DuckDBStorage,
    embedder: EmbeddingProvider,
    language_model: LanguageModel,
) -> Services:
    return Services(indexed_storage, embedder, language_model, batch_pause=0)


@pytest.fixture()
def vector_for():
    """The fake embedding of a text, for building query vectors by hand."""
    return vocab_vector
