"""
Wiring of storage, models, search and indexing components.
"""

from __future__ import annotations

from .config import DEFAULT_SIMILARITY_FLOOR, resolve_similarity_floor
from .embeddings import EmbeddingProvider
from .indexing import (
    CompanyEmbeddingManager,
    ContactEmbeddingManager,
    DealEmbeddingManager,
    EmbeddingPipeline,
    LeadEmbeddingManager,
)
from .llm import LanguageModel, build_language_model
from .search import LeadQueryEngine, SemanticSearchEngine
from .storage import StorageBackend, build_storage


class Services:
    """The components one process works with, built around a single storage."""

    def __init__(
        self,
        storage: StorageBackend,
        embedding_provider: EmbeddingProvider,
        language_model: LanguageModel | None = None,
        *,
        threshold_override: float | None = DEFAULT_SIMILARITY_FLOOR,
        track_history: bool = False,
        batch_pause: float = 1.0,
    ) -> None:
        self.storage = storage
        self.embedding_provider = embedding_provider
        self.language_model = language_model
        self.search_engine = SemanticSearchEngine(
            storage,
            embedding_provider,
            threshold_override=threshold_override,
            track_history=track_history,
        )
        self.lead_query = LeadQueryEngine(storage, self.search_engine, language_model)
        self.pipeline = EmbeddingPipeline(storage, embedding_provider, batch_pause=batch_pause)
        self.leads = LeadEmbeddingManager(storage, self.pipeline, self.search_engine)
        self.contacts = ContactEmbeddingManager(storage, self.pipeline, self.search_engine)
        self.deals = DealEmbeddingManager(storage, self.pipeline, self.search_engine)
        self.companies = CompanyEmbeddingManager(storage, self.pipeline, self.search_engine)


def build_services(
    *,
    backend: str | None = None,
    db_path: str | None = None,
    track_history: bool = True,
) -> Services:
    """Build services from the environment. Raises ValueError without an API key."""
    embedding_provider = EmbeddingProvider()
    return Services(
        build_storage(backend=backend, db_path=db_path),
        embedding_provider,
        build_language_model(),
        threshold_override=resolve_similarity_floor(),
        track_history=track_history,
    )
