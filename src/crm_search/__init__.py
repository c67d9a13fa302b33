"""
crm-search - semantic search and embedding maintenance for CRM records.

This package embeds leads, contacts, deals and companies, searches them
by meaning in parallel, and answers natural-language questions about
leads using Google Gemini on top of the retrieved records.

Example usage:
    >>> from crm_search import build_services
    >>> services = build_services()
    >>> response = services.search_engine.search(query="fintech buyers", user_id="u-1")
    >>> answer = services.lead_query.query(query="who is evaluating security?", user_id="u-1")
"""

from .embeddings import EmbeddingProvider
from .indexing import (
    BatchResult,
    CompanyEmbeddingManager,
    ContactEmbeddingManager,
    DealEmbeddingManager,
    EmbeddingPipeline,
    EmbeddingStats,
    LeadEmbeddingManager,
)
from .llm import LanguageModel
from .models import (
    CompanyRecommendations,
    ContactRecommendations,
    DealRecommendations,
    LeadQueryResponse,
    SemanticSearchResponse,
    SemanticSearchResult,
    TopLead,
)
from .search import (
    FilterParseError,
    LeadQueryEngine,
    SemanticSearchEngine,
    format_results_for_context,
    similarity_digest,
)
from .services import Services, build_services
from .storage import DuckDBStorage, RecordNotFoundError, StorageBackend, build_storage

__all__ = [
    # Models and providers
    "EmbeddingProvider",
    "LanguageModel",
    # Search
    "SemanticSearchEngine",
    "LeadQueryEngine",
    "FilterParseError",
    "format_results_for_context",
    "similarity_digest",
    # Indexing
    "EmbeddingPipeline",
    "LeadEmbeddingManager",
    "CompanyEmbeddingManager",
    "ContactEmbeddingManager",
    "DealEmbeddingManager",
    "BatchResult",
    "EmbeddingStats",
    # Storage
    "StorageBackend",
    "DuckDBStorage",
    "RecordNotFoundError",
    "build_storage",
    # Wiring
    "Services",
    "build_services",
    # Response models
    "SemanticSearchResult",
    "SemanticSearchResponse",
    "TopLead",
    "LeadQueryResponse",
    "CompanyRecommendations",
    "ContactRecommendations",
    "DealRecommendations",
]
