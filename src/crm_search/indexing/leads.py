"""
Lead writes that keep lead embeddings current.
"""

from __future__ import annotations

from typing import Any

import structlog

from ..models import SemanticSearchResult
from ..search.semantic import SemanticSearchEngine
from ..storage import StorageBackend
from .pipeline import BatchResult, EmbeddingPipeline, EmbeddingStats

LEAD_TABLE = "leads"
LEAD_TEXT_FIELDS: tuple[str, ...] = ("notes",)
LEAD_STATS_COLUMNS: tuple[str, ...] = ("embedding", "notes_vector")

_LEAD_DEFAULTS: dict[str, Any] = {
    "company": "",
    "email": "",
    "phone": "",
    "status": "new",
    "source": "manual",
    "notes": "",
    "score": 50,
}

logger = structlog.get_logger(__name__)


class LeadEmbeddingManager:
    """Create, update and delete leads together with their embeddings."""

    def __init__(
        self,
        storage: StorageBackend,
        pipeline: EmbeddingPipeline,
        search_engine: SemanticSearchEngine,
    ) -> None:
        self.storage = storage
        self.pipeline = pipeline
        self.search_engine = search_engine

    def create_lead(self, values: dict[str, Any], *, user_id: str) -> str:
        if not str(values.get("name") or "").strip():
            raise ValueError("Lead name is required")
        row = {**_LEAD_DEFAULTS, **{k: v for k, v in values.items() if v is not None}}
        row["user_id"] = user_id
        lead_id = self.storage.insert_record(LEAD_TABLE, row)

        self.pipeline.embed_fields_settled(LEAD_TABLE, lead_id, row, LEAD_TEXT_FIELDS, user_id)
        self._refresh_composite(lead_id, user_id)
        logger.info("leads.created", lead_id=lead_id)
        return lead_id

    def update_lead(self, lead_id: str, updates: dict[str, Any], *, user_id: str) -> None:
        self.storage.update_record(LEAD_TABLE, record_id=lead_id, user_id=user_id, values=updates)
        self.pipeline.embed_fields_settled(
            LEAD_TABLE, lead_id, updates, LEAD_TEXT_FIELDS, user_id
        )
        self._refresh_composite(lead_id, user_id)
        logger.info("leads.updated", lead_id=lead_id, fields=sorted(updates))

    def delete_lead(self, lead_id: str, *, user_id: str) -> None:
        self.storage.delete_embeddings(LEAD_TABLE, record_id=lead_id, user_id=user_id)
        self.storage.delete_record(LEAD_TABLE, record_id=lead_id, user_id=user_id)
        logger.info("leads.deleted", lead_id=lead_id)

    def search_similar_leads(
        self,
        query: str,
        *,
        user_id: str,
        threshold: float = 0.7,
        max_results: int = 10,
    ) -> list[SemanticSearchResult]:
        response = self.search_engine.search(
            query=query,
            user_id=user_id,
            included_types=("leads",),
            max_results=max_results,
            similarity_threshold=threshold,
        )
        return response.results

    def batch_process(self, user_id: str) -> BatchResult:
        """Backfill notes embeddings, then composite embeddings."""
        notes = self.pipeline.batch_embed_field(LEAD_TABLE, "notes", user_id)
        composite = self.pipeline.batch_embed_composite("lead", user_id)
        result = notes + composite
        logger.info("leads.batch_processed", processed=result.processed, errors=result.errors)
        return result

    def stats(self, user_id: str) -> EmbeddingStats:
        return self.pipeline.embedding_stats(LEAD_TABLE, user_id, LEAD_STATS_COLUMNS)

    def _refresh_composite(self, lead_id: str, user_id: str) -> None:
        try:
            self.pipeline.embed_composite("lead", lead_id, user_id)
        except Exception:
            logger.error("leads.composite_failed", lead_id=lead_id, exc_info=True)
