"""
Deal writes with field and composite embeddings, similar deals and
value/stage recommendations.
"""

from __future__ import annotations

from collections import Counter
from typing import Any

import structlog

from ..models import DealRecommendations, SemanticSearchResult
from ..search.semantic import SemanticSearchEngine
from ..storage import RecordNotFoundError, StorageBackend
from .pipeline import BatchResult, EmbeddingPipeline, EmbeddingStats

DEAL_TABLE = "deals"
DEAL_TEXT_FIELDS: tuple[str, ...] = ("title", "description", "next_step")
DEAL_STATS_COLUMNS: tuple[str, ...] = (
    "embedding",
    "title_vector",
    "description_vector",
    "next_step_vector",
)
RECOMMENDATION_THRESHOLD = 0.6
# A deal worth less than this share of the similar-deal average is flagged.
LOW_VALUE_RATIO = 0.8

_DEAL_DEFAULTS: dict[str, Any] = {
    "company": "",
    "next_step": "",
    "description": "",
    "stage": "Discovery",
    "value": 0,
    "close_probability": 50,
    "outcome": "in_progress",
}

logger = structlog.get_logger(__name__)


class DealEmbeddingManager:
    """Create, update and delete deals together with their embeddings."""

    def __init__(
        self,
        storage: StorageBackend,
        pipeline: EmbeddingPipeline,
        search_engine: SemanticSearchEngine,
    ) -> None:
        self.storage = storage
        self.pipeline = pipeline
        self.search_engine = search_engine

    def create_deal(self, values: dict[str, Any], *, user_id: str) -> str:
        if not str(values.get("title") or "").strip():
            raise ValueError("Deal title is required")
        row = {**_DEAL_DEFAULTS, **{k: v for k, v in values.items() if v is not None}}
        row["user_id"] = user_id
        deal_id = self.storage.insert_record(DEAL_TABLE, row)

        self.pipeline.embed_fields_settled(DEAL_TABLE, deal_id, row, DEAL_TEXT_FIELDS, user_id)
        self._refresh_composite(deal_id, user_id)
        logger.info("deals.created", deal_id=deal_id)
        return deal_id

    def update_deal(self, deal_id: str, updates: dict[str, Any], *, user_id: str) -> None:
        self.storage.update_record(DEAL_TABLE, record_id=deal_id, user_id=user_id, values=updates)
        self.pipeline.embed_fields_settled(DEAL_TABLE, deal_id, updates, DEAL_TEXT_FIELDS, user_id)
        self._refresh_composite(deal_id, user_id)
        logger.info("deals.updated", deal_id=deal_id, fields=sorted(updates))

    def delete_deal(self, deal_id: str, *, user_id: str) -> None:
        self.storage.delete_embeddings(DEAL_TABLE, record_id=deal_id, user_id=user_id)
        self.storage.delete_record(DEAL_TABLE, record_id=deal_id, user_id=user_id)
        logger.info("deals.deleted", deal_id=deal_id)

    def search_similar_deals(
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
            included_types=("deals",),
            max_results=max_results,
            similarity_threshold=threshold,
        )
        return response.results

    def recommendations(
        self,
        deal_id: str,
        *,
        user_id: str,
        max_recommendations: int = 5,
    ) -> DealRecommendations:
        deal = self.storage.get_record(DEAL_TABLE, record_id=deal_id, user_id=user_id)
        if deal is None:
            raise RecordNotFoundError(f"Deal not found: {deal_id}")

        query = f"{deal.get('title') or ''} {deal.get('stage') or ''}".strip()
        similar = [
            result
            for result in self.search_similar_deals(
                query,
                user_id=user_id,
                threshold=RECOMMENDATION_THRESHOLD,
                max_results=max_recommendations,
            )
            if result.id != deal_id
        ]

        recommendations: list[str] = []
        if similar:
            average = sum(result.value or 0.0 for result in similar) / len(similar)
            if float(deal.get("value") or 0) < average * LOW_VALUE_RATIO:
                recommendations.append(
                    f"Consider increasing deal value. Similar deals average ${average:,.0f}"
                )
            stages = Counter(result.stage for result in similar if result.stage)
            if stages:
                common_stage = stages.most_common(1)[0][0]
                if common_stage != deal.get("stage"):
                    recommendations.append(
                        f'Similar deals often progress to "{common_stage}" stage'
                    )
            recommendations.append(f"Found {len(similar)} similar deals for pattern analysis")
        else:
            recommendations.append(
                "No similar deals found. This appears to be a unique opportunity."
            )

        logger.info("deals.recommendations", deal_id=deal_id, similar=len(similar))
        return DealRecommendations(similar_deals=similar, recommendations=recommendations)

    def batch_process(self, user_id: str, *, batch_size: int = 10) -> BatchResult:
        """Backfill title, description and next-step embeddings, then composites."""
        result = BatchResult()
        for field_name in DEAL_TEXT_FIELDS:
            result = result + self.pipeline.batch_embed_field(
                DEAL_TABLE, field_name, user_id, batch_size=batch_size
            )
        result = result + self.pipeline.batch_embed_composite("deal", user_id)
        logger.info("deals.batch_processed", processed=result.processed, errors=result.errors)
        return result

    def stats(self, user_id: str) -> EmbeddingStats:
        return self.pipeline.embedding_stats(DEAL_TABLE, user_id, DEAL_STATS_COLUMNS)

    def _refresh_composite(self, deal_id: str, user_id: str) -> None:
        try:
            self.pipeline.embed_composite("deal", deal_id, user_id)
        except Exception:
            logger.error("deals.composite_failed", deal_id=deal_id, exc_info=True)
