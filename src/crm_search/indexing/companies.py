"""
Company writes with embeddings, similar-company search and recommendations.
"""

from __future__ import annotations

from typing import Any

import structlog

from ..models import CompanyInsights, CompanyRecommendations, SemanticSearchResult
from ..search.semantic import SemanticSearchEngine
from ..storage import RecordNotFoundError, StorageBackend
from .pipeline import BatchResult, EmbeddingPipeline, EmbeddingStats

COMPANY_TABLE = "companies"
COMPANY_TEXT_FIELDS: tuple[str, ...] = ("description", "notes")
COMPANY_STATS_COLUMNS: tuple[str, ...] = ("description_vector", "notes_vector")
RECOMMENDATION_THRESHOLD = 0.6

_COMPANY_DEFAULTS: dict[str, Any] = {
    "industry": "",
    "description": "",
    "notes": "",
    "website": "",
    "size": "",
    "location": "",
    "status": "active",
}

logger = structlog.get_logger(__name__)


class CompanyEmbeddingManager:
    """Create, update and delete companies together with their embeddings."""

    def __init__(
        self,
        storage: StorageBackend,
        pipeline: EmbeddingPipeline,
        search_engine: SemanticSearchEngine,
    ) -> None:
        self.storage = storage
        self.pipeline = pipeline
        self.search_engine = search_engine

    def create_company(self, values: dict[str, Any], *, user_id: str) -> str:
        if not str(values.get("name") or "").strip():
            raise ValueError("Company name is required")
        row = {**_COMPANY_DEFAULTS, **{k: v for k, v in values.items() if v is not None}}
        row["user_id"] = user_id
        company_id = self.storage.insert_record(COMPANY_TABLE, row)
        self.pipeline.embed_fields_settled(
            COMPANY_TABLE, company_id, row, COMPANY_TEXT_FIELDS, user_id
        )
        logger.info("companies.created", company_id=company_id)
        return company_id

    def update_company(self, company_id: str, updates: dict[str, Any], *, user_id: str) -> None:
        self.storage.update_record(
            COMPANY_TABLE, record_id=company_id, user_id=user_id, values=updates
        )
        self.pipeline.embed_fields_settled(
            COMPANY_TABLE, company_id, updates, COMPANY_TEXT_FIELDS, user_id
        )
        logger.info("companies.updated", company_id=company_id, fields=sorted(updates))

    def delete_company(self, company_id: str, *, user_id: str) -> None:
        self.storage.delete_embeddings(COMPANY_TABLE, record_id=company_id, user_id=user_id)
        self.storage.delete_record(COMPANY_TABLE, record_id=company_id, user_id=user_id)
        logger.info("companies.deleted", company_id=company_id)

    def search_similar_companies(
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
            included_types=("companies",),
            max_results=max_results,
            similarity_threshold=threshold,
        )
        return response.results

    def recommendations(
        self,
        company_id: str,
        *,
        user_id: str,
        max_recommendations: int = 5,
    ) -> CompanyRecommendations:
        """Suggest next steps from the companies most similar to *company_id*."""
        company = self.storage.get_record(COMPANY_TABLE, record_id=company_id, user_id=user_id)
        if company is None:
            raise RecordNotFoundError(f"Company not found: {company_id}")

        query = company.get("description") or (
            f"{company.get('industry') or ''} company {company.get('name') or ''}".strip()
        )
        similar = [
            result
            for result in self.search_similar_companies(
                query,
                user_id=user_id,
                threshold=RECOMMENDATION_THRESHOLD,
                max_results=max_recommendations,
            )
            if result.id != company_id
        ]

        industries: list[str] = []
        for result in similar:
            if result.industry and result.industry not in industries:
                industries.append(result.industry)

        recommendations: list[str] = []
        if similar:
            recommendations.append(f"Found {len(similar)} similar companies in your CRM")
            if industries:
                recommendations.append(f"Common industries: {', '.join(industries[:3])}")
            recommendations.append("Consider cross-selling opportunities with similar companies")
            recommendations.append("Analyze successful strategies used with similar companies")
        else:
            recommendations.append(
                "No similar companies found. This company has a unique profile in your CRM"
            )
            recommendations.append("Consider this as a new market opportunity")

        opportunities: list[str] = []
        if industries:
            opportunities.append(f"Expand in {industries[0]} industry")
            opportunities.append("Develop industry-specific solutions")
        opportunities.append("Identify partnership opportunities")

        if similar:
            competitor_analysis = (
                f"{len(similar)} similar companies identified for competitive analysis"
            )
        else:
            competitor_analysis = "No direct competitors found in CRM"

        logger.info(
            "companies.recommendations",
            company_id=company_id,
            similar=len(similar),
            industries=len(industries),
        )
        return CompanyRecommendations(
            similar_companies=similar,
            recommendations=recommendations,
            insights=CompanyInsights(
                common_industries=industries,
                market_opportunities=opportunities,
                competitor_analysis=competitor_analysis,
            ),
        )

    def batch_process(self, user_id: str, *, batch_size: int = 10) -> BatchResult:
        """Backfill description and notes embeddings."""
        result = BatchResult()
        for field_name in COMPANY_TEXT_FIELDS:
            result = result + self.pipeline.batch_embed_field(
                COMPANY_TABLE, field_name, user_id, batch_size=batch_size
            )
        logger.info("companies.batch_processed", processed=result.processed, errors=result.errors)
        return result

    def stats(self, user_id: str) -> EmbeddingStats:
        return self.pipeline.embedding_stats(COMPANY_TABLE, user_id, COMPANY_STATS_COLUMNS)
