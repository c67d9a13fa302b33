"""
Contact writes that keep persona, notes and composite embeddings current.
"""

from __future__ import annotations

from typing import Any

import structlog

from ..models import ContactInsights, ContactRecommendations, SemanticSearchResult
from ..search.semantic import SemanticSearchEngine
from ..storage import RecordNotFoundError, StorageBackend
from .pipeline import BatchResult, EmbeddingPipeline, EmbeddingStats

CONTACT_TABLE = "contacts"
CONTACT_TEXT_FIELDS: tuple[str, ...] = ("persona", "notes")
CONTACT_STATS_COLUMNS: tuple[str, ...] = ("persona_vector", "notes_vector", "embedding")
RECOMMENDATION_THRESHOLD = 0.6

_CONTACT_DEFAULTS: dict[str, Any] = {
    "company": "",
    "title": "",
    "persona": "",
    "notes": "",
    "email": "",
    "phone": "",
    "status": "active",
}

logger = structlog.get_logger(__name__)


class ContactEmbeddingManager:
    """Create, update and delete contacts together with their embeddings."""

    def __init__(
        self,
        storage: StorageBackend,
        pipeline: EmbeddingPipeline,
        search_engine: SemanticSearchEngine,
    ) -> None:
        self.storage = storage
        self.pipeline = pipeline
        self.search_engine = search_engine

    def create_contact(self, values: dict[str, Any], *, user_id: str) -> str:
        if not str(values.get("name") or "").strip():
            raise ValueError("Contact name is required")
        row = {**_CONTACT_DEFAULTS, **{k: v for k, v in values.items() if v is not None}}
        row["user_id"] = user_id
        contact_id = self.storage.insert_record(CONTACT_TABLE, row)

        self.pipeline.embed_fields_settled(
            CONTACT_TABLE, contact_id, row, CONTACT_TEXT_FIELDS, user_id
        )
        self._refresh_composite(contact_id, user_id)
        logger.info("contacts.created", contact_id=contact_id)
        return contact_id

    def update_contact(self, contact_id: str, updates: dict[str, Any], *, user_id: str) -> None:
        self.storage.update_record(
            CONTACT_TABLE, record_id=contact_id, user_id=user_id, values=updates
        )
        self.pipeline.embed_fields_settled(
            CONTACT_TABLE, contact_id, updates, CONTACT_TEXT_FIELDS, user_id
        )
        self._refresh_composite(contact_id, user_id)
        logger.info("contacts.updated", contact_id=contact_id, fields=sorted(updates))

    def delete_contact(self, contact_id: str, *, user_id: str) -> None:
        self.storage.delete_embeddings(CONTACT_TABLE, record_id=contact_id, user_id=user_id)
        self.storage.delete_record(CONTACT_TABLE, record_id=contact_id, user_id=user_id)
        logger.info("contacts.deleted", contact_id=contact_id)

    def search_similar_contacts(
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
            included_types=("contacts",),
            max_results=max_results,
            similarity_threshold=threshold,
        )
        return response.results

    def recommendations(
        self,
        contact_id: str,
        *,
        user_id: str,
        max_recommendations: int = 5,
    ) -> ContactRecommendations:
        """Suggest outreach based on the contacts most like *contact_id*.

        The persona is the search text; without one, ``"<title> at <company>"``
        stands in for it.
        """
        contact = self.storage.get_record(CONTACT_TABLE, record_id=contact_id, user_id=user_id)
        if contact is None:
            raise RecordNotFoundError(f"Contact not found: {contact_id}")

        query = contact.get("persona") or (
            f"{contact.get('title') or ''} at {contact.get('company') or ''}"
        )
        similar = [
            result
            for result in self.search_similar_contacts(
                query,
                user_id=user_id,
                threshold=RECOMMENDATION_THRESHOLD,
                max_results=max_recommendations,
            )
            if result.id != contact_id
        ]

        titles = _distinct(result.title for result in similar)
        companies = _distinct(result.company for result in similar)
        recommendations: list[str] = []
        if similar:
            recommendations.append(f"Found {len(similar)} similar contacts in your CRM")
            if titles:
                recommendations.append(
                    f"Common titles among similar contacts: {', '.join(titles[:3])}"
                )
            if companies:
                recommendations.append(f"Similar contacts work at: {', '.join(companies[:3])}")
            recommendations.append(
                "Consider reaching out to similar contacts for referrals or insights"
            )
        else:
            recommendations.append(
                "No similar contacts found. This contact has a unique profile in your CRM"
            )

        logger.info("contacts.recommendations", contact_id=contact_id, similar=len(similar))
        return ContactRecommendations(
            similar_contacts=similar,
            recommendations=recommendations,
            insights=ContactInsights(
                common_titles=titles,
                common_companies=companies,
                average_engagement="Active" if similar else "Unknown",
            ),
        )

    def batch_process(self, user_id: str, *, batch_size: int = 10) -> BatchResult:
        """Backfill persona and notes embeddings, then composite embeddings."""
        result = BatchResult()
        for field_name in CONTACT_TEXT_FIELDS:
            result = result + self.pipeline.batch_embed_field(
                CONTACT_TABLE, field_name, user_id, batch_size=batch_size
            )
        result = result + self.pipeline.batch_embed_composite("contact", user_id)
        logger.info("contacts.batch_processed", processed=result.processed, errors=result.errors)
        return result

    def stats(self, user_id: str) -> EmbeddingStats:
        """Coverage is measured over persona embeddings."""
        return self.pipeline.embedding_stats(CONTACT_TABLE, user_id, CONTACT_STATS_COLUMNS)

    def _refresh_composite(self, contact_id: str, user_id: str) -> None:
        try:
            self.pipeline.embed_composite("contact", contact_id, user_id)
        except Exception:
            logger.error("contacts.composite_failed", contact_id=contact_id, exc_info=True)


def _distinct(values) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen
