"""
Vector-based semantic search across CRM entity tables.

Embeds a query once and runs one similarity search per entity type in
parallel, then merges the candidates into a single ranked list.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable

import structlog

from ..config import DEFAULT_SIMILARITY_FLOOR
from ..embeddings import EmbeddingProvider
from ..models import SemanticSearchResponse, SemanticSearchResult
from ..storage import StorageBackend
from ..storage.base import validate_entity_type
from .ranker import rank_results

DEFAULT_INCLUDED_TYPES: tuple[str, ...] = ("deals", "contacts", "leads")
DEFAULT_USER_ID = "default-user-id"

logger = structlog.get_logger(__name__)


class SemanticSearchEngine:
    """Embed a query and search stored entity embeddings."""

    def __init__(
        self,
        storage: StorageBackend,
        embedding_provider: EmbeddingProvider,
        *,
        threshold_override: float | None = DEFAULT_SIMILARITY_FLOOR,
        max_workers: int = 4,
        track_history: bool = False,
    ) -> None:
        self.storage = storage
        self.embedding_provider = embedding_provider
        self.threshold_override = threshold_override
        self.max_workers = max_workers
        self.track_history = track_history

    def effective_threshold(self, requested: float) -> float:
        """Threshold actually sent to the similarity search."""
        if self.threshold_override is None:
            return requested
        return self.threshold_override

    def search(
        self,
        *,
        query: str,
        user_id: str | None,
        included_types: Iterable[str] | None = None,
        max_results: int = 5,
        similarity_threshold: float = 0.5,
    ) -> SemanticSearchResponse:
        """Return the best *max_results* matches across the included entity types."""
        started = time.perf_counter()
        types = tuple(included_types) if included_types is not None else DEFAULT_INCLUDED_TYPES
        for entity_type in types:
            validate_entity_type(entity_type)
        effective_user_id = user_id or DEFAULT_USER_ID
        threshold = self.effective_threshold(similarity_threshold)
        normalized_limit = max(max_results, 1)

        logger.info(
            "semantic_search.started",
            included_types=list(types),
            max_results=normalized_limit,
            requested_threshold=similarity_threshold,
            effective_threshold=threshold,
            user_id_provided=user_id is not None,
        )

        query_embedding = self.embedding_provider.embed_query(query)
        search_id = self._record_history(
            user_id=effective_user_id,
            query=query,
            query_embedding=query_embedding,
            search_type=",".join(types),
            threshold=threshold,
        )

        per_type = self._search_parallel(
            types=types,
            query_embedding=query_embedding,
            user_id=effective_user_id,
            limit=normalized_limit,
            threshold=threshold,
        )
        combined = [result for entity_type in types for result in per_type[entity_type]]
        ranked = rank_results(combined, limit=normalized_limit)

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        if ranked:
            logger.info(
                "semantic_search.completed",
                total_results=len(ranked),
                top_type=ranked[0].type,
                top_similarity=round(ranked[0].similarity, 4),
                elapsed_ms=elapsed_ms,
            )
        else:
            logger.warning("semantic_search.no_matches", elapsed_ms=elapsed_ms)

        if search_id is not None:
            self._complete_history(search_id, ranked)

        return SemanticSearchResponse(
            results=ranked,
            query=query,
            total_results=len(ranked),
            search_time_ms=elapsed_ms,
        )

    def search_entity(
        self,
        entity_type: str,
        *,
        query_embedding: list[float],
        user_id: str,
        limit: int,
        threshold: float,
    ) -> list[SemanticSearchResult]:
        """Similarity search over one entity table. Failures yield no results."""
        started = time.perf_counter()
        try:
            rows = self.storage.search_similar(
                entity_type,
                query_embedding=query_embedding,
                user_id=user_id,
                similarity_threshold=threshold,
                match_count=limit,
            )
        except Exception:
            logger.error("semantic_search.entity_failed", entity_type=entity_type, exc_info=True)
            return []

        logger.debug(
            "semantic_search.entity_completed",
            entity_type=entity_type,
            matches=len(rows),
            elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return [SemanticSearchResult.from_row(entity_type, row) for row in rows]

    def _search_parallel(
        self,
        *,
        types: tuple[str, ...],
        query_embedding: list[float],
        user_id: str,
        limit: int,
        threshold: float,
    ) -> dict[str, list[SemanticSearchResult]]:
        if not types:
            return {}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(types))) as executor:
            futures = {
                entity_type: executor.submit(
                    self.search_entity,
                    entity_type,
                    query_embedding=query_embedding,
                    user_id=user_id,
                    limit=limit,
                    threshold=threshold,
                )
                for entity_type in types
            }
            return {entity_type: future.result() for entity_type, future in futures.items()}

    def _record_history(
        self,
        *,
        user_id: str,
        query: str,
        query_embedding: list[float],
        search_type: str,
        threshold: float,
    ) -> str | None:
        if not self.track_history:
            return None
        try:
            return self.storage.record_search(
                user_id=user_id,
                query_text=query,
                query_embedding=query_embedding,
                search_type=search_type,
                similarity_threshold=threshold,
            )
        except Exception:
            logger.warning("semantic_search.history_record_failed", exc_info=True)
            return None

    def _complete_history(self, search_id: str, results: list[SemanticSearchResult]) -> None:
        try:
            self.storage.complete_search(
                search_id=search_id,
                results_count=len(results),
                results=[result.model_dump() for result in results],
            )
        except Exception:
            logger.warning(
                "semantic_search.history_update_failed", search_id=search_id, exc_info=True
            )
