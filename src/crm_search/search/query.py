"""
Smart lead query: hybrid semantic and keyword retrieval with an LLM answer.
"""

from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import structlog

from ..llm import LanguageModel
from ..models import LeadQueryResponse, SemanticSearchResponse, SemanticSearchResult, TopLead
from ..storage import StorageBackend
from .filters import Filter, apply_filters, parse_filters
from .ranker import merge_keyword_results
from .report import format_results_for_context
from .semantic import DEFAULT_USER_ID, SemanticSearchEngine

HYBRID_KEYWORD_FIELDS: tuple[str, ...] = ("name",)
HYBRID_KEYWORD_LIMIT = 5
FALLBACK_KEYWORD_FIELDS: tuple[str, ...] = ("name", "company", "email")
FALLBACK_KEYWORD_LIMIT = 10

NO_AI_ANSWER = (
    "I found these leads matching your query, but I'm unable to provide a "
    "detailed analysis without AI configuration."
)
NO_MATCH_ANSWER = (
    "I couldn't find any leads matching your query. Please try with different "
    "keywords or check if lead data exists in your CRM."
)
ERROR_ANSWER = (
    "I encountered an error while searching for leads. Please try again with a "
    "different query or check your database connection."
)

SYSTEM_PROMPT = (
    "You are an expert lead management AI assistant that provides clear, accurate, "
    "data-driven analysis of leads based on search results."
)

HYBRID_PROMPT = """You are an expert lead analysis assistant. Answer the following query about leads using the search results provided:

USER QUERY: "{query}"

SEARCH RESULTS:
{context}

ADDITIONAL LEADS FROM KEYWORD SEARCH:
{keyword_leads}

Provide a comprehensive, detailed answer to the user's query that:
1. Directly addresses their specific question about leads
2. Cites specific leads and data points from the search results
3. Includes relevant metrics, patterns, or insights from the data
4. Organizes information in a clear, structured way using paragraphs or bullet points
5. Avoids generic statements and uses specific lead data to support conclusions
6. Focuses on the most relevant leads (highest similarity or most relevant to query)

Your answer should be professional, data-driven, and actionable. Format information clearly and avoid repeating the same points.
If you can't find a direct answer to their query in the search results, explain what you found instead and suggest how they might refine their query.

Generate your answer in natural language, NOT as JSON."""

FALLBACK_PROMPT = """You are an expert lead analysis assistant. Answer the following query about leads using the search results provided:

USER QUERY: "{query}"

LEADS FOUND VIA KEYWORD SEARCH:
{leads}

Provide a comprehensive, detailed answer to the user's query based on these keyword search results.
Your answer should be professional, data-driven, and actionable.
If you can't fully address the query with the available data, explain what you found and suggest how the user might refine their query.

Generate your answer in natural language, NOT as JSON."""

_SUMMARY_FIELDS = ("name", "company", "email", "status", "source", "score")

logger = structlog.get_logger(__name__)


class LeadQueryEngine:
    """Answer natural-language questions about a user's leads."""

    def __init__(
        self,
        storage: StorageBackend,
        search_engine: SemanticSearchEngine,
        language_model: LanguageModel | None = None,
    ) -> None:
        self.storage = storage
        self.search_engine = search_engine
        self.language_model = language_model

    def query(
        self,
        *,
        query: str,
        user_id: str | None,
        max_results: int = 10,
        similarity_threshold: float = 0.3,
        filters: str | None = None,
    ) -> LeadQueryResponse:
        parsed_filters = parse_filters(filters)
        effective_user_id = user_id or DEFAULT_USER_ID
        logger.info(
            "lead_query.started",
            max_results=max_results,
            filters=len(parsed_filters),
            ai_configured=self.language_model is not None,
        )

        try:
            semantic, keyword_rows = self._search_parallel(
                query=query,
                user_id=effective_user_id,
                max_results=max_results,
                similarity_threshold=similarity_threshold,
            )
        except Exception:
            logger.error("lead_query.semantic_failed", exc_info=True)
            return self._fallback(query=query, user_id=effective_user_id, filters=parsed_filters)

        semantic_results = apply_filters(semantic.results, parsed_filters)
        keyword_rows = apply_filters(keyword_rows, parsed_filters)
        if not semantic_results:
            logger.warning("lead_query.no_vector_matches")
            return self._fallback(query=query, user_id=effective_user_id, filters=parsed_filters)

        filtered = semantic.model_copy(
            update={"results": semantic_results, "total_results": len(semantic_results)}
        )
        context = format_results_for_context(filtered)
        hybrid = merge_keyword_results(semantic_results, keyword_rows)
        logger.info(
            "lead_query.hybrid_merged",
            semantic_matches=len(semantic_results),
            keyword_matches=len(keyword_rows),
            hybrid_matches=len(hybrid),
        )

        if self.language_model is None:
            return LeadQueryResponse(
                answer=NO_AI_ANSWER,
                top_leads=[_top_lead(result) for result in hybrid],
                query=query,
                sources=["Vector Database", "SQL Database"],
                confidence=50,
            )

        prompt = HYBRID_PROMPT.format(
            query=query,
            context=context,
            keyword_leads=(
                json.dumps(keyword_rows[:3], indent=2, default=str) if keyword_rows else "None found"
            ),
        )
        try:
            answer = self.language_model.complete(
                system=SYSTEM_PROMPT,
                prompt=prompt,
                temperature=0.3,
                max_tokens=2000,
            )
        except Exception:
            logger.error("lead_query.answer_failed", exc_info=True)
            return self._fallback(query=query, user_id=effective_user_id, filters=parsed_filters)

        top_three = semantic_results[:3]
        confidence = round(sum(r.similarity for r in top_three) / len(top_three) * 100)
        return LeadQueryResponse(
            answer=answer,
            top_leads=[_top_lead(result) for result in hybrid[:5]],
            query=query,
            sources=["Vector Search", "Keyword Search", "AI Analysis"],
            confidence=confidence,
        )

    def _search_parallel(
        self,
        *,
        query: str,
        user_id: str,
        max_results: int,
        similarity_threshold: float,
    ) -> tuple[SemanticSearchResponse, list[dict[str, Any]]]:
        with ThreadPoolExecutor(max_workers=2) as executor:
            semantic_future = executor.submit(
                self.search_engine.search,
                query=query,
                user_id=user_id,
                included_types=("leads",),
                max_results=max_results,
                similarity_threshold=similarity_threshold,
            )
            keyword_future = executor.submit(self._hybrid_keyword_rows, query, user_id)
            return semantic_future.result(), keyword_future.result()

    def _hybrid_keyword_rows(self, query: str, user_id: str) -> list[dict[str, Any]]:
        try:
            return self.storage.keyword_search(
                "leads",
                user_id=user_id,
                query=query,
                fields=HYBRID_KEYWORD_FIELDS,
                limit=HYBRID_KEYWORD_LIMIT,
            )
        except Exception:
            logger.error("lead_query.keyword_failed", exc_info=True)
            return []

    def _fallback(self, *, query: str, user_id: str, filters: list[Filter]) -> LeadQueryResponse:
        logger.info("lead_query.fallback")
        try:
            rows = self.storage.keyword_search(
                "leads",
                user_id=user_id,
                query=query,
                fields=FALLBACK_KEYWORD_FIELDS,
                limit=FALLBACK_KEYWORD_LIMIT,
            )
            rows = apply_filters(rows, filters)
            logger.info("lead_query.fallback_matches", matches=len(rows))
            if not rows:
                return LeadQueryResponse(
                    answer=NO_MATCH_ANSWER,
                    top_leads=[],
                    query=query,
                    sources=["Keyword Search"],
                    confidence=0,
                )

            top_leads = [
                TopLead(
                    id=str(row["id"]),
                    name=row.get("name") or "",
                    company=row.get("company") or "",
                    email=row.get("email") or "",
                    status=row.get("status") or "",
                    source=row.get("source") or "",
                    score=row.get("score") or 0,
                    similarity=100,
                )
                for row in rows
            ]

            if self.language_model is None:
                return LeadQueryResponse(
                    answer=(
                        f'I found {len(top_leads)} leads matching your keywords "{query}". '
                        "You can view the details below."
                    ),
                    top_leads=top_leads,
                    query=query,
                    sources=["Keyword Search"],
                    confidence=60,
                )

            summary = [{field: row.get(field) for field in _SUMMARY_FIELDS} for row in rows]
            answer = self.language_model.complete(
                system=SYSTEM_PROMPT,
                prompt=FALLBACK_PROMPT.format(
                    query=query, leads=json.dumps(summary, indent=2, default=str)
                ),
                temperature=0.4,
                max_tokens=1500,
            )
            return LeadQueryResponse(
                answer=answer,
                top_leads=top_leads,
                query=query,
                sources=["Keyword Search", "AI Analysis"],
                confidence=70,
            )
        except Exception:
            logger.error("lead_query.fallback_failed", exc_info=True)
            return LeadQueryResponse(
                answer=ERROR_ANSWER,
                top_leads=[],
                query=query,
                sources=[],
                confidence=0,
            )


def _top_lead(result: SemanticSearchResult) -> TopLead:
    return TopLead(
        id=result.id,
        name=result.name,
        company=result.company,
        email=result.email,
        status=result.status,
        source=result.source,
        score=result.score,
        similarity=round(result.similarity * 100),
    )
