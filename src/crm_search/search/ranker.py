"""
Ranking helpers for merging semantic and keyword result sets.
"""

from __future__ import annotations

from typing import Any

from ..models import SemanticSearchResult

KEYWORD_SIMILARITY = 0.5

_TYPE_ORDER = {"deal": 0, "contact": 1, "lead": 2, "company": 3}


def rank_results(
    results: list[SemanticSearchResult], *, limit: int | None = None
) -> list[SemanticSearchResult]:
    """Sort by similarity, best first, and apply an optional limit."""
    ordered = sorted(
        results,
        key=lambda result: (
            -result.similarity,
            _TYPE_ORDER.get(result.type, len(_TYPE_ORDER)),
            result.name.lower(),
            result.id,
        ),
    )
    if limit is None:
        return ordered
    return ordered[: max(limit, 0)]


def merge_keyword_results(
    semantic: list[SemanticSearchResult],
    keyword_rows: list[dict[str, Any]],
    *,
    entity_type: str = "leads",
    default_similarity: float = KEYWORD_SIMILARITY,
) -> list[SemanticSearchResult]:
    """Append keyword rows to already-ranked semantic results.

    Semantic results keep their order; those that keyword search also found
    are tagged ``semantic+keyword``. Keyword-only rows follow in the order
    keyword search returned them, with *default_similarity*.
    """
    keyword_ids = {str(row["id"]) for row in keyword_rows}
    merged: list[SemanticSearchResult] = []
    seen: set[str] = set()
    for result in semantic:
        if result.id in seen:
            continue
        seen.add(result.id)
        if result.id in keyword_ids and result.matched_by == "semantic":
            result = result.model_copy(update={"matched_by": "semantic+keyword"})
        merged.append(result)

    for row in keyword_rows:
        record_id = str(row["id"])
        if record_id in seen:
            continue
        seen.add(record_id)
        merged.append(
            SemanticSearchResult.from_row(
                entity_type,
                row,
                similarity=default_similarity,
                matched_by="keyword",
            )
        )
    return merged
