"""
Text rendering of search results for prompts and debugging.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..models import SemanticSearchResponse, SemanticSearchResult

MAX_ITEMS_PER_GROUP = 10

RELEVANCE_NOTE = (
    "Note: Relevance scores indicate how closely each item matches the query "
    "semantically, with higher percentages being better matches."
)


@dataclass(frozen=True)
class SimilarityDigest:
    """Summary statistics over one response's similarity scores."""

    total: int
    counts_by_type: dict[str, int] = field(default_factory=dict)
    min_similarity: float = 0.0
    max_similarity: float = 0.0
    average_similarity: float = 0.0
    top_result: SemanticSearchResult | None = None
    high: int = 0
    medium: int = 0
    low: int = 0
    very_low: int = 0

    @property
    def buckets(self) -> dict[str, int]:
        return {
            "high": self.high,
            "medium": self.medium,
            "low": self.low,
            "very_low": self.very_low,
        }


def relevance_percent(similarity: float) -> int:
    return int(round(similarity * 100))


def format_results_for_context(response: SemanticSearchResponse) -> str:
    """Render results grouped by entity type for use as LLM context."""
    if not response.results:
        return ""

    header = (
        f'SEMANTIC SEARCH RESULTS FOR QUERY: "{response.query}"\n\n'
        f"I've searched across all CRM data and found {len(response.results)} items "
        "related to your query. Here are the most relevant matches:\n\n"
    )

    blocks: list[str] = []
    for label, result_type, render in (
        ("DEALS", "deal", _deal_line),
        ("CONTACTS", "contact", _contact_line),
        ("LEADS", "lead", _lead_line),
        ("COMPANIES", "company", _company_line),
    ):
        group = [r for r in response.results if r.type == result_type][:MAX_ITEMS_PER_GROUP]
        if not group:
            continue
        lines = [f"RELEVANT {label}:"]
        lines.extend(f"{index}. {render(result)}" for index, result in enumerate(group, start=1))
        blocks.append("\n".join(lines) + "\n")

    return header + "\n".join(blocks) + f"\n{RELEVANCE_NOTE}\n"


def similarity_digest(response: SemanticSearchResponse) -> SimilarityDigest:
    """Counts per type, similarity range and distribution buckets."""
    results = response.results
    if not results:
        return SimilarityDigest(total=0)

    counts: dict[str, int] = {}
    for result in results:
        counts[result.type] = counts.get(result.type, 0) + 1

    scores = [r.similarity for r in results]
    return SimilarityDigest(
        total=len(results),
        counts_by_type=counts,
        min_similarity=min(scores),
        max_similarity=max(scores),
        average_similarity=sum(scores) / len(scores),
        top_result=max(results, key=lambda r: r.similarity),
        high=sum(1 for s in scores if s >= 0.8),
        medium=sum(1 for s in scores if 0.5 <= s < 0.8),
        low=sum(1 for s in scores if 0.3 <= s < 0.5),
        very_low=sum(1 for s in scores if s < 0.3),
    )


def _deal_line(result: SemanticSearchResult) -> str:
    value = _format_number(result.value, grouped=True) if result.value is not None else "N/A"
    return (
        f"{result.name} ({result.company or 'No company'}) | "
        f"Stage: {result.stage or 'N/A'} | Value: ${value} | "
        f"Relevance: {relevance_percent(result.similarity)}%"
    )


def _contact_line(result: SemanticSearchResult) -> str:
    return (
        f"{result.name} | {result.title or 'No title'} at {result.company or 'No company'} | "
        f"Email: {result.email or 'N/A'} | Status: {result.status or 'N/A'} | "
        f"Relevance: {relevance_percent(result.similarity)}%"
    )


def _lead_line(result: SemanticSearchResult) -> str:
    # A zero score renders as N/A.
    score = _format_number(result.score) if result.score else "N/A"
    return (
        f"{result.name} | Company: {result.company or 'N/A'} | "
        f"Source: {result.source or 'N/A'} | Status: {result.status or 'N/A'} | "
        f"Score: {score} | Relevance: {relevance_percent(result.similarity)}%"
    )


def _company_line(result: SemanticSearchResult) -> str:
    return (
        f"{result.name} | Industry: {result.industry or 'N/A'} | "
        f"Website: {result.website or 'N/A'} | "
        f"Relevance: {relevance_percent(result.similarity)}%"
    )


def _format_number(value: float, *, grouped: bool = False) -> str:
    if float(value).is_integer():
        return f"{int(value):,}" if grouped else str(int(value))
    text = f"{value:,.2f}" if grouped else f"{value:.2f}"
    return text.rstrip("0").rstrip(".")
