"""Search helpers for CRM records."""

from .filters import (
    Filter,
    FilterParseError,
    apply_filters,
    parse_filters,
    supported_filter_syntax,
)
from .query import LeadQueryEngine
from .ranker import merge_keyword_results, rank_results
from .report import SimilarityDigest, format_results_for_context, similarity_digest
from .semantic import DEFAULT_INCLUDED_TYPES, DEFAULT_USER_ID, SemanticSearchEngine

__all__ = [
    "Filter",
    "FilterParseError",
    "apply_filters",
    "parse_filters",
    "supported_filter_syntax",
    "LeadQueryEngine",
    "merge_keyword_results",
    "rank_results",
    "SimilarityDigest",
    "format_results_for_context",
    "similarity_digest",
    "DEFAULT_INCLUDED_TYPES",
    "DEFAULT_USER_ID",
    "SemanticSearchEngine",
]
