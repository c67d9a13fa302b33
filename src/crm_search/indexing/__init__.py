"""Embedding maintenance for CRM records."""

from .companies import CompanyEmbeddingManager
from .contacts import ContactEmbeddingManager
from .context import (
    ContextBuilder,
    compose_contact_context,
    compose_deal_context,
    compose_lead_context,
    format_activity_line,
)
from .deals import DealEmbeddingManager
from .leads import LeadEmbeddingManager
from .pipeline import BatchResult, EmbeddingPipeline, EmbeddingStats

__all__ = [
    "CompanyEmbeddingManager",
    "ContactEmbeddingManager",
    "ContextBuilder",
    "compose_contact_context",
    "compose_deal_context",
    "compose_lead_context",
    "format_activity_line",
    "DealEmbeddingManager",
    "LeadEmbeddingManager",
    "BatchResult",
    "EmbeddingPipeline",
    "EmbeddingStats",
]
