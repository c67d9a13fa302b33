"""
Embedding provider for CRM semantic search.

Record texts are embedded as ``RETRIEVAL_DOCUMENT`` and search queries as
``RETRIEVAL_QUERY`` through the Google GenAI SDK. The default dimension
matches the ``vector(1536)`` columns of the hosted CRM schema.
"""

from __future__ import annotations

import os
import time
from typing import Any

import structlog
from google.genai import Client as GenAIClient

DOCUMENT_TASK = "RETRIEVAL_DOCUMENT"
QUERY_TASK = "RETRIEVAL_QUERY"

_ENV_PREFIX = "CRM_SEARCH_EMBEDDING_"
_DEFAULTS: dict[str, Any] = {"MODEL": "gemini-embedding-001", "DIM": 1536, "BATCH_SIZE": 50}

logger = structlog.get_logger(__name__)


def _setting(name: str) -> str:
    return os.getenv(_ENV_PREFIX + name, str(_DEFAULTS[name]))


class EmbeddingProvider:
    """Turn CRM texts and search queries into vectors."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        dim: int | None = None,
        batch_size: int | None = None,
        client: Any | None = None,
    ) -> None:
        self.model = model or _setting("MODEL")
        self.dim = dim or int(_setting("DIM"))
        self.batch_size = batch_size or int(_setting("BATCH_SIZE"))
        self._client = client if client is not None else self._connect(api_key)

    @staticmethod
    def _connect(api_key: str | None) -> GenAIClient:
        key = api_key or os.getenv("GOOGLE_API_KEY")
        if key is None:
            raise ValueError(
                "GOOGLE_API_KEY not found. Provide api_key or set the environment variable."
            )
        return GenAIClient(api_key=key)

    def _request(self, texts: list[str], task_type: str) -> list[list[float]]:
        response = self._client.models.embed_content(
            model=self.model,
            contents=texts,
            config={"task_type": task_type, "output_dimensionality": self.dim},
        )
        vectors = [list(item.values) for item in response.embeddings]
        if len(vectors) != len(texts):
            raise RuntimeError(
                f"Embedding service returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return vectors

    def embed_texts(self, texts: list[str], *, task_type: str = DOCUMENT_TASK) -> list[list[float]]:
        """Vectors for *texts*, in order, requested ``batch_size`` at a time."""
        vectors: list[list[float]] = []
        for offset in range(0, len(texts), self.batch_size):
            vectors.extend(self._request(texts[offset : offset + self.batch_size], task_type))
        return vectors

    def embed_text(self, text: str) -> list[float]:
        """Vector of one record text, for storage."""
        return self._request([text], DOCUMENT_TASK)[0]

    def embed_query(self, query: str) -> list[float]:
        """Vector of a search query."""
        started = time.perf_counter()
        vector = self._request([query], QUERY_TASK)[0]
        logger.debug(
            "embeddings.query_embedded",
            dimensions=len(vector),
            elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return vector
