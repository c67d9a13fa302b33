"""
Embedding pipeline: field and composite embeddings for CRM records.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog

from ..embeddings import EmbeddingProvider
from ..storage import ENTITY_TABLES, StorageBackend
from ..storage.base import validate_vector_column
from .context import COMPOSITE_ENTITY_TYPES, ContextBuilder

METADATA_TEXT_LIMIT = 1000
COMPOSITE_FIELD = "composite"
COMPOSITE_COLUMN = "embedding"

ActivityChange = Literal["create", "update", "delete"]

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class BatchResult:
    """Summary output for a batch embedding run."""

    processed: int = 0
    errors: int = 0

    def __add__(self, other: "BatchResult") -> "BatchResult":
        return BatchResult(
            processed=self.processed + other.processed,
            errors=self.errors + other.errors,
        )


@dataclass(frozen=True)
class EmbeddingStats:
    """Embedding coverage for one table of a user."""

    table: str
    total: int
    with_embeddings: dict[str, int] = field(default_factory=dict)
    coverage: int = 0


def _truncate(text: str, limit: int = METADATA_TEXT_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def _table_for(entity_type: str) -> str:
    if entity_type not in COMPOSITE_ENTITY_TYPES:
        raise ValueError(
            f"Unsupported entity type {entity_type!r}. "
            f"Expected one of: {', '.join(COMPOSITE_ENTITY_TYPES)}"
        )
    return ENTITY_TABLES[entity_type]


class EmbeddingPipeline:
    """Generate, store and refresh embeddings of CRM records."""

    def __init__(
        self,
        storage: StorageBackend,
        embedding_provider: EmbeddingProvider,
        *,
        max_workers: int = 4,
        batch_pause: float = 1.0,
    ) -> None:
        self.storage = storage
        self.embedding_provider = embedding_provider
        self.context_builder = ContextBuilder(storage)
        self._max_workers = max_workers
        self._batch_pause = batch_pause

    def embed_field(
        self,
        table: str,
        record_id: str,
        field_name: str,
        text: str | None,
        user_id: str,
    ) -> bool:
        """Embed one text field into ``<field>_vector``. Blank text is skipped."""
        column = f"{field_name}_vector"
        validate_vector_column(table, column)
        if text is None or not text.strip():
            return False

        embedding = self.embedding_provider.embed_text(text)
        self.storage.upsert_embedding_metadata(
            user_id=user_id,
            table=table,
            record_id=record_id,
            field_name=field_name,
            text_content=text,
            embedding=embedding,
            model=self.embedding_provider.model,
        )
        self.storage.store_embedding(
            table,
            record_id=record_id,
            user_id=user_id,
            column=column,
            embedding=embedding,
        )
        logger.debug("embedding.field_stored", table=table, field=field_name)
        return True

    def embed_fields_settled(
        self,
        table: str,
        record_id: str,
        values: dict[str, Any],
        field_names: tuple[str, ...],
        user_id: str,
    ) -> int:
        """Embed the given fields present in *values*; failures are only logged.

        Returns the number of fields embedded.
        """
        # Fields share one row, so updates run one at a time.
        embedded = 0
        for field_name in field_names:
            text = values.get(field_name)
            if text is None or not str(text).strip():
                continue
            try:
                if self.embed_field(table, record_id, field_name, str(text), user_id):
                    embedded += 1
            except Exception:
                logger.error(
                    "embedding.field_failed",
                    table=table,
                    record_id=record_id,
                    field=field_name,
                    exc_info=True,
                )
        return embedded

    def embed_composite(self, entity_type: str, entity_id: str, user_id: str) -> bool:
        """Embed an entity's composed context into its ``embedding`` column."""
        table = _table_for(entity_type)
        context = self.context_builder.build(entity_type, entity_id, user_id)
        if not context.strip():
            logger.warning(
                "embedding.composite_no_context", entity_type=entity_type, entity_id=entity_id
            )
            return False

        embedding = self.embedding_provider.embed_text(context)
        self.storage.store_embedding(
            table,
            record_id=entity_id,
            user_id=user_id,
            column=COMPOSITE_COLUMN,
            embedding=embedding,
        )
        try:
            self.storage.upsert_embedding_metadata(
                user_id=user_id,
                table=table,
                record_id=entity_id,
                field_name=COMPOSITE_FIELD,
                text_content=_truncate(context),
                embedding=embedding,
                model=self.embedding_provider.model,
            )
        except Exception:
            logger.warning(
                "embedding.composite_metadata_failed",
                entity_type=entity_type,
                entity_id=entity_id,
                exc_info=True,
            )
        logger.info(
            "embedding.composite_stored",
            entity_type=entity_type,
            entity_id=entity_id,
            context_chars=len(context),
        )
        return True

    def batch_embed_field(
        self,
        table: str,
        field_name: str,
        user_id: str,
        *,
        batch_size: int = 10,
    ) -> BatchResult:
        """Embed up to *batch_size* records whose field vector is still empty."""
        column = f"{field_name}_vector"
        records = self.storage.records_missing_embedding(
            table, user_id=user_id, column=column, limit=batch_size
        )
        if not records:
            logger.info("embedding.batch_nothing_to_do", table=table, field=field_name)
            return BatchResult()

        processed = 0
        errors = 0
        for record in records:
            try:
                stored = self.embed_field(
                    table, str(record["id"]), field_name, record.get(field_name), user_id
                )
                if stored:
                    processed += 1
            except Exception:
                logger.error(
                    "embedding.batch_record_failed",
                    table=table,
                    field=field_name,
                    record_id=record["id"],
                    exc_info=True,
                )
                errors += 1

        logger.info(
            "embedding.batch_completed",
            table=table,
            field=field_name,
            processed=processed,
            errors=errors,
        )
        return BatchResult(processed=processed, errors=errors)

    def batch_embed_composite(
        self,
        entity_type: str,
        user_id: str,
        *,
        batch_size: int = 5,
    ) -> BatchResult:
        """Embed every record of *entity_type* missing a composite embedding."""
        table = _table_for(entity_type)
        records = self.storage.records_missing_embedding(
            table, user_id=user_id, column=COMPOSITE_COLUMN
        )
        if not records:
            logger.info("embedding.batch_nothing_to_do", table=table, field=COMPOSITE_FIELD)
            return BatchResult()

        size = max(batch_size, 1)
        result = BatchResult()
        for start in range(0, len(records), size):
            batch = records[start : start + size]
            result = result + self._composite_batch(entity_type, batch, user_id)
            if start + size < len(records) and self._batch_pause > 0:
                time.sleep(self._batch_pause)

        logger.info(
            "embedding.batch_completed",
            table=table,
            field=COMPOSITE_FIELD,
            processed=result.processed,
            errors=result.errors,
        )
        return result

    def _composite_batch(
        self, entity_type: str, batch: list[dict[str, Any]], user_id: str
    ) -> BatchResult:
        def run(record_id: str) -> bool | None:
            try:
                return self.embed_composite(entity_type, record_id, user_id)
            except Exception:
                logger.error(
                    "embedding.batch_record_failed",
                    entity_type=entity_type,
                    record_id=record_id,
                    exc_info=True,
                )
                return None

        # None marks a failure; False an entity skipped for lack of context.
        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(batch))) as executor:
            outcomes = list(executor.map(run, [str(record["id"]) for record in batch]))
        return BatchResult(
            processed=sum(1 for ok in outcomes if ok),
            errors=sum(1 for ok in outcomes if ok is None),
        )

    def embedding_stats(
        self,
        table: str,
        user_id: str,
        columns: tuple[str, ...],
    ) -> EmbeddingStats:
        """Count records and vector coverage; coverage follows the first column."""
        total = self.storage.count_records(table, user_id=user_id)
        counts = {
            column: self.storage.count_records(table, user_id=user_id, with_embedding=column)
            for column in columns
        }
        coverage = 0
        if total > 0 and columns:
            coverage = round(counts[columns[0]] / total * 100)
        return EmbeddingStats(table=table, total=total, with_embeddings=counts, coverage=coverage)

    def handle_activity_change(
        self,
        change: ActivityChange,
        *,
        user_id: str | None,
        deal_id: str | None = None,
        contact_id: str | None = None,
        lead_id: str | None = None,
    ) -> int:
        """Refresh composite embeddings of entities linked to a changed activity.

        Returns the number of entities refreshed.
        """
        if not user_id:
            logger.warning("embedding.activity_change_without_user", change=change)
            return 0

        targets = [
            (entity_type, entity_id)
            for entity_type, entity_id in (
                ("deal", deal_id),
                ("contact", contact_id),
                ("lead", lead_id),
            )
            if entity_id
        ]
        if not targets:
            return 0

        def refresh(target: tuple[str, str]) -> bool:
            entity_type, entity_id = target
            try:
                return self.embed_composite(entity_type, entity_id, user_id)
            except Exception:
                logger.error(
                    "embedding.activity_refresh_failed",
                    change=change,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    exc_info=True,
                )
                return False

        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(targets))) as executor:
            refreshed = sum(1 for ok in executor.map(refresh, targets) if ok)
        logger.info("embedding.activity_change_handled", change=change, refreshed=refreshed)
        return refreshed

    def entity_context(self, entity_type: str, entity_id: str, user_id: str) -> str:
        """Composed context text of a user's entity, for inspection."""
        _table_for(entity_type)
        return self.context_builder.build(entity_type, entity_id, user_id)
