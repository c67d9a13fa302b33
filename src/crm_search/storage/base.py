"""
Storage interfaces and table layout for CRM records and their embeddings.
"""

from __future__ import annotations

from typing import Any, Literal, Protocol


EntityType = Literal["deals", "contacts", "leads", "companies"]

ENTITY_TYPES: tuple[str, ...] = ("deals", "contacts", "leads", "companies")

# Singular entity names used for composite embeddings and result types.
ENTITY_TABLES: dict[str, str] = {
    "deal": "deals",
    "contact": "contacts",
    "lead": "leads",
    "company": "companies",
}

TABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    "leads": (
        "id",
        "user_id",
        "name",
        "company",
        "email",
        "phone",
        "title",
        "status",
        "source",
        "score",
        "notes",
        "lead_magnet",
        "utm_source",
        "utm_campaign",
        "created_at",
        "updated_at",
        "embedding_updated_at",
    ),
    "contacts": (
        "id",
        "user_id",
        "name",
        "company",
        "email",
        "phone",
        "title",
        "status",
        "score",
        "persona",
        "notes",
        "created_at",
        "updated_at",
    ),
    "deals": (
        "id",
        "user_id",
        "title",
        "company",
        "value",
        "stage",
        "priority",
        "close_probability",
        "expected_close_date",
        "next_step",
        "description",
        "outcome",
        "contact_id",
        "notes",
        "created_at",
        "updated_at",
    ),
    "companies": (
        "id",
        "user_id",
        "name",
        "industry",
        "description",
        "notes",
        "website",
        "size",
        "location",
        "status",
        "created_at",
        "updated_at",
    ),
    "activities": (
        "id",
        "user_id",
        "type",
        "subject",
        "description",
        "notes",
        "outcome",
        "status",
        "deal_id",
        "contact_id",
        "lead_id",
        "created_at",
    ),
}

VECTOR_COLUMNS: dict[str, tuple[str, ...]] = {
    "leads": ("embedding", "notes_vector"),
    "contacts": ("embedding", "notes_vector", "persona_vector"),
    "deals": ("embedding", "title_vector", "description_vector", "next_step_vector"),
    "companies": ("description_vector", "notes_vector"),
    "activities": (),
}

# Columns returned by the per-entity similarity search, mirroring the
# search_similar_* database functions.
SEARCH_COLUMNS: dict[str, tuple[str, ...]] = {
    "deals": ("id", "title", "company", "stage", "value"),
    "contacts": ("id", "name", "title", "company", "email", "status", "score", "persona"),
    "leads": ("id", "name", "company", "email", "phone", "source", "status", "score"),
    "companies": ("id", "name", "industry", "description", "website"),
}


class RecordNotFoundError(LookupError):
    """Raised when an addressed record does not exist for the user."""


def validate_table(table: str) -> None:
    if table not in TABLE_COLUMNS:
        raise ValueError(f"Unknown table: {table!r}")


def validate_columns(table: str, values: dict[str, Any]) -> None:
    """Reject column names that are not part of the table layout."""
    validate_table(table)
    allowed = set(TABLE_COLUMNS[table])
    unknown = sorted(set(values) - allowed)
    if unknown:
        raise ValueError(f"Unknown column(s) for {table}: {', '.join(unknown)}")


def validate_vector_column(table: str, column: str) -> None:
    validate_table(table)
    if column not in VECTOR_COLUMNS[table]:
        raise ValueError(f"Unknown vector column for {table}: {column!r}")


def validate_entity_type(entity_type: str) -> None:
    if entity_type not in ENTITY_TYPES:
        raise ValueError(
            f"Unsupported entity type {entity_type!r}. "
            f"Expected one of: {', '.join(ENTITY_TYPES)}"
        )


class StorageBackend(Protocol):
    """Protocol for the CRM persistence operations used by search and indexing."""

    def initialize(self) -> None:
        """Initialize required tables."""

    def insert_record(self, table: str, values: dict[str, Any]) -> str:
        """Insert a record and return its id (generated when absent)."""

    def update_record(
        self,
        table: str,
        *,
        record_id: str,
        user_id: str,
        values: dict[str, Any],
    ) -> None:
        """Update a user's record. Raise RecordNotFoundError when absent."""

    def delete_record(self, table: str, *, record_id: str, user_id: str) -> None:
        """Delete a user's record. Raise RecordNotFoundError when absent."""

    def get_record(
        self, table: str, *, record_id: str, user_id: str
    ) -> dict[str, Any] | None:
        """Get one of a user's records by id, without vector columns."""

    def list_related(
        self,
        table: str,
        *,
        column: str,
        value: str,
        limit: int,
    ) -> list[dict[str, Any]]:
        """Rows whose *column* equals *value*, newest first."""

    def find_contacts(
        self,
        *,
        user_id: str,
        email: str | None,
        phone: str | None,
    ) -> list[dict[str, Any]]:
        """Contacts of a user sharing the given email or phone."""

    def store_embedding(
        self,
        table: str,
        *,
        record_id: str,
        user_id: str,
        column: str,
        embedding: list[float],
    ) -> None:
        """Write a vector column of a user's record."""

    def upsert_embedding_metadata(
        self,
        *,
        user_id: str,
        table: str,
        record_id: str,
        field_name: str,
        text_content: str,
        embedding: list[float],
        model: str,
    ) -> None:
        """Insert or replace the tracking row for one embedded field."""

    def get_embedding_metadata(
        self,
        *,
        table: str,
        record_id: str,
        field_name: str | None = None,
    ) -> list[dict[str, Any]]:
        """Tracking rows of a record, optionally for one field."""

    def delete_embeddings(self, table: str, *, record_id: str, user_id: str) -> None:
        """Drop tracking rows and clear every vector column of a record."""

    def search_similar(
        self,
        entity_type: str,
        *,
        query_embedding: list[float],
        user_id: str,
        similarity_threshold: float,
        match_count: int,
    ) -> list[dict[str, Any]]:
        """Cosine-similarity search over an entity table, best match first."""

    def keyword_search(
        self,
        table: str,
        *,
        user_id: str,
        query: str,
        fields: tuple[str, ...],
        limit: int,
    ) -> list[dict[str, Any]]:
        """Case-insensitive substring search over *fields*, newest first."""

    def records_missing_embedding(
        self,
        table: str,
        *,
        user_id: str,
        column: str,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Records of a user whose vector *column* is empty."""

    def count_records(
        self,
        table: str,
        *,
        user_id: str,
        with_embedding: str | None = None,
    ) -> int:
        """Count a user's records, optionally only those with a vector set."""

    def record_search(
        self,
        *,
        user_id: str,
        query_text: str,
        query_embedding: list[float],
        search_type: str,
        similarity_threshold: float,
    ) -> str:
        """Store a search history entry and return its id."""

    def complete_search(
        self,
        *,
        search_id: str,
        results_count: int,
        results: list[dict[str, Any]],
    ) -> None:
        """Attach result counts and results to a stored search."""

    def list_searches(self, *, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent search history entries of a user."""
