"""Storage backends for CRM records and embeddings."""

from .base import (
    ENTITY_TABLES,
    ENTITY_TYPES,
    TABLE_COLUMNS,
    VECTOR_COLUMNS,
    RecordNotFoundError,
    StorageBackend,
)
from .duckdb import DuckDBStorage

__all__ = [
    "ENTITY_TABLES",
    "ENTITY_TYPES",
    "TABLE_COLUMNS",
    "VECTOR_COLUMNS",
    "RecordNotFoundError",
    "StorageBackend",
    "DuckDBStorage",
    "build_storage",
]


def build_storage(
    *,
    backend: str | None = None,
    db_path: str | None = None,
    read_only: bool = False,
) -> StorageBackend:
    """Open the configured storage backend."""
    from ..config import resolve_backend, resolve_db_path

    selected = resolve_backend(backend)
    if selected == "supabase":
        from .supabase import SupabaseStorage

        return SupabaseStorage.from_env()
    return DuckDBStorage(resolve_db_path(db_path), read_only=read_only)
