"""
Supabase storage backend.

Talks to the hosted CRM schema through PostgREST table calls and the
``search_similar_*`` pgvector functions.
"""

from __future__ import annotations

import json
import os
import uuid
from datetime import datetime, timezone
from typing import Any

import structlog
from supabase import Client, create_client

from .base import (
    TABLE_COLUMNS,
    VECTOR_COLUMNS,
    RecordNotFoundError,
    validate_columns,
    validate_entity_type,
    validate_table,
    validate_vector_column,
)

logger = structlog.get_logger(__name__)

SEARCH_FUNCTIONS: dict[str, str] = {
    "deals": "search_similar_deals",
    "contacts": "search_similar_contacts",
    "leads": "search_similar_leads",
    "companies": "search_similar_companies",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _quote_filter_value(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class SupabaseStorage:
    """Supabase-backed persistence using the CRM's hosted Postgres schema."""

    def __init__(self, client: Client) -> None:
        self._client = client

    @classmethod
    def from_env(cls) -> "SupabaseStorage":
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_KEY")
        if not url or not key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_KEY must be set to use the supabase backend."
            )
        logger.info("storage.supabase_connected", url=url)
        return cls(create_client(url, key))

    def initialize(self) -> None:
        # Schema is managed by the hosted database migrations.
        return None

    def close(self) -> None:
        return None

    @staticmethod
    def _select_list(table: str) -> str:
        return ",".join(TABLE_COLUMNS[table])

    # -- records -----------------------------------------------------------

    def insert_record(self, table: str, values: dict[str, Any]) -> str:
        validate_columns(table, values)
        row = dict(values)
        row.setdefault("id", str(uuid.uuid4()))
        response = self._client.table(table).insert(row).execute()
        if response.data:
            return str(response.data[0]["id"])
        return str(row["id"])

    def update_record(
        self,
        table: str,
        *,
        record_id: str,
        user_id: str,
        values: dict[str, Any],
    ) -> None:
        validate_columns(table, values)
        payload = {k: v for k, v in values.items() if k not in {"id", "user_id"}}
        if "updated_at" in TABLE_COLUMNS[table]:
            payload.setdefault("updated_at", _now_iso())
        response = (
            self._client.table(table)
            .update(payload)
            .eq("id", record_id)
            .eq("user_id", user_id)
            .execute()
        )
        if not response.data:
            raise RecordNotFoundError(f"{table} record not found: {record_id}")

    def delete_record(self, table: str, *, record_id: str, user_id: str) -> None:
        validate_table(table)
        response = (
            self._client.table(table)
            .delete()
            .eq("id", record_id)
            .eq("user_id", user_id)
            .execute()
        )
        if not response.data:
            raise RecordNotFoundError(f"{table} record not found: {record_id}")

    def get_record(
        self, table: str, *, record_id: str, user_id: str
    ) -> dict[str, Any] | None:
        validate_table(table)
        response = (
            self._client.table(table)
            .select(self._select_list(table))
            .eq("id", record_id)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    def list_related(
        self,
        table: str,
        *,
        column: str,
        value: str,
        limit: int,
    ) -> list[dict[str, Any]]:
        validate_columns(table, {column: value})
        response = (
            self._client.table(table)
            .select(self._select_list(table))
            .eq(column, value)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return list(response.data or [])

    def find_contacts(
        self,
        *,
        user_id: str,
        email: str | None,
        phone: str | None,
    ) -> list[dict[str, Any]]:
        conditions: list[str] = []
        if email and email.strip():
            conditions.append(f"email.eq.{_quote_filter_value(email)}")
        if phone and phone.strip():
            conditions.append(f"phone.eq.{_quote_filter_value(phone)}")
        if not conditions:
            return []
        response = (
            self._client.table("contacts")
            .select(self._select_list("contacts"))
            .eq("user_id", user_id)
            .or_(",".join(conditions))
            .order("created_at", desc=True)
            .execute()
        )
        return list(response.data or [])

    # -- embeddings --------------------------------------------------------

    def store_embedding(
        self,
        table: str,
        *,
        record_id: str,
        user_id: str,
        column: str,
        embedding: list[float],
    ) -> None:
        validate_vector_column(table, column)
        payload: dict[str, Any] = {column: embedding, "updated_at": _now_iso()}
        if table == "leads" and column == "embedding":
            payload["embedding_updated_at"] = payload["updated_at"]
        response = (
            self._client.table(table)
            .update(payload)
            .eq("id", record_id)
            .eq("user_id", user_id)
            .execute()
        )
        if not response.data:
            raise RecordNotFoundError(f"{table} record not found: {record_id}")

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
        self._client.table("embedding_metadata").upsert(
            {
                "user_id": user_id,
                "table_name": table,
                "record_id": record_id,
                "field_name": field_name,
                "text_content": text_content,
                "embedding_vector": embedding,
                "embedding_model": model,
                "updated_at": _now_iso(),
            },
            on_conflict="table_name,record_id,field_name",
        ).execute()

    def get_embedding_metadata(
        self,
        *,
        table: str,
        record_id: str,
        field_name: str | None = None,
    ) -> list[dict[str, Any]]:
        query = (
            self._client.table("embedding_metadata")
            .select("table_name,record_id,field_name,text_content,embedding_model,updated_at")
            .eq("table_name", table)
            .eq("record_id", record_id)
        )
        if field_name is not None:
            query = query.eq("field_name", field_name)
        response = query.order("field_name").execute()
        return list(response.data or [])

    def delete_embeddings(self, table: str, *, record_id: str, user_id: str) -> None:
        validate_table(table)
        (
            self._client.table("embedding_metadata")
            .delete()
            .eq("table_name", table)
            .eq("record_id", record_id)
            .eq("user_id", user_id)
            .execute()
        )
        columns = VECTOR_COLUMNS[table]
        if not columns:
            return
        (
            self._client.table(table)
            .update({column: None for column in columns})
            .eq("id", record_id)
            .eq("user_id", user_id)
            .execute()
        )

    # -- search ------------------------------------------------------------

    def search_similar(
        self,
        entity_type: str,
        *,
        query_embedding: list[float],
        user_id: str,
        similarity_threshold: float,
        match_count: int,
    ) -> list[dict[str, Any]]:
        validate_entity_type(entity_type)
        response = self._client.rpc(
            SEARCH_FUNCTIONS[entity_type],
            {
                "query_embedding": query_embedding,
                "target_user_id": user_id,
                "similarity_threshold": similarity_threshold,
                "match_count": match_count,
            },
        ).execute()
        return list(response.data or [])

    def keyword_search(
        self,
        table: str,
        *,
        user_id: str,
        query: str,
        fields: tuple[str, ...],
        limit: int,
    ) -> list[dict[str, Any]]:
        if not fields:
            raise ValueError("keyword_search requires at least one field")
        validate_columns(table, {field: None for field in fields})
        if not query.strip():
            return []
        pattern = _quote_filter_value(f"%{query}%")
        response = (
            self._client.table(table)
            .select(self._select_list(table))
            .eq("user_id", user_id)
            .or_(",".join(f"{field}.ilike.{pattern}" for field in fields))
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return list(response.data or [])

    def records_missing_embedding(
        self,
        table: str,
        *,
        user_id: str,
        column: str,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        validate_vector_column(table, column)
        query = (
            self._client.table(table)
            .select(self._select_list(table))
            .eq("user_id", user_id)
            .is_(column, "null")
            .order("created_at")
        )
        if limit is not None:
            query = query.limit(limit)
        return list(query.execute().data or [])

    def count_records(
        self,
        table: str,
        *,
        user_id: str,
        with_embedding: str | None = None,
    ) -> int:
        validate_table(table)
        query = self._client.table(table).select("id", count="exact").eq("user_id", user_id)
        if with_embedding is not None:
            validate_vector_column(table, with_embedding)
            query = query.not_.is_(with_embedding, "null")
        return int(query.execute().count or 0)

    # -- search history ----------------------------------------------------

    def record_search(
        self,
        *,
        user_id: str,
        query_text: str,
        query_embedding: list[float],
        search_type: str,
        similarity_threshold: float,
    ) -> str:
        search_id = str(uuid.uuid4())
        self._client.table("semantic_searches").insert(
            {
                "id": search_id,
                "user_id": user_id,
                "query_text": query_text,
                "query_vector": query_embedding,
                "search_type": search_type,
                "similarity_threshold": similarity_threshold,
            }
        ).execute()
        return search_id

    def complete_search(
        self,
        *,
        search_id: str,
        results_count: int,
        results: list[dict[str, Any]],
    ) -> None:
        # Round-trip through JSON so dates and decimals serialize.
        payload = json.loads(json.dumps(results, default=str))
        (
            self._client.table("semantic_searches")
            .update({"results_count": results_count, "search_results": payload})
            .eq("id", search_id)
            .execute()
        )

    def list_searches(self, *, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        response = (
            self._client.table("semantic_searches")
            .select(
                "id,query_text,search_type,similarity_threshold,"
                "results_count,search_results,created_at"
            )
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return list(response.data or [])
