"""
DuckDB storage backend for CRM records and vector search.
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any

import duckdb

from .base import (
    SEARCH_COLUMNS,
    TABLE_COLUMNS,
    VECTOR_COLUMNS,
    RecordNotFoundError,
    validate_columns,
    validate_entity_type,
    validate_table,
    validate_vector_column,
)

_DDL: dict[str, str] = {
    "leads": """
        CREATE TABLE IF NOT EXISTS leads (
            id VARCHAR PRIMARY KEY,
            user_id VARCHAR NOT NULL,
            name VARCHAR NOT NULL,
            company VARCHAR,
            email VARCHAR,
            phone VARCHAR,
            title VARCHAR,
            status VARCHAR,
            source VARCHAR,
            score INTEGER,
            notes VARCHAR,
            lead_magnet VARCHAR,
            utm_source VARCHAR,
            utm_campaign VARCHAR,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            embedding DOUBLE[],
            notes_vector DOUBLE[],
            embedding_updated_at TIMESTAMP
        );
    """,
    "contacts": """
        CREATE TABLE IF NOT EXISTS contacts (
            id VARCHAR PRIMARY KEY,
            user_id VARCHAR NOT NULL,
            name VARCHAR NOT NULL,
            company VARCHAR,
            email VARCHAR,
            phone VARCHAR,
            title VARCHAR,
            status VARCHAR,
            score INTEGER,
            persona VARCHAR,
            notes VARCHAR,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            embedding DOUBLE[],
            notes_vector DOUBLE[],
            persona_vector DOUBLE[]
        );
    """,
    "deals": """
        CREATE TABLE IF NOT EXISTS deals (
            id VARCHAR PRIMARY KEY,
            user_id VARCHAR NOT NULL,
            title VARCHAR NOT NULL,
            company VARCHAR,
            value DOUBLE,
            stage VARCHAR,
            priority VARCHAR,
            close_probability INTEGER,
            expected_close_date VARCHAR,
            next_step VARCHAR,
            description VARCHAR,
            outcome VARCHAR,
            contact_id VARCHAR,
            notes VARCHAR,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            embedding DOUBLE[],
            title_vector DOUBLE[],
            description_vector DOUBLE[],
            next_step_vector DOUBLE[]
        );
    """,
    "companies": """
        CREATE TABLE IF NOT EXISTS companies (
            id VARCHAR PRIMARY KEY,
            user_id VARCHAR NOT NULL,
            name VARCHAR NOT NULL,
            industry VARCHAR,
            description VARCHAR,
            notes VARCHAR,
            website VARCHAR,
            size VARCHAR,
            location VARCHAR,
            status VARCHAR,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            description_vector DOUBLE[],
            notes_vector DOUBLE[]
        );
    """,
    "activities": """
        CREATE TABLE IF NOT EXISTS activities (
            id VARCHAR PRIMARY KEY,
            user_id VARCHAR NOT NULL,
            type VARCHAR,
            subject VARCHAR,
            description VARCHAR,
            notes VARCHAR,
            outcome VARCHAR,
            status VARCHAR,
            deal_id VARCHAR,
            contact_id VARCHAR,
            lead_id VARCHAR,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
    """,
    "embedding_metadata": """
        CREATE TABLE IF NOT EXISTS embedding_metadata (
            id VARCHAR PRIMARY KEY,
            user_id VARCHAR NOT NULL,
            table_name VARCHAR NOT NULL,
            record_id VARCHAR NOT NULL,
            field_name VARCHAR NOT NULL,
            text_content VARCHAR NOT NULL,
            embedding_vector DOUBLE[] NOT NULL,
            embedding_model VARCHAR NOT NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(table_name, record_id, field_name)
        );
    """,
    "semantic_searches": """
        CREATE TABLE IF NOT EXISTS semantic_searches (
            id VARCHAR PRIMARY KEY,
            user_id VARCHAR NOT NULL,
            query_text VARCHAR NOT NULL,
            query_vector DOUBLE[],
            search_type VARCHAR NOT NULL,
            similarity_threshold DOUBLE,
            results_count INTEGER,
            search_results VARCHAR,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
    """,
}

# Companies have no composite embedding; description wins over notes.
_SEARCH_VECTOR_EXPR: dict[str, str] = {
    "deals": "embedding",
    "contacts": "embedding",
    "leads": "embedding",
    "companies": "coalesce(description_vector, notes_vector)",
}


def _new_id() -> str:
    return str(uuid.uuid4())


def _blank_to_none(value: str | None) -> str | None:
    if value is None or not str(value).strip():
        return None
    return value


class DuckDBStorage:
    """DuckDB-backed persistence for CRM entities, embeddings, and search history."""

    def __init__(
        self,
        db_path: str,
        *,
        read_only: bool = False,
        initialize: bool = True,
    ) -> None:
        if db_path == ":memory:":
            self.db_path = db_path
        else:
            self.db_path = str(Path(db_path).expanduser().resolve())
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.read_only = read_only
        self._conn = duckdb.connect(self.db_path, read_only=read_only)
        if initialize and not read_only:
            self.initialize()

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        self._conn.close()

    def initialize(self) -> None:
        for ddl in _DDL.values():
            self._conn.execute(ddl)

    # -- helpers -----------------------------------------------------------

    def _fetch(self, sql: str, params: list[Any] | None = None) -> list[dict[str, Any]]:
        # A cursor per call keeps concurrent searches off the shared connection.
        cursor = self._conn.cursor()
        try:
            cursor.execute(sql, params or [])
            columns = [desc[0] for desc in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def _execute(self, sql: str, params: list[Any] | None = None) -> None:
        cursor = self._conn.cursor()
        try:
            cursor.execute(sql, params or [])
        finally:
            cursor.close()

    def _exists(self, table: str, *, record_id: str, user_id: str) -> bool:
        rows = self._fetch(
            f"SELECT id FROM {table} WHERE id = ? AND user_id = ? LIMIT 1",
            [record_id, user_id],
        )
        return bool(rows)

    @staticmethod
    def _select_list(table: str) -> str:
        return ", ".join(TABLE_COLUMNS[table])

    # -- records -----------------------------------------------------------

    def insert_record(self, table: str, values: dict[str, Any]) -> str:
        validate_columns(table, values)
        row = dict(values)
        row.setdefault("id", _new_id())
        columns = list(row)
        placeholders = ", ".join(["?"] * len(columns))
        self._execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
            [row[column] for column in columns],
        )
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
        if not self._exists(table, record_id=record_id, user_id=user_id):
            raise RecordNotFoundError(f"{table} record not found: {record_id}")

        assignments = [f"{column} = ?" for column in values if column not in {"id", "user_id"}]
        params: list[Any] = [values[column] for column in values if column not in {"id", "user_id"}]
        if "updated_at" in TABLE_COLUMNS[table] and "updated_at" not in values:
            assignments.append("updated_at = now()")
        if not assignments:
            return
        params.extend([record_id, user_id])
        self._execute(
            f"UPDATE {table} SET {', '.join(assignments)} WHERE id = ? AND user_id = ?",
            params,
        )

    def delete_record(self, table: str, *, record_id: str, user_id: str) -> None:
        validate_table(table)
        if not self._exists(table, record_id=record_id, user_id=user_id):
            raise RecordNotFoundError(f"{table} record not found: {record_id}")
        self._execute(
            f"DELETE FROM {table} WHERE id = ? AND user_id = ?",
            [record_id, user_id],
        )

    def get_record(
        self, table: str, *, record_id: str, user_id: str
    ) -> dict[str, Any] | None:
        validate_table(table)
        rows = self._fetch(
            f"SELECT {self._select_list(table)} FROM {table} "
            "WHERE id = ? AND user_id = ? LIMIT 1",
            [record_id, user_id],
        )
        return rows[0] if rows else None

    def list_related(
        self,
        table: str,
        *,
        column: str,
        value: str,
        limit: int,
    ) -> list[dict[str, Any]]:
        validate_columns(table, {column: value})
        return self._fetch(
            f"""
            SELECT {self._select_list(table)}
            FROM {table}
            WHERE {column} = ?
            ORDER BY created_at DESC, id ASC
            LIMIT ?
            """,
            [value, limit],
        )

    def find_contacts(
        self,
        *,
        user_id: str,
        email: str | None,
        phone: str | None,
    ) -> list[dict[str, Any]]:
        email = _blank_to_none(email)
        phone = _blank_to_none(phone)
        conditions: list[str] = []
        params: list[Any] = [user_id]
        if email is not None:
            conditions.append("email = ?")
            params.append(email)
        if phone is not None:
            conditions.append("phone = ?")
            params.append(phone)
        if not conditions:
            return []
        return self._fetch(
            f"""
            SELECT {self._select_list("contacts")}
            FROM contacts
            WHERE user_id = ?
              AND ({" OR ".join(conditions)})
            ORDER BY created_at DESC, id ASC
            """,
            params,
        )

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
        if not self._exists(table, record_id=record_id, user_id=user_id):
            raise RecordNotFoundError(f"{table} record not found: {record_id}")
        assignments = [f"{column} = ?::DOUBLE[]", "updated_at = now()"]
        if table == "leads" and column == "embedding":
            assignments.append("embedding_updated_at = now()")
        self._execute(
            f"UPDATE {table} SET {', '.join(assignments)} WHERE id = ? AND user_id = ?",
            [embedding, record_id, user_id],
        )

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
        self._execute(
            """
            INSERT INTO embedding_metadata (
                id, user_id, table_name, record_id, field_name,
                text_content, embedding_vector, embedding_model
            )
            VALUES (?, ?, ?, ?, ?, ?, ?::DOUBLE[], ?)
            ON CONFLICT(table_name, record_id, field_name) DO UPDATE SET
                user_id = excluded.user_id,
                text_content = excluded.text_content,
                embedding_vector = excluded.embedding_vector,
                embedding_model = excluded.embedding_model,
                updated_at = now()
            """,
            [
                _new_id(),
                user_id,
                table,
                record_id,
                field_name,
                text_content,
                embedding,
                model,
            ],
        )

    def get_embedding_metadata(
        self,
        *,
        table: str,
        record_id: str,
        field_name: str | None = None,
    ) -> list[dict[str, Any]]:
        sql = """
            SELECT table_name, record_id, field_name, text_content, embedding_model, updated_at
            FROM embedding_metadata
            WHERE table_name = ? AND record_id = ?
        """
        params: list[Any] = [table, record_id]
        if field_name is not None:
            sql += " AND field_name = ?"
            params.append(field_name)
        sql += " ORDER BY field_name"
        return self._fetch(sql, params)

    def delete_embeddings(self, table: str, *, record_id: str, user_id: str) -> None:
        validate_table(table)
        self._execute(
            """
            DELETE FROM embedding_metadata
            WHERE table_name = ? AND record_id = ? AND user_id = ?
            """,
            [table, record_id, user_id],
        )
        columns = VECTOR_COLUMNS[table]
        if not columns:
            return
        assignments = ", ".join(f"{column} = NULL" for column in columns)
        self._execute(
            f"UPDATE {table} SET {assignments} WHERE id = ? AND user_id = ?",
            [record_id, user_id],
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
        vector_expr = _SEARCH_VECTOR_EXPR[entity_type]
        columns = ", ".join(SEARCH_COLUMNS[entity_type])
        return self._fetch(
            f"""
            SELECT * FROM (
                SELECT
                    {columns},
                    list_cosine_similarity({vector_expr}, ?::DOUBLE[]) AS similarity
                FROM {entity_type}
                WHERE user_id = ?
                  AND {vector_expr} IS NOT NULL
            ) scored
            WHERE similarity > ?
            ORDER BY similarity DESC, id ASC
            LIMIT ?
            """,
            [query_embedding, user_id, similarity_threshold, match_count],
        )

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
        clause = " OR ".join(f"{field} ILIKE '%' || ? || '%'" for field in fields)
        params: list[Any] = [user_id]
        params.extend([query] * len(fields))
        params.append(limit)
        return self._fetch(
            f"""
            SELECT {self._select_list(table)}
            FROM {table}
            WHERE user_id = ?
              AND ({clause})
            ORDER BY created_at DESC, id ASC
            LIMIT ?
            """,
            params,
        )

    def records_missing_embedding(
        self,
        table: str,
        *,
        user_id: str,
        column: str,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        validate_vector_column(table, column)
        sql = f"""
            SELECT {self._select_list(table)}
            FROM {table}
            WHERE user_id = ? AND {column} IS NULL
            ORDER BY created_at ASC, id ASC
        """
        params: list[Any] = [user_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return self._fetch(sql, params)

    def count_records(
        self,
        table: str,
        *,
        user_id: str,
        with_embedding: str | None = None,
    ) -> int:
        validate_table(table)
        sql = f"SELECT COUNT(*) AS n FROM {table} WHERE user_id = ?"
        if with_embedding is not None:
            validate_vector_column(table, with_embedding)
            sql += f" AND {with_embedding} IS NOT NULL"
        rows = self._fetch(sql, [user_id])
        return int(rows[0]["n"]) if rows else 0

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
        search_id = _new_id()
        self._execute(
            """
            INSERT INTO semantic_searches (
                id, user_id, query_text, query_vector, search_type, similarity_threshold
            )
            VALUES (?, ?, ?, ?::DOUBLE[], ?, ?)
            """,
            [
                search_id,
                user_id,
                query_text,
                query_embedding,
                search_type,
                similarity_threshold,
            ],
        )
        return search_id

    def complete_search(
        self,
        *,
        search_id: str,
        results_count: int,
        results: list[dict[str, Any]],
    ) -> None:
        self._execute(
            """
            UPDATE semantic_searches
            SET results_count = ?, search_results = ?
            WHERE id = ?
            """,
            [results_count, json.dumps(results, sort_keys=True, default=str), search_id],
        )

    def list_searches(self, *, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        rows = self._fetch(
            """
            SELECT id, query_text, search_type, similarity_threshold,
                   results_count, search_results, created_at
            FROM semantic_searches
            WHERE user_id = ?
            ORDER BY created_at DESC
            LIMIT ?
            """,
            [user_id, limit],
        )
        for row in rows:
            raw = row.get("search_results")
            row["search_results"] = json.loads(raw) if raw else []
        return rows
