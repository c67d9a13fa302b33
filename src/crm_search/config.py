"""
Configuration helpers for storage, models and search defaults.
"""

from __future__ import annotations

import os
from pathlib import Path


DEFAULT_DB_PATH = "~/.crm_search/crm.duckdb"
ENV_DB_PATH = "CRM_SEARCH_DB_PATH"
ENV_BACKEND = "CRM_SEARCH_BACKEND"
ENV_SIMILARITY_FLOOR = "CRM_SEARCH_SIMILARITY_FLOOR"
ENV_API_KEY = "GOOGLE_API_KEY"

DEFAULT_BACKEND = "duckdb"
DEFAULT_SIMILARITY_FLOOR = 0.01

SUPPORTED_BACKENDS = ("duckdb", "supabase")


def resolve_db_path(override_path: str | None = None) -> str:
    """
    Resolve the DuckDB path from CLI override, env var, or default.

    Precedence:
    1) explicit override_path
    2) CRM_SEARCH_DB_PATH
    3) default path
    """
    raw_path = override_path or os.getenv(ENV_DB_PATH) or DEFAULT_DB_PATH
    resolved = Path(raw_path).expanduser().resolve()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return str(resolved)


def resolve_backend(override: str | None = None) -> str:
    """Return the storage backend name, validated."""
    backend = (override or os.getenv(ENV_BACKEND) or DEFAULT_BACKEND).strip().lower()
    if backend not in SUPPORTED_BACKENDS:
        raise ValueError(
            f"Unsupported storage backend {backend!r}. "
            f"Expected one of: {', '.join(SUPPORTED_BACKENDS)}"
        )
    return backend


def resolve_similarity_floor() -> float | None:
    """
    Return the threshold every similarity search runs with.

    ``none`` (or an empty value) disables the override so requested
    thresholds are honoured.
    """
    raw = os.getenv(ENV_SIMILARITY_FLOOR)
    if raw is None:
        return DEFAULT_SIMILARITY_FLOOR
    text = raw.strip().lower()
    if text in {"", "none", "off"}:
        return None
    try:
        return float(text)
    except ValueError as exc:
        raise ValueError(
            f"{ENV_SIMILARITY_FLOOR} must be a number or 'none', got {raw!r}"
        ) from exc


def is_llm_configured() -> bool:
    """True when an API key for the language model is available."""
    api_key = os.getenv(ENV_API_KEY)
    return bool(api_key and api_key.strip())
