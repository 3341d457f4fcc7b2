"""Persistence layer for service requests."""

from __future__ import annotations

import os
from typing import Optional

from ..config import CaseflowConfig, load_config
from .inmemory import InMemoryRequestStore
from .models import RequestFilter
from .repository import RequestStore
from .sqlite import SQLiteRequestStore

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresRequestStore
except ImportError:  # pragma: no cover - optional dependency
    PostgresRequestStore = None  # type: ignore

_store_instance: RequestStore | None = None


def get_request_store(
    database_url: Optional[str] = None, config: Optional[CaseflowConfig] = None
) -> RequestStore:
    """Factory function to obtain a request store.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``CASEFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory store is returned.
    """

    global _store_instance
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("CASEFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        _store_instance = InMemoryRequestStore()
        return _store_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _store_instance = SQLiteRequestStore(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresRequestStore is None:
            raise RuntimeError("Postgres support not available; install caseflow[postgres]")
        _store_instance = PostgresRequestStore(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _store_instance


__all__ = [
    "RequestFilter",
    "RequestStore",
    "InMemoryRequestStore",
    "SQLiteRequestStore",
    "PostgresRequestStore",
    "get_request_store",
]
