"""Persistence layer for longsteps processes."""

from __future__ import annotations

import os
from typing import Optional

from ..config import LongStepsConfig, load_config
from .inmemory import InMemoryProcessStorage
from .repository import ProcessStorage
from .sqlite import SQLiteProcessStorage

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresProcessStorage
except ImportError:  # pragma: no cover - optional dependency
    PostgresProcessStorage = None  # type: ignore


def get_storage(
    database_url: Optional[str] = None, config: Optional[LongStepsConfig] = None
) -> ProcessStorage:
    """Factory function to obtain a process storage.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``LONGSTEPS_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory storage is returned.
    """

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("LONGSTEPS_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        return InMemoryProcessStorage()

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        return SQLiteProcessStorage(path, batch_size=config.claim_batch_size)
    if database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresProcessStorage is None:
            raise RuntimeError("Postgres support not available (install asyncpg)")
        return PostgresProcessStorage(database_url, batch_size=config.claim_batch_size)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "ProcessStorage",
    "InMemoryProcessStorage",
    "SQLiteProcessStorage",
    "PostgresProcessStorage",
    "get_storage",
]
