"""Storage for workflow definitions and request history."""

from __future__ import annotations

import logging
from typing import Optional

from ..config import load_config
from .inmemory import InMemoryWorkflowRepository
from .models import HistoryEntry
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresWorkflowRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresWorkflowRepository = None  # type: ignore

logger = logging.getLogger(__name__)

_repository_instance: WorkflowRepository | None = None


def open_repository(database_url: Optional[str]) -> WorkflowRepository:
    """Build the backend named by ``database_url``.

    ``sqlite://<path>`` and ``postgres(ql)://...`` select a database;
    an empty URL keeps everything in memory for the life of the process.
    """
    if not database_url:
        return InMemoryWorkflowRepository()

    scheme, _, location = database_url.partition("://")
    if scheme == "sqlite":
        return SQLiteWorkflowRepository(location)
    if scheme in ("postgres", "postgresql"):
        if PostgresWorkflowRepository is None:
            raise RuntimeError("Postgres history requires the 'postgres' extra (asyncpg)")
        return PostgresWorkflowRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


def get_repository(database_url: Optional[str] = None) -> WorkflowRepository:
    """Return the repository shared by the CLI and the engine.

    Without ``database_url`` the cached repository is reused, or one is
    opened from ``load_config().database_url`` (which already honours
    ``APIFLOW_DATABASE_URL``/``DATABASE_URL``). An explicit URL replaces
    the cached repository.
    """
    global _repository_instance
    if database_url is None and _repository_instance is not None:
        return _repository_instance

    url = database_url if database_url is not None else load_config().database_url
    repository = open_repository(url)
    logger.debug(f"Using {type(repository).__name__} for workflows and history")
    _repository_instance = repository
    return repository


__all__ = [
    "HistoryEntry",
    "InMemoryWorkflowRepository",
    "PostgresWorkflowRepository",
    "SQLiteWorkflowRepository",
    "WorkflowRepository",
    "get_repository",
    "open_repository",
]
