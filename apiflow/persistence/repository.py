"""Repository abstraction for workflow storage and request history."""

from __future__ import annotations

from typing import Protocol

from ..contracts import Workflow
from .models import HistoryEntry


class WorkflowRepository(Protocol):
    """Protocol for persistence backends."""

    async def save_workflow(self, workflow: Workflow) -> str:
        """Persist ``workflow`` and return its id (assigned when missing)."""

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Retrieve a workflow definition by id."""

    async def list_workflows(self) -> list[Workflow]:
        """Return all stored workflow definitions."""

    async def record_history(self, entry: HistoryEntry) -> None:
        """Append a request history entry."""

    async def list_history(
        self, workflow_id: str | None = None, limit: int | None = None
    ) -> list[HistoryEntry]:
        """Return history entries, newest first."""
