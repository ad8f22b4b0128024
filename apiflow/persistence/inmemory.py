"""In-memory implementation of the workflow repository."""

from __future__ import annotations

import uuid
from typing import Dict, List

from ..contracts import Workflow
from .models import HistoryEntry
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflows and history in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, Workflow] = {}
        self._history: List[HistoryEntry] = []
        self._history_id = 0

    # ------------------------------------------------------------------
    async def save_workflow(self, workflow: Workflow) -> str:
        workflow_id = workflow.id or str(uuid.uuid4())
        self._workflows[workflow_id] = workflow.model_copy(
            update={"id": workflow_id}, deep=True
        )
        return workflow_id

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        return self._workflows.get(workflow_id)

    async def list_workflows(self) -> list[Workflow]:
        return list(self._workflows.values())

    async def record_history(self, entry: HistoryEntry) -> None:
        self._history_id += 1
        self._history.append(entry.model_copy(update={"id": self._history_id}))

    async def list_history(
        self, workflow_id: str | None = None, limit: int | None = None
    ) -> list[HistoryEntry]:
        entries = [
            e for e in reversed(self._history)
            if workflow_id is None or e.workflow_id == workflow_id
        ]
        return entries[:limit] if limit else entries
