"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from ..contracts import Workflow
from .models import HistoryEntry
from .repository import WorkflowRepository


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflows and history using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                name TEXT,
                definition TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS request_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                workflow_id TEXT,
                step_order INTEGER,
                request TEXT,
                response TEXT,
                duration REAL,
                success INTEGER NOT NULL,
                source TEXT NOT NULL,
                timestamp TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _history_from_row(row: sqlite3.Row) -> HistoryEntry:
        return HistoryEntry(
            id=row["id"],
            user_id=row["user_id"],
            workflow_id=row["workflow_id"],
            step_order=row["step_order"],
            request=json.loads(row["request"]) if row["request"] else {},
            response=json.loads(row["response"]) if row["response"] else {},
            duration=row["duration"] or 0.0,
            success=bool(row["success"]),
            source=row["source"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
        )

    # ------------------------------------------------------------------
    # Repository API
    async def save_workflow(self, workflow: Workflow) -> str:
        workflow_id = workflow.id or str(uuid.uuid4())
        stored = workflow.model_copy(update={"id": workflow_id})
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO workflows (id, name, definition) VALUES (?, ?, ?)",
            workflow_id,
            stored.name,
            stored.model_dump_json(by_alias=True),
        )
        return workflow_id

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT definition FROM workflows WHERE id = ?",
            workflow_id,
        )
        if not row:
            return None
        return Workflow.model_validate_json(row["definition"])

    async def list_workflows(self) -> list[Workflow]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT definition FROM workflows ORDER BY name"
        )
        return [Workflow.model_validate_json(row["definition"]) for row in rows]

    async def record_history(self, entry: HistoryEntry) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO request_history
                (user_id, workflow_id, step_order, request, response,
                 duration, success, source, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            entry.user_id,
            entry.workflow_id,
            entry.step_order,
            json.dumps(entry.request, default=str),
            json.dumps(entry.response, default=str),
            entry.duration,
            int(entry.success),
            entry.source,
            entry.timestamp.isoformat(),
        )

    async def list_history(
        self, workflow_id: str | None = None, limit: int | None = None
    ) -> list[HistoryEntry]:
        query = "SELECT * FROM request_history"
        params: list[Any] = []
        if workflow_id is not None:
            query += " WHERE workflow_id = ?"
            params.append(workflow_id)
        query += " ORDER BY id DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [self._history_from_row(row) for row in rows]
