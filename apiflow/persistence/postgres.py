"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
import uuid
from typing import Any

import asyncpg

from ..contracts import Workflow
from .models import HistoryEntry
from .repository import WorkflowRepository


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflows and history using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                name TEXT,
                definition JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS request_history (
                id SERIAL PRIMARY KEY,
                user_id TEXT NOT NULL,
                workflow_id TEXT,
                step_order INTEGER,
                request JSONB,
                response JSONB,
                duration DOUBLE PRECISION,
                success BOOLEAN NOT NULL,
                source TEXT NOT NULL,
                timestamp TIMESTAMPTZ NOT NULL
            )
            """
        )

    @staticmethod
    def _load_json(value: Any) -> Any:
        return json.loads(value) if isinstance(value, str) else value

    # ------------------------------------------------------------------
    async def save_workflow(self, workflow: Workflow) -> str:
        workflow_id = workflow.id or str(uuid.uuid4())
        stored = workflow.model_copy(update={"id": workflow_id})
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflows (id, name, definition) VALUES ($1, $2, $3)
                ON CONFLICT (id) DO UPDATE SET name = $2, definition = $3
                """,
                workflow_id,
                stored.name,
                stored.model_dump_json(by_alias=True),
            )
        finally:
            await conn.close()
        return workflow_id

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT definition FROM workflows WHERE id = $1", workflow_id
            )
        finally:
            await conn.close()
        if not row:
            return None
        return Workflow.model_validate(self._load_json(row["definition"]))

    async def list_workflows(self) -> list[Workflow]:
        conn = await self._connect()
        try:
            rows = await conn.fetch("SELECT definition FROM workflows ORDER BY name")
        finally:
            await conn.close()
        return [Workflow.model_validate(self._load_json(r["definition"])) for r in rows]

    async def record_history(self, entry: HistoryEntry) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO request_history
                    (user_id, workflow_id, step_order, request, response,
                     duration, success, source, timestamp)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                """,
                entry.user_id,
                entry.workflow_id,
                entry.step_order,
                json.dumps(entry.request, default=str),
                json.dumps(entry.response, default=str),
                entry.duration,
                entry.success,
                entry.source,
                entry.timestamp,
            )
        finally:
            await conn.close()

    async def list_history(
        self, workflow_id: str | None = None, limit: int | None = None
    ) -> list[HistoryEntry]:
        query = "SELECT * FROM request_history"
        params: list[Any] = []
        if workflow_id is not None:
            params.append(workflow_id)
            query += f" WHERE workflow_id = ${len(params)}"
        query += " ORDER BY id DESC"
        if limit:
            params.append(limit)
            query += f" LIMIT ${len(params)}"
        conn = await self._connect()
        try:
            rows = await conn.fetch(query, *params)
        finally:
            await conn.close()
        return [
            HistoryEntry(
                id=r["id"],
                user_id=r["user_id"],
                workflow_id=r["workflow_id"],
                step_order=r["step_order"],
                request=self._load_json(r["request"]) or {},
                response=self._load_json(r["response"]) or {},
                duration=r["duration"] or 0.0,
                success=r["success"],
                source=r["source"],
                timestamp=r["timestamp"],
            )
            for r in rows
        ]
