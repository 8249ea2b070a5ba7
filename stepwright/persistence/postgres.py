"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import asyncpg

from ..contracts import WorkflowTemplate
from ..errors import PersistenceError
from .models import WorkflowBackup, WorkflowInstance


class PostgresWorkflowRepository:
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        try:
            conn = await asyncpg.connect(self._dsn)
        except (OSError, asyncpg.PostgresError) as exc:
            raise PersistenceError(f"Cannot connect to Postgres: {exc}") from exc
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                status TEXT NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_backups (
                seq SERIAL PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                workflow_id TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_templates (
                id TEXT PRIMARY KEY,
                data JSONB NOT NULL
            )
            """
        )

    async def _run(self, query: str, *params) -> str:
        conn = await self._connect()
        try:
            return await conn.execute(query, *params)
        except asyncpg.PostgresError as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            await conn.close()

    async def _fetchrow(self, query: str, *params) -> Optional[asyncpg.Record]:
        conn = await self._connect()
        try:
            return await conn.fetchrow(query, *params)
        except asyncpg.PostgresError as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            await conn.close()

    async def _fetch(self, query: str, *params) -> list[asyncpg.Record]:
        conn = await self._connect()
        try:
            return await conn.fetch(query, *params)
        except asyncpg.PostgresError as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    async def save_workflow(self, workflow: WorkflowInstance) -> None:
        await self._run(
            """
            INSERT INTO workflows (id, user_id, status, updated_at, data)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (id) DO UPDATE SET
                user_id = EXCLUDED.user_id,
                status = EXCLUDED.status,
                updated_at = EXCLUDED.updated_at,
                data = EXCLUDED.data
            """,
            workflow.id,
            workflow.user_id,
            workflow.status,
            workflow.updated_at,
            workflow.model_dump_json(),
        )

    async def get_workflow(self, workflow_id: str) -> WorkflowInstance | None:
        row = await self._fetchrow("SELECT data FROM workflows WHERE id = $1", workflow_id)
        if not row:
            return None
        return WorkflowInstance.model_validate_json(row["data"])

    async def list_workflows(self, status: Optional[str] = None) -> list[WorkflowInstance]:
        if status is None:
            rows = await self._fetch("SELECT data FROM workflows ORDER BY updated_at")
        else:
            rows = await self._fetch(
                "SELECT data FROM workflows WHERE status = $1 ORDER BY updated_at", status
            )
        return [WorkflowInstance.model_validate_json(r["data"]) for r in rows]

    async def delete_workflow(self, workflow_id: str) -> None:
        await self._run("DELETE FROM workflows WHERE id = $1", workflow_id)

    async def delete_workflows(self, status: str, updated_before: datetime) -> int:
        result = await self._run(
            "DELETE FROM workflows WHERE status = $1 AND updated_at < $2",
            status,
            updated_before,
        )
        # asyncpg returns the command tag, e.g. "DELETE 3"
        return int(result.split()[-1])

    # ------------------------------------------------------------------
    async def save_backup(self, backup: WorkflowBackup) -> None:
        await self._run(
            "INSERT INTO workflow_backups (id, workflow_id, created_at, data) VALUES ($1, $2, $3, $4)",
            backup.id,
            backup.workflow_id,
            backup.created_at,
            backup.model_dump_json(),
        )

    async def get_backup(
        self, workflow_id: str, backup_id: Optional[str] = None
    ) -> WorkflowBackup | None:
        if backup_id is not None:
            row = await self._fetchrow(
                "SELECT data FROM workflow_backups WHERE workflow_id = $1 AND id = $2",
                workflow_id,
                backup_id,
            )
        else:
            row = await self._fetchrow(
                """
                SELECT data FROM workflow_backups WHERE workflow_id = $1
                ORDER BY created_at DESC, seq DESC LIMIT 1
                """,
                workflow_id,
            )
        if not row:
            return None
        return WorkflowBackup.model_validate_json(row["data"])

    async def list_backups(self, workflow_id: str) -> list[WorkflowBackup]:
        rows = await self._fetch(
            """
            SELECT data FROM workflow_backups WHERE workflow_id = $1
            ORDER BY created_at DESC, seq DESC
            """,
            workflow_id,
        )
        return [WorkflowBackup.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    async def save_template(self, template: WorkflowTemplate) -> None:
        await self._run(
            """
            INSERT INTO workflow_templates (id, data) VALUES ($1, $2)
            ON CONFLICT (id) DO UPDATE SET data = EXCLUDED.data
            """,
            template.id,
            template.model_dump_json(),
        )

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        row = await self._fetchrow(
            "SELECT data FROM workflow_templates WHERE id = $1", template_id
        )
        if not row:
            return None
        return WorkflowTemplate.model_validate_json(row["data"])

    async def list_templates(self) -> list[WorkflowTemplate]:
        rows = await self._fetch("SELECT data FROM workflow_templates ORDER BY id")
        return [WorkflowTemplate.model_validate_json(r["data"]) for r in rows]
