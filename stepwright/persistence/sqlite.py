"""SQLite implementations of the stepwright repositories."""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..contracts import WorkflowTemplate
from ..errors import PersistenceError
from ..quality.models import ReviewRequest
from ..registry.models import ModelInfo, ModelMetrics, find_model
from .models import WorkflowBackup, WorkflowInstance


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


class _SQLiteStore:
    """Shared connection handling for the SQLite repositories.

    Each record is stored as a JSON document next to the handful of columns
    the queries filter on.
    """

    schema: tuple[str, ...] = ()

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open SQLite database {self.db_path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        for statement in self.schema:
            cur.execute(statement)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        try:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        try:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        try:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc

    def close(self) -> None:
        self._conn.close()


class SQLiteWorkflowRepository(_SQLiteStore):
    """Persist workflow state, backups and templates using SQLite."""

    schema = (
        """
        CREATE TABLE IF NOT EXISTS workflows (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            status TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            data TEXT NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS workflow_backups (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL UNIQUE,
            workflow_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            data TEXT NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS workflow_templates (
            id TEXT PRIMARY KEY,
            data TEXT NOT NULL
        )
        """,
    )

    # ------------------------------------------------------------------
    # Workflows
    async def save_workflow(self, workflow: WorkflowInstance) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflows (id, user_id, status, updated_at, data)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                user_id = excluded.user_id,
                status = excluded.status,
                updated_at = excluded.updated_at,
                data = excluded.data
            """,
            workflow.id,
            workflow.user_id,
            workflow.status,
            _iso(workflow.updated_at),
            workflow.model_dump_json(),
        )

    async def get_workflow(self, workflow_id: str) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM workflows WHERE id = ?", workflow_id
        )
        if not row:
            return None
        return WorkflowInstance.model_validate_json(row["data"])

    async def list_workflows(self, status: Optional[str] = None) -> list[WorkflowInstance]:
        if status is None:
            rows = await asyncio.to_thread(
                self._fetchall, "SELECT data FROM workflows ORDER BY updated_at"
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT data FROM workflows WHERE status = ? ORDER BY updated_at",
                status,
            )
        return [WorkflowInstance.model_validate_json(r["data"]) for r in rows]

    async def delete_workflow(self, workflow_id: str) -> None:
        await asyncio.to_thread(
            self._execute, "DELETE FROM workflows WHERE id = ?", workflow_id
        )

    async def delete_workflows(self, status: str, updated_before: datetime) -> int:
        return await asyncio.to_thread(
            self._execute,
            "DELETE FROM workflows WHERE status = ? AND updated_at < ?",
            status,
            _iso(updated_before),
        )

    # ------------------------------------------------------------------
    # Backups
    async def save_backup(self, backup: WorkflowBackup) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO workflow_backups (id, workflow_id, created_at, data) VALUES (?, ?, ?, ?)",
            backup.id,
            backup.workflow_id,
            _iso(backup.created_at),
            backup.model_dump_json(),
        )

    async def get_backup(
        self, workflow_id: str, backup_id: Optional[str] = None
    ) -> WorkflowBackup | None:
        if backup_id is not None:
            row = await asyncio.to_thread(
                self._fetchone,
                "SELECT data FROM workflow_backups WHERE workflow_id = ? AND id = ?",
                workflow_id,
                backup_id,
            )
        else:
            row = await asyncio.to_thread(
                self._fetchone,
                """
                SELECT data FROM workflow_backups WHERE workflow_id = ?
                ORDER BY created_at DESC, seq DESC LIMIT 1
                """,
                workflow_id,
            )
        if not row:
            return None
        return WorkflowBackup.model_validate_json(row["data"])

    async def list_backups(self, workflow_id: str) -> list[WorkflowBackup]:
        rows = await asyncio.to_thread(
            self._fetchall,
            """
            SELECT data FROM workflow_backups WHERE workflow_id = ?
            ORDER BY created_at DESC, seq DESC
            """,
            workflow_id,
        )
        return [WorkflowBackup.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    # Templates
    async def save_template(self, template: WorkflowTemplate) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_templates (id, data) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET data = excluded.data
            """,
            template.id,
            template.model_dump_json(),
        )

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM workflow_templates WHERE id = ?", template_id
        )
        if not row:
            return None
        return WorkflowTemplate.model_validate_json(row["data"])

    async def list_templates(self) -> list[WorkflowTemplate]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT data FROM workflow_templates ORDER BY id"
        )
        return [WorkflowTemplate.model_validate_json(r["data"]) for r in rows]


class SQLiteModelCatalog(_SQLiteStore):
    """Model metadata stored in SQLite."""

    schema = (
        """
        CREATE TABLE IF NOT EXISTS ai_models (
            id TEXT PRIMARY KEY,
            provider_id TEXT NOT NULL,
            model_id TEXT NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            data TEXT NOT NULL
        )
        """,
    )

    async def list_models(self, active_only: bool = True) -> list[ModelInfo]:
        query = "SELECT data FROM ai_models"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY provider_id, model_id"
        rows = await asyncio.to_thread(self._fetchall, query)
        return [ModelInfo.model_validate_json(r["data"]) for r in rows]

    async def get_model(self, ref: str) -> ModelInfo | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM ai_models WHERE id = ?", ref
        )
        if row:
            return ModelInfo.model_validate_json(row["data"])
        return find_model(await self.list_models(active_only=False), ref)

    async def save_model(self, model: ModelInfo) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO ai_models (id, provider_id, model_id, is_active, data)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                provider_id = excluded.provider_id,
                model_id = excluded.model_id,
                is_active = excluded.is_active,
                data = excluded.data
            """,
            model.id,
            model.provider_id,
            model.model_id,
            1 if model.is_active else 0,
            model.model_dump_json(),
        )

    async def update_model_metrics(self, ref: str, metrics: ModelMetrics) -> None:
        model = await self.get_model(ref)
        if model is None:
            return
        model.metrics = metrics
        await self.save_model(model)


class SQLiteReviewRepository(_SQLiteStore):
    """Human review requests stored in SQLite."""

    schema = (
        """
        CREATE TABLE IF NOT EXISTS human_review_requests (
            id TEXT PRIMARY KEY,
            status TEXT NOT NULL,
            created_at TEXT NOT NULL,
            data TEXT NOT NULL
        )
        """,
    )

    async def create_review(self, review: ReviewRequest) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO human_review_requests (id, status, created_at, data) VALUES (?, ?, ?, ?)",
            review.id,
            review.status,
            _iso(review.created_at),
            review.model_dump_json(),
        )

    async def save_review(self, review: ReviewRequest) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE human_review_requests SET status = ?, data = ? WHERE id = ?",
            review.status,
            review.model_dump_json(),
            review.id,
        )

    async def get_review(self, review_id: str) -> ReviewRequest | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM human_review_requests WHERE id = ?", review_id
        )
        if not row:
            return None
        return ReviewRequest.model_validate_json(row["data"])

    async def list_reviews(self, status: Optional[str] = None) -> list[ReviewRequest]:
        if status is None:
            rows = await asyncio.to_thread(
                self._fetchall, "SELECT data FROM human_review_requests ORDER BY created_at"
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT data FROM human_review_requests WHERE status = ? ORDER BY created_at",
                status,
            )
        return [ReviewRequest.model_validate_json(r["data"]) for r in rows]
