"""Repository abstractions for stepwright persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from ..contracts import WorkflowTemplate
from ..quality.models import ReviewRequest
from ..registry.models import ModelInfo, ModelMetrics
from ..usage.models import UsageLimits, UsageRecord
from .models import WorkflowBackup, WorkflowInstance


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends."""

    async def save_workflow(self, workflow: WorkflowInstance) -> None:
        """Insert or replace the workflow record."""

    async def get_workflow(self, workflow_id: str) -> WorkflowInstance | None:
        """Retrieve the workflow instance by id."""

    async def list_workflows(self, status: Optional[str] = None) -> list[WorkflowInstance]:
        """Return persisted workflows, optionally filtered by status."""

    async def delete_workflow(self, workflow_id: str) -> None:
        """Remove a workflow record."""

    async def delete_workflows(self, status: str, updated_before: datetime) -> int:
        """Remove workflows in ``status`` last updated before the cutoff."""

    async def save_backup(self, backup: WorkflowBackup) -> None:
        """Persist a workflow snapshot."""

    async def get_backup(
        self, workflow_id: str, backup_id: Optional[str] = None
    ) -> WorkflowBackup | None:
        """Return the named backup, or the most recent one when no id is given."""

    async def list_backups(self, workflow_id: str) -> list[WorkflowBackup]:
        """Return snapshots for a workflow, newest first."""

    async def save_template(self, template: WorkflowTemplate) -> None:
        """Insert or replace a workflow template."""

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        """Retrieve a template by id."""

    async def list_templates(self) -> list[WorkflowTemplate]:
        """Return all stored templates."""


class ModelCatalog(Protocol):
    """Protocol for model metadata storage."""

    async def list_models(self, active_only: bool = True) -> list[ModelInfo]:
        """Return known models."""

    async def get_model(self, ref: str) -> ModelInfo | None:
        """Retrieve a model by catalog id, ``provider:model_id`` or unique model id."""

    async def save_model(self, model: ModelInfo) -> None:
        """Insert or replace model metadata."""

    async def update_model_metrics(self, ref: str, metrics: ModelMetrics) -> None:
        """Update the live performance record in place."""


class ReviewRepository(Protocol):
    """Protocol for human review request storage."""

    async def create_review(self, review: ReviewRequest) -> None:
        """Persist a new review request."""

    async def save_review(self, review: ReviewRequest) -> None:
        """Replace an existing review request."""

    async def get_review(self, review_id: str) -> ReviewRequest | None:
        """Retrieve a review request by id."""

    async def list_reviews(self, status: Optional[str] = None) -> list[ReviewRequest]:
        """Return review requests, optionally filtered by status."""


class UsageLedger(Protocol):
    """Protocol for the append-only usage ledger and per-user limits."""

    async def append_usage(self, record: UsageRecord) -> None:
        """Append an immutable usage row."""

    async def list_usage(
        self, user_id: str, start: datetime, end: Optional[datetime] = None
    ) -> list[UsageRecord]:
        """Return a user's rows with ``start <= created_at < end``, oldest first."""

    async def get_limits(self, user_id: str) -> UsageLimits | None:
        """Return the user's configured limits, if any."""

    async def upsert_limits(self, user_id: str, limits: UsageLimits) -> None:
        """Insert or replace the user's limits."""
