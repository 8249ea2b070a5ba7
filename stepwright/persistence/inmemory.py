"""In-memory implementations of the stepwright repositories."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional

from ..contracts import WorkflowTemplate
from ..quality.models import ReviewRequest
from ..registry.models import ModelInfo, ModelMetrics, find_model
from ..usage.models import UsageLimits, UsageRecord
from .models import WorkflowBackup, WorkflowInstance


class InMemoryWorkflowRepository:
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, WorkflowInstance] = {}
        self._backups: Dict[str, List[WorkflowBackup]] = defaultdict(list)
        self._templates: Dict[str, WorkflowTemplate] = {}

    # ------------------------------------------------------------------
    async def save_workflow(self, workflow: WorkflowInstance) -> None:
        self._workflows[workflow.id] = workflow.model_copy(deep=True)

    async def get_workflow(self, workflow_id: str) -> WorkflowInstance | None:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def list_workflows(self, status: Optional[str] = None) -> list[WorkflowInstance]:
        return [
            wf.model_copy(deep=True)
            for wf in self._workflows.values()
            if status is None or wf.status == status
        ]

    async def delete_workflow(self, workflow_id: str) -> None:
        self._workflows.pop(workflow_id, None)

    async def delete_workflows(self, status: str, updated_before: datetime) -> int:
        doomed = [
            wf_id
            for wf_id, wf in self._workflows.items()
            if wf.status == status and wf.updated_at < updated_before
        ]
        for wf_id in doomed:
            del self._workflows[wf_id]
        return len(doomed)

    # ------------------------------------------------------------------
    async def save_backup(self, backup: WorkflowBackup) -> None:
        self._backups[backup.workflow_id].append(backup.model_copy(deep=True))

    async def get_backup(
        self, workflow_id: str, backup_id: Optional[str] = None
    ) -> WorkflowBackup | None:
        backups = self._backups.get(workflow_id, [])
        if backup_id is not None:
            found = next((b for b in backups if b.id == backup_id), None)
        else:
            found = backups[-1] if backups else None
        return found.model_copy(deep=True) if found else None

    async def list_backups(self, workflow_id: str) -> list[WorkflowBackup]:
        return [b.model_copy(deep=True) for b in reversed(self._backups.get(workflow_id, []))]

    # ------------------------------------------------------------------
    async def save_template(self, template: WorkflowTemplate) -> None:
        self._templates[template.id] = template.model_copy(deep=True)

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        tpl = self._templates.get(template_id)
        return tpl.model_copy(deep=True) if tpl else None

    async def list_templates(self) -> list[WorkflowTemplate]:
        return [tpl.model_copy(deep=True) for tpl in self._templates.values()]


class InMemoryModelCatalog:
    """Model metadata kept in a dictionary keyed by catalog id."""

    def __init__(self, models: Optional[List[ModelInfo]] = None) -> None:
        self._models: Dict[str, ModelInfo] = {}
        for model in models or []:
            self._models[model.id] = model.model_copy(deep=True)

    async def list_models(self, active_only: bool = True) -> list[ModelInfo]:
        return [
            m.model_copy(deep=True)
            for m in self._models.values()
            if m.is_active or not active_only
        ]

    async def get_model(self, ref: str) -> ModelInfo | None:
        model = find_model(self._models.values(), ref)
        return model.model_copy(deep=True) if model else None

    async def save_model(self, model: ModelInfo) -> None:
        self._models[model.id] = model.model_copy(deep=True)

    async def update_model_metrics(self, ref: str, metrics: ModelMetrics) -> None:
        model = find_model(self._models.values(), ref)
        if model:
            model.metrics = metrics.model_copy()


class InMemoryReviewRepository:
    def __init__(self) -> None:
        self._reviews: Dict[str, ReviewRequest] = {}

    async def create_review(self, review: ReviewRequest) -> None:
        self._reviews[review.id] = review.model_copy(deep=True)

    async def save_review(self, review: ReviewRequest) -> None:
        self._reviews[review.id] = review.model_copy(deep=True)

    async def get_review(self, review_id: str) -> ReviewRequest | None:
        review = self._reviews.get(review_id)
        return review.model_copy(deep=True) if review else None

    async def list_reviews(self, status: Optional[str] = None) -> list[ReviewRequest]:
        return [
            r.model_copy(deep=True)
            for r in self._reviews.values()
            if status is None or r.status == status
        ]


class InMemoryUsageLedger:
    def __init__(self) -> None:
        self._records: List[UsageRecord] = []
        self._limits: Dict[str, UsageLimits] = {}

    async def append_usage(self, record: UsageRecord) -> None:
        self._records.append(record.model_copy())

    async def list_usage(
        self, user_id: str, start: datetime, end: Optional[datetime] = None
    ) -> list[UsageRecord]:
        rows = [
            r
            for r in self._records
            if r.user_id == user_id
            and r.created_at >= start
            and (end is None or r.created_at < end)
        ]
        return sorted(rows, key=lambda r: r.created_at)

    async def get_limits(self, user_id: str) -> UsageLimits | None:
        limits = self._limits.get(user_id)
        return limits.model_copy() if limits else None

    async def upsert_limits(self, user_id: str, limits: UsageLimits) -> None:
        self._limits[user_id] = limits.model_copy()
