"""Data models for persisted workflow state."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..contracts import (
    AgentStep,
    WorkflowContext,
    WorkflowProgress,
    WorkflowStatus,
    utc_now,
)

TERMINAL_STATUSES = frozenset({"completed", "cancelled"})


class WorkflowInstance(BaseModel):
    """Persisted workflow instance data."""

    id: str
    user_id: str
    template_id: Optional[str] = None
    status: WorkflowStatus = "pending"
    current_step: str = ""
    steps: List[AgentStep] = Field(default_factory=list)
    context: WorkflowContext = Field(default_factory=WorkflowContext)
    progress: float = 0.0
    total_cost: float = 0.0
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def get_step(self, step_id: str) -> Optional[AgentStep]:
        return next((s for s in self.steps if s.id == step_id), None)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def is_finished(self) -> bool:
        """Return ``True`` when every step has a history entry."""
        done = set(self.context.completed_steps())
        return bool(self.steps) and all(step.id in done for step in self.steps)

    def progress_snapshot(self) -> WorkflowProgress:
        total = len(self.steps)
        completed = len(self.context.history)
        return WorkflowProgress(
            progress=(completed / total) * 100 if total > 0 else 0.0,
            current_step=self.current_step,
            total_steps=total,
            completed_steps=completed,
        )


class WorkflowBackup(BaseModel):
    """Point-in-time snapshot of a workflow instance."""

    id: str
    workflow_id: str
    snapshot: WorkflowInstance
    created_at: datetime = Field(default_factory=utc_now)
