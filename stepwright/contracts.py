"""Core workflow contracts for the stepwright engine."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

StepType = Literal["sequential", "parallel", "conditional"]
Priority = Literal["cost", "quality", "speed", "balanced"]
WorkflowStatus = Literal[
    "pending", "running", "paused", "completed", "failed", "cancelled"
]

# Selector task category used when a step does not name one.
AGENT_TASK_TYPES: Dict[str, str] = {
    "researcher": "research",
    "analyzer": "analysis",
    "critic": "analysis",
    "synthesizer": "summarization",
    "summarizer": "summarization",
    "writer": "writing",
    "coder": "coding",
    "translator": "translation",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AgentStep(BaseModel):
    """Defines one step in a workflow."""

    id: str
    name: str
    type: StepType = "sequential"
    agent_type: str = "researcher"
    model: Optional[str] = Field(default=None, description="Requested model id")
    prompt_template: str
    dependencies: List[str] = Field(default_factory=list)
    timeout_ms: int = Field(default=120_000, ge=0)
    retry_count: int = Field(default=3, ge=0)
    input_variables: List[str] = Field(default_factory=list)
    output_variables: List[str] = Field(default_factory=list)
    task_type: Optional[str] = None
    priority: Priority = "balanced"
    required_capabilities: List[str] = Field(default_factory=list)
    estimated_input_tokens: int = Field(default=1000, ge=0)
    estimated_output_tokens: int = Field(default=1000, ge=0)
    validation_rules: List[Dict[str, Any]] = Field(default_factory=list)

    def resolved_task_type(self) -> str:
        """Return the task category used for model selection and scoring."""
        if self.task_type:
            return self.task_type
        return AGENT_TASK_TYPES.get(self.agent_type, "reasoning")


class HistoryEntry(BaseModel):
    """Record of a finished step inside a workflow context."""

    step: str
    timestamp: datetime = Field(default_factory=utc_now)
    input: Any = None
    output: Any = None
    duration_ms: float = 0.0


class WorkflowContext(BaseModel):
    """Data shared across the steps of one workflow run."""

    input: Any = None
    output: Any = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    history: List[HistoryEntry] = Field(default_factory=list)

    def completed_steps(self) -> List[str]:
        return [entry.step for entry in self.history]

    def output_of(self, step_id: str) -> Any:
        for entry in self.history:
            if entry.step == step_id:
                return entry.output
        return None

    def record(self, entry: HistoryEntry) -> None:
        """Append ``entry``, replacing an earlier entry for the same step."""
        for index, existing in enumerate(self.history):
            if existing.step == entry.step:
                self.history[index] = entry
                return
        self.history.append(entry)


class WorkflowTemplate(BaseModel):
    """Reusable workflow definition."""

    id: str
    name: str
    description: str = ""
    category: str = "research"
    version: str = "1.0"
    steps: List[AgentStep] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)


class ExecutionResult(BaseModel):
    """Outcome of executing a single step."""

    success: bool
    output: Any = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    duration_ms: float = 0.0


class ParallelExecutionResult(BaseModel):
    step_id: str
    result: ExecutionResult


class WorkflowProgress(BaseModel):
    progress: float
    current_step: str
    total_steps: int
    completed_steps: int


class WorkflowStats(BaseModel):
    total: int = 0
    pending: int = 0
    running: int = 0
    paused: int = 0
    completed: int = 0
    failed: int = 0
