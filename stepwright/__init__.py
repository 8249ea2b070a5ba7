"""stepwright: budget-aware, quality-gated orchestration of multi-step AI workflows."""

from .contracts import AgentStep, ExecutionResult, WorkflowContext, WorkflowTemplate
from .engine import WorkflowEngine, build_engine
from .persistence import get_repository
from .quality import QualityGate
from .registry import ModelSelector
from .runner import WorkflowRunner
from .usage import UsageMonitor

__version__ = "0.1.0"
__all__ = [
    "AgentStep",
    "ExecutionResult",
    "WorkflowContext",
    "WorkflowTemplate",
    "WorkflowEngine",
    "WorkflowRunner",
    "ModelSelector",
    "UsageMonitor",
    "QualityGate",
    "build_engine",
    "get_repository",
]
