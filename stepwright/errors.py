"""Error taxonomy for stepwright.

Every error carries a ``kind`` tag and an ``http_status`` hint so that an API
layer sitting on top of the engine can map failures without inspecting
messages.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class StepwrightError(Exception):
    """Base class for all stepwright errors."""

    kind: str = "internal_error"
    http_status: int = 500


class TemplateNotFound(StepwrightError):
    kind = "template_not_found"
    http_status = 404

    def __init__(self, template_id: str) -> None:
        super().__init__(f"Workflow template {template_id} not found")
        self.template_id = template_id


class TemplateInvalid(StepwrightError):
    kind = "template_invalid"
    http_status = 422

    def __init__(self, template_id: str, errors: Sequence[str]) -> None:
        super().__init__(
            f"Workflow template {template_id} is invalid: " + "; ".join(errors)
        )
        self.template_id = template_id
        self.errors = list(errors)


class WorkflowNotFound(StepwrightError):
    kind = "workflow_not_found"
    http_status = 404

    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id


class StepNotFound(StepwrightError):
    kind = "step_not_found"
    http_status = 404

    def __init__(self, step_id: str, workflow_id: Optional[str] = None) -> None:
        where = f" in workflow {workflow_id}" if workflow_id else ""
        super().__init__(f"Step {step_id} not found{where}")
        self.step_id = step_id
        self.workflow_id = workflow_id


class DependenciesNotMet(StepwrightError):
    kind = "dependencies_not_met"
    http_status = 409

    def __init__(self, step_id: str, missing: Sequence[str]) -> None:
        super().__init__(
            f"Step {step_id} is waiting on unfinished steps: {', '.join(missing)}"
        )
        self.step_id = step_id
        self.missing = list(missing)


class InvalidTransition(StepwrightError):
    kind = "invalid_transition"
    http_status = 409

    def __init__(self, workflow_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Workflow {workflow_id} cannot move from {current} to {target}"
        )
        self.workflow_id = workflow_id
        self.current = current
        self.target = target


class NoAccessibleModel(StepwrightError):
    kind = "no_accessible_model"
    http_status = 422

    def __init__(self, message: str = "No available models found. Please configure API keys.") -> None:
        super().__init__(message)


class NoCapableModel(StepwrightError):
    kind = "no_capable_model"
    http_status = 422

    def __init__(
        self, message: str = "No models found that meet the capability requirements."
    ) -> None:
        super().__init__(message)


class BudgetExceeded(StepwrightError):
    kind = "budget_exceeded"
    http_status = 429

    def __init__(
        self,
        reason: str,
        *,
        period: Optional[str] = None,
        suggestion: Optional[str] = None,
        auto_pause: bool = False,
    ) -> None:
        super().__init__(reason)
        self.period = period
        self.suggestion = suggestion
        self.auto_pause = auto_pause


class ValidationFailed(StepwrightError):
    """Quality gate rejection. Never raised out of ``execute_step``."""

    kind = "validation_failed"
    http_status = 422

    def __init__(self, message: str, result: Any = None) -> None:
        super().__init__(message)
        self.result = result


class PersistenceError(StepwrightError):
    kind = "persistence_error"
    http_status = 500


class ProviderError(StepwrightError):
    kind = "provider_error"
    http_status = 502

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.model = model


class StepTimeout(ProviderError):
    kind = "step_timeout"
    http_status = 504


class StepCancelled(StepwrightError):
    kind = "step_cancelled"
    http_status = 409


class BackupNotFound(StepwrightError):
    kind = "backup_not_found"
    http_status = 404

    def __init__(self, workflow_id: str, backup_id: Optional[str] = None) -> None:
        detail = f" {backup_id}" if backup_id else ""
        super().__init__(f"Backup{detail} not found for workflow {workflow_id}")
        self.workflow_id = workflow_id
        self.backup_id = backup_id


class ReviewNotFound(StepwrightError):
    kind = "review_not_found"
    http_status = 404

    def __init__(self, review_id: str) -> None:
        super().__init__(f"Review request {review_id} not found")
        self.review_id = review_id


class ReviewPending(StepwrightError):
    kind = "review_pending"
    http_status = 409

    def __init__(self, workflow_id: str, review_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} is waiting for human review {review_id}")
        self.workflow_id = workflow_id
        self.review_id = review_id
