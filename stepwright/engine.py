"""Workflow state machine: step execution, recovery and lifecycle."""

from __future__ import annotations

import asyncio
import logging
import random
import time
import uuid
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .cache import WorkflowCache
from .config import EngineSettings, StepwrightConfig, load_config
from .contracts import (
    AgentStep,
    ExecutionResult,
    HistoryEntry,
    ParallelExecutionResult,
    WorkflowContext,
    WorkflowProgress,
    WorkflowStats,
    WorkflowStatus,
    WorkflowTemplate,
    utc_now,
)
from .errors import (
    BackupNotFound,
    BudgetExceeded,
    DependenciesNotMet,
    InvalidTransition,
    PersistenceError,
    ProviderError,
    ReviewPending,
    StepNotFound,
    StepTimeout,
    StepwrightError,
    TemplateInvalid,
    TemplateNotFound,
    WorkflowNotFound,
)
from .events import ContentEvent, ErrorEvent, ErrorInfo, Event, EventStream, StepEvent, StepInfo
from .interpolation import interpolate
from .persistence import (
    TERMINAL_STATUSES,
    WorkflowBackup,
    WorkflowInstance,
    WorkflowRepository,
    get_ledger,
    get_model_catalog,
    get_repository,
    get_review_repository,
)
from .providers import (
    CancellationToken,
    ModelInvoker,
    ModelResponse,
    PydanticAIInvoker,
    ProviderAccess,
    StaticProviderAccess,
    invoke_with_deadline,
)
from .quality import QualityCheckResult, QualityGate
from .registry import ModelInfo, ModelPricing, ModelSelector, TaskRequirements
from .scoring import load_scoring_profile
from .usage import UsageMonitor, UsageRecord
from .utils.retry import retry_due
from .validation import ValidationReport, unmet_dependencies, validate_steps

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[str, frozenset] = {
    "pending": frozenset({"running", "cancelled"}),
    "running": frozenset({"running", "paused", "completed", "failed", "cancelled"}),
    "paused": frozenset({"running", "paused", "cancelled"}),
    "failed": frozenset({"running", "failed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def model_ref(model: ModelInfo) -> str:
    return model.ref


def count_by_status(workflows: Iterable[WorkflowInstance]) -> WorkflowStats:
    """Tally workflows per status. Cancelled workflows are not counted."""
    stats = WorkflowStats()
    for workflow in workflows:
        if workflow.status == "cancelled":
            continue
        stats.total += 1
        setattr(stats, workflow.status, getattr(stats, workflow.status) + 1)
    return stats


class WorkflowEngine:
    """Create, run and recover workflow instances.

    Every state change goes through the per-workflow lock, updates the
    cached instance and is written through to ``repository``. Step execution
    failures are returned as unsuccessful :class:`ExecutionResult` objects;
    only lookup errors (unknown workflow, unknown step, unmet dependencies)
    are raised to the caller.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        invoker: ModelInvoker,
        selector: ModelSelector,
        usage: UsageMonitor,
        quality: QualityGate,
        provider_access: ProviderAccess,
        settings: Optional[EngineSettings] = None,
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._repository = repository
        self._invoker = invoker
        self.selector = selector
        self.usage = usage
        self.quality = quality
        self._access = provider_access
        self.settings = settings or EngineSettings()
        self._clock = clock
        self._rng = rng
        self._cache = WorkflowCache(
            max_entries=self.settings.cache_max_entries,
            retention=timedelta(hours=self.settings.retention_hours),
            clock=clock,
            on_evict=self._forget,
        )
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._streams: Dict[str, List[EventStream]] = defaultdict(list)

    @property
    def repository(self) -> WorkflowRepository:
        return self._repository

    # ------------------------------------------------------------------
    # Internals
    def _lock(self, workflow_id: str) -> asyncio.Lock:
        lock = self._locks.get(workflow_id)
        if lock is None:
            lock = self._locks[workflow_id] = asyncio.Lock()
        return lock

    def _forget(self, workflow: WorkflowInstance) -> None:
        """Drop the lock and token of a workflow that left the cache."""
        if workflow.status == "running":
            return
        lock = self._locks.get(workflow.id)
        if lock is not None and lock.locked():
            return
        self._locks.pop(workflow.id, None)
        self._tokens.pop(workflow.id, None)

    def _token(self, workflow_id: str) -> CancellationToken:
        token = self._tokens.get(workflow_id)
        if token is None:
            token = self._tokens[workflow_id] = CancellationToken()
        return token

    async def _load(self, workflow_id: str) -> WorkflowInstance:
        workflow = self._cache.get(workflow_id)
        if workflow is not None:
            return workflow
        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFound(workflow_id)
        self._cache.put(workflow)
        return workflow

    async def _persist(self, workflow: WorkflowInstance) -> None:
        try:
            await self._repository.save_workflow(workflow)
        except PersistenceError as exc:
            logger.error(f"Failed to persist workflow {workflow.id}: {exc}")

    def _transition(
        self,
        workflow: WorkflowInstance,
        target: WorkflowStatus,
        current_step: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        if not can_transition(workflow.status, target):
            raise InvalidTransition(workflow.id, workflow.status, target)
        if workflow.status != target:
            logger.info(f"Workflow {workflow.id}: {workflow.status} -> {target}")
        workflow.status = target
        if current_step is not None:
            workflow.current_step = current_step
        if error_message is not None:
            workflow.error_message = error_message
        workflow.touch()

    def _emit(self, event: Event) -> None:
        for stream in self._streams.get(event.workflow_id, []):
            stream.publish(event)

    def _emit_step(self, workflow: WorkflowInstance, step: AgentStep, status: str) -> None:
        if not self._streams.get(workflow.id):
            return
        number = next(i for i, s in enumerate(workflow.steps, 1) if s.id == step.id)
        self._emit(
            StepEvent(
                workflow_id=workflow.id,
                step=StepInfo(number=number, id=step.id, name=step.name, status=status),
            )
        )

    # ------------------------------------------------------------------
    # Templates and creation
    async def register_template(self, template: WorkflowTemplate) -> ValidationReport:
        report = validate_steps(template.steps)
        if not report.is_valid:
            raise TemplateInvalid(template.id, report.errors)
        for warning in report.warnings:
            logger.warning(f"Template {template.id}: {warning}")
        await self._repository.save_template(template)
        logger.info(f"Registered template {template.id} ({len(template.steps)} steps)")
        return report

    async def create_workflow(
        self,
        user_id: str,
        template_id: str,
        input: Any = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        template = await self._repository.get_template(template_id)
        if template is None:
            raise TemplateNotFound(template_id)

        metadata = dict(metadata or {})
        steps = [step.model_copy(deep=True) for step in template.steps]
        workflow = WorkflowInstance(
            id=str(uuid.uuid4()),
            user_id=user_id,
            template_id=template_id,
            current_step=steps[0].id if steps else "",
            steps=steps,
            context=WorkflowContext(input=input, metadata=dict(metadata)),
            metadata=metadata,
        )
        await self._repository.save_workflow(workflow)
        self._cache.put(workflow)
        logger.info(f"Created workflow {workflow.id} from template {template_id} for {user_id}")
        return workflow.id

    async def resume_workflow(self, workflow_id: str) -> WorkflowInstance:
        """Return the live instance, loading it from the store if needed."""
        return await self._load(workflow_id)

    # ------------------------------------------------------------------
    # Step execution
    def _requirements(self, step: AgentStep) -> TaskRequirements:
        return TaskRequirements(
            task_type=step.resolved_task_type(),
            priority=step.priority,
            required_capabilities=list(step.required_capabilities),
            estimated_input_tokens=step.estimated_input_tokens,
            estimated_output_tokens=step.estimated_output_tokens,
        )

    async def execute_step(
        self,
        workflow_id: str,
        step_id: str,
        context: Optional[WorkflowContext] = None,
    ) -> ExecutionResult:
        """Run one step end to end.

        Raises :class:`StepNotFound` and :class:`DependenciesNotMet` before
        anything changes. While a human review is pending the step is refused
        and the workflow left as it is. Every later failure moves the workflow to
        ``failed`` (or ``paused`` on a budget denial with auto-pause) and is
        reported in the returned result.
        """

        workflow = await self._load(workflow_id)
        step = workflow.get_step(step_id)
        if step is None:
            raise StepNotFound(step_id, workflow_id)
        ctx = context if context is not None else workflow.context
        completed = set(workflow.context.completed_steps()) | set(ctx.completed_steps())
        missing = unmet_dependencies(step, completed)
        if missing:
            raise DependenciesNotMet(step_id, missing)

        started = time.perf_counter()
        try:
            async with self._lock(workflow_id):
                workflow = await self._load(workflow_id)
                review_id = workflow.metadata.get("pending_review_id")
                if review_id:
                    raise ReviewPending(workflow_id, review_id)
                self._transition(workflow, "running", current_step=step_id)
                await self._persist(workflow)
            self._emit_step(workflow, step, "running")
            return await self._run_step(workflow, step, ctx, started)
        except ReviewPending as exc:
            logger.warning(f"Refusing step {step_id}: {exc}")
            return ExecutionResult(
                success=False,
                error=str(exc),
                metadata={
                    "error_kind": exc.kind,
                    "step_id": step_id,
                    "pending_review_id": exc.review_id,
                },
                duration_ms=(time.perf_counter() - started) * 1000,
            )
        except Exception as exc:
            return await self._fail_step(workflow_id, step, exc, started)

    async def _run_step(
        self,
        workflow: WorkflowInstance,
        step: AgentStep,
        ctx: WorkflowContext,
        started: float,
    ) -> ExecutionResult:
        prompt = interpolate(step.prompt_template, ctx)
        providers = self._access.providers_for(workflow.user_id)
        selection = await self.selector.select_optimal_model(
            self._requirements(step), providers, preferred=step.model
        )
        model = selection.primary_model

        decision = await self.usage.can_make_request(workflow.user_id, selection.estimated_cost)
        if not decision.allowed:
            limits = await self.usage.get_user_limits(workflow.user_id)
            raise BudgetExceeded(
                decision.reason or "Usage limit exceeded",
                period=decision.period,
                suggestion=decision.suggestion,
                auto_pause=limits.auto_pause_workflows,
            )
        if decision.warning:
            logger.warning(f"Workflow {workflow.id} step {step.id}: {decision.reason}")

        try:
            response = await invoke_with_deadline(
                self._invoker,
                model_ref(model),
                prompt,
                timeout_ms=step.timeout_ms,
                cancel_token=self._token(workflow.id),
            )
        except ProviderError as exc:
            await self._record_failed_call(workflow, step, model, exc, started)
            raise

        output = response.content
        input_tokens = response.input_tokens
        output_tokens = response.output_tokens
        quality = self.quality.check_quality(
            output, step.resolved_task_type(), step.validation_rules
        )
        corrections = 0
        if quality.issues and self.settings.self_correction_attempts > 0:
            corrected, quality, extra_in, extra_out, corrections = await self._self_correct(
                workflow.id, output, quality, step, model
            )
            output = corrected
            input_tokens += extra_in
            output_tokens += extra_out

        input_cost, output_cost = model.pricing.cost(input_tokens, output_tokens)
        cost = input_cost + output_cost
        await self._record_call(
            workflow,
            step,
            model,
            UsageRecord(
                user_id=workflow.user_id,
                provider_id=model.provider_id,
                model_id=model.model_id,
                workflow_id=workflow.id,
                agent_step=step.id,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                input_cost_usd=input_cost,
                output_cost_usd=output_cost,
                latency_ms=response.latency_ms,
                status="success",
            ),
            response,
            quality,
        )

        duration_ms = (time.perf_counter() - started) * 1000
        entry = HistoryEntry(step=step.id, input=ctx.input, output=output, duration_ms=duration_ms)
        review_id = await self._commit_step(workflow.id, step, ctx, entry, cost, quality)

        self._emit(ContentEvent(workflow_id=workflow.id, step_id=step.id, content=output))
        self._emit_step(workflow, step, "paused" if review_id else "completed")

        metadata: Dict[str, Any] = {
            "step_id": step.id,
            "model": model.model_id,
            "provider": model.provider_id,
            "agent_type": step.agent_type,
            "tokens_used": {"input": input_tokens, "output": output_tokens},
            "cost": cost,
            "latency_ms": response.latency_ms,
            "fallback_models": [model_ref(m) for m in selection.fallback_models],
            "selection_reasoning": selection.reasoning,
            "quality": {
                "passed": quality.passed,
                "confidence": quality.confidence,
                "overall": quality.metrics.overall_quality,
                "issues": [issue.message for issue in quality.issues],
            },
        }
        if corrections:
            metadata["self_correction_attempts"] = corrections
        if decision.warning:
            metadata["usage_warning"] = decision.reason
        if review_id:
            metadata["pending_review_id"] = review_id
        return ExecutionResult(
            success=True, output=output, metadata=metadata, duration_ms=duration_ms
        )

    async def _self_correct(
        self,
        workflow_id: str,
        output: str,
        quality: QualityCheckResult,
        step: AgentStep,
        model: ModelInfo,
    ) -> tuple:
        try:
            attempts = await self.quality.perform_self_correction(
                output,
                quality,
                step.resolved_task_type(),
                step.validation_rules,
                max_attempts=self.settings.self_correction_attempts,
                model=model_ref(model),
                timeout_ms=step.timeout_ms,
                cancel_token=self._token(workflow_id),
            )
        except (ProviderError, StepTimeout) as exc:
            logger.warning(f"Self-correction for step {step.id} failed: {exc}")
            return output, quality, 0, 0, 0

        extra_in = sum(a.input_tokens for a in attempts)
        extra_out = sum(a.output_tokens for a in attempts)
        accepted = [a for a in attempts if a.success]
        if accepted:
            best = accepted[-1]
            return best.corrected_output, best.quality, extra_in, extra_out, len(attempts)
        return output, quality, extra_in, extra_out, len(attempts)

    async def _record_call(
        self,
        workflow: WorkflowInstance,
        step: AgentStep,
        model: ModelInfo,
        record: UsageRecord,
        response: ModelResponse,
        quality: QualityCheckResult,
    ) -> None:
        try:
            await self.selector.update_model_metrics(
                model.id, response.latency_ms, True, quality.metrics.overall_quality
            )
            await self.usage.log_usage(record)
        except PersistenceError as exc:
            logger.error(f"Failed to record usage for workflow {workflow.id} step {step.id}: {exc}")

    async def _record_failed_call(
        self,
        workflow: WorkflowInstance,
        step: AgentStep,
        model: ModelInfo,
        exc: ProviderError,
        started: float,
    ) -> None:
        latency_ms = (time.perf_counter() - started) * 1000
        try:
            await self.selector.update_model_metrics(model.id, latency_ms, False)
            await self.usage.log_usage(
                UsageRecord(
                    user_id=workflow.user_id,
                    provider_id=model.provider_id,
                    model_id=model.model_id,
                    workflow_id=workflow.id,
                    agent_step=step.id,
                    latency_ms=latency_ms,
                    status=exc.kind,
                )
            )
        except PersistenceError as err:
            logger.error(f"Failed to record failed call for workflow {workflow.id}: {err}")

    async def _commit_step(
        self,
        workflow_id: str,
        step: AgentStep,
        ctx: WorkflowContext,
        entry: HistoryEntry,
        cost: float,
        quality: QualityCheckResult,
    ) -> Optional[str]:
        review_id = None
        async with self._lock(workflow_id):
            workflow = await self._load(workflow_id)
            ctx.record(entry)
            ctx.output = entry.output
            if ctx is not workflow.context:
                workflow.context.record(entry.model_copy(deep=True))
                workflow.context.output = entry.output
            workflow.total_cost += cost
            workflow.progress = workflow.progress_snapshot().progress

            if quality.human_review_required:
                priority = (
                    "high" if any(i.severity == "high" for i in quality.issues) else "medium"
                )
                review_id = await self.quality.request_human_review(
                    workflow_id, step.id, entry.output, quality, priority=priority
                )
                workflow.metadata["pending_review_id"] = review_id
                workflow.metadata["pending_review_step"] = step.id
                if workflow.status == "running":
                    self._transition(workflow, "paused")
            elif workflow.is_finished() and workflow.status == "running":
                self._transition(workflow, "completed")
            workflow.touch()
            await self._persist(workflow)
        return review_id

    async def _fail_step(
        self,
        workflow_id: str,
        step: AgentStep,
        exc: Exception,
        started: float,
    ) -> ExecutionResult:
        message = str(exc) or type(exc).__name__
        kind = exc.kind if isinstance(exc, StepwrightError) else "internal_error"
        if not isinstance(exc, StepwrightError):
            logger.exception(f"Unexpected error in workflow {workflow_id} step {step.id}")

        async with self._lock(workflow_id):
            workflow = await self._load(workflow_id)
            target: WorkflowStatus = (
                "paused" if isinstance(exc, BudgetExceeded) and exc.auto_pause else "failed"
            )
            if workflow.status not in TERMINAL_STATUSES:
                if can_transition(workflow.status, target):
                    self._transition(workflow, target, current_step=step.id, error_message=message)
                else:
                    workflow.error_message = message
                    workflow.touch()
                await self._persist(workflow)

        logger.warning(f"Step {step.id} of workflow {workflow_id} failed ({kind}): {message}")
        self._emit_step(workflow, step, "failed")
        self._emit(
            ErrorEvent(workflow_id=workflow_id, error=ErrorInfo(message=message, code=kind.upper()))
        )
        metadata: Dict[str, Any] = {"error_kind": kind, "step_id": step.id}
        if isinstance(exc, BudgetExceeded):
            metadata["period"] = exc.period
            metadata["suggestion"] = exc.suggestion
        return ExecutionResult(
            success=False,
            error=message,
            metadata=metadata,
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    async def execute_parallel_steps(
        self,
        workflow_id: str,
        step_ids: Sequence[str],
        context: Optional[WorkflowContext] = None,
    ) -> List[ParallelExecutionResult]:
        workflow = await self._load(workflow_id)
        for step_id in step_ids:
            if workflow.get_step(step_id) is None:
                raise StepNotFound(step_id, workflow_id)
        base = context if context is not None else workflow.context

        async def run(step_id: str) -> ParallelExecutionResult:
            try:
                result = await self.execute_step(
                    workflow_id, step_id, base.model_copy(deep=True)
                )
            except DependenciesNotMet as exc:
                result = ExecutionResult(
                    success=False,
                    error=str(exc),
                    metadata={"error_kind": exc.kind, "step_id": step_id},
                )
            return ParallelExecutionResult(step_id=step_id, result=result)

        results = list(await asyncio.gather(*(run(step_id) for step_id in step_ids)))

        if context is not None:
            canonical = (await self._load(workflow_id)).context
            if context is not canonical:
                for entry in canonical.history:
                    if entry.step in step_ids:
                        context.record(entry.model_copy(deep=True))
                context.output = canonical.output
        return results

    # ------------------------------------------------------------------
    # Lifecycle
    async def update_workflow_status(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        current_step: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> WorkflowInstance:
        async with self._lock(workflow_id):
            workflow = await self._load(workflow_id)
            self._transition(workflow, status, current_step, error_message)
            await self._persist(workflow)
        return workflow

    async def update_workflow_context(
        self, workflow_id: str, context: WorkflowContext
    ) -> WorkflowInstance:
        async with self._lock(workflow_id):
            workflow = await self._load(workflow_id)
            workflow.context = context.model_copy(deep=True)
            workflow.progress = workflow.progress_snapshot().progress
            workflow.touch()
            await self._persist(workflow)
        return workflow

    async def pause_workflow(self, workflow_id: str) -> WorkflowInstance:
        return await self.update_workflow_status(workflow_id, "paused")

    async def resume_paused_workflow(self, workflow_id: str) -> WorkflowInstance:
        return await self.update_workflow_status(workflow_id, "running")

    async def cancel_workflow(self, workflow_id: str) -> WorkflowInstance:
        workflow = await self.update_workflow_status(workflow_id, "cancelled")
        self._token(workflow_id).cancel(f"Workflow {workflow_id} cancelled")
        for stream in self._streams.pop(workflow_id, []):
            stream.close()
        return workflow

    async def retry_failed_step(self, workflow_id: str, step_id: str) -> ExecutionResult:
        async with self._lock(workflow_id):
            workflow = await self._load(workflow_id)
            step = workflow.get_step(step_id)
            if step is None:
                raise StepNotFound(step_id, workflow_id)
            step.retry_count = max(0, step.retry_count - 1)
            attempts = workflow.metadata.setdefault("retry_attempts", {})
            attempts[step_id] = attempts.get(step_id, 0) + 1
            workflow.touch()
            await self._persist(workflow)
        logger.info(
            f"Retrying step {step_id} of workflow {workflow_id} "
            f"({step.retry_count} retries left)"
        )
        return await self.execute_step(workflow_id, step_id)

    async def auto_retry_failed_steps(self) -> Dict[str, ExecutionResult]:
        """Retry the current step of every cached failed workflow that is due."""
        now = self._clock()
        results: Dict[str, ExecutionResult] = {}
        for workflow in self._cache:
            if workflow.status != "failed":
                continue
            step = workflow.get_step(workflow.current_step)
            if step is None or step.retry_count <= 0:
                continue
            attempt = workflow.metadata.get("retry_attempts", {}).get(step.id, 0)
            if not retry_due(
                workflow.updated_at,
                attempt,
                now,
                base=self.settings.retry_backoff_base,
                jitter=self.settings.retry_backoff_jitter,
                rng=self._rng,
            ):
                continue
            try:
                results[workflow.id] = await self.retry_failed_step(workflow.id, step.id)
            except StepwrightError as exc:
                logger.error(f"Auto-retry of workflow {workflow.id} failed: {exc}")
        if results:
            logger.info(f"Auto-retried {len(results)} failed workflows")
        return results

    # ------------------------------------------------------------------
    # Inspection
    async def get_workflow_progress(self, workflow_id: str) -> WorkflowProgress:
        workflow = await self._load(workflow_id)
        return workflow.progress_snapshot()

    async def get_workflow_stats(self) -> WorkflowStats:
        return count_by_status(await self._repository.list_workflows())

    # ------------------------------------------------------------------
    # Backup and cleanup
    async def backup_workflow_state(self, workflow_id: str) -> str:
        async with self._lock(workflow_id):
            workflow = await self._load(workflow_id)
            backup = WorkflowBackup(
                id=str(uuid.uuid4()),
                workflow_id=workflow_id,
                snapshot=workflow.model_copy(deep=True),
            )
        await self._repository.save_backup(backup)
        logger.info(f"Backed up workflow {workflow_id} as {backup.id}")
        return backup.id

    async def restore_workflow_state(
        self, workflow_id: str, backup_id: Optional[str] = None
    ) -> WorkflowInstance:
        """Replace the live record with a snapshot; the latest when no id is given."""
        backup = await self._repository.get_backup(workflow_id, backup_id)
        if backup is None:
            raise BackupNotFound(workflow_id, backup_id)
        restored = backup.snapshot.model_copy(deep=True)
        async with self._lock(workflow_id):
            await self._repository.save_workflow(restored)
            self._cache.put(restored)
            self._tokens.pop(workflow_id, None)
        logger.info(f"Restored workflow {workflow_id} from backup {backup.id}")
        return restored

    async def cleanup_workflows(self, older_than_days: Optional[int] = None) -> int:
        days = self.settings.cleanup_after_days if older_than_days is None else older_than_days
        cutoff = self._clock() - timedelta(days=days)
        deleted = await self._repository.delete_workflows("completed", cutoff)
        for workflow in self._cache:
            if workflow.status == "completed" and workflow.updated_at < cutoff:
                self._cache.pop(workflow.id)
        self._cache.evict_expired()
        logger.info(f"Cleaned up {deleted} completed workflows older than {days} days")
        return deleted

    # ------------------------------------------------------------------
    # Human review
    async def resolve_human_review(self, workflow_id: str) -> Optional[WorkflowInstance]:
        """Apply a finished review to its paused workflow.

        Returns ``None`` while the review is still pending and the workflow
        unchanged when it has no pending review. A workflow that was
        cancelled while it waited only records the verdict.
        """

        workflow = await self._load(workflow_id)
        review_id = workflow.metadata.get("pending_review_id")
        if not review_id:
            return workflow
        feedback = await self.quality.get_human_feedback(review_id)
        if feedback is None:
            return None

        async with self._lock(workflow_id):
            workflow = await self._load(workflow_id)
            if workflow.metadata.get("pending_review_id") != review_id:
                return workflow
            step_id = workflow.metadata.pop("pending_review_step", workflow.current_step)
            workflow.metadata.pop("pending_review_id", None)
            workflow.metadata.setdefault("reviews", []).append(
                {
                    "review_id": review_id,
                    "step_id": step_id,
                    "approved": feedback.approved,
                    "reviewer_id": feedback.reviewer_id,
                    "feedback": feedback.feedback,
                    "workflow_status": workflow.status,
                }
            )
            history = workflow.context.history
            if workflow.status in TERMINAL_STATUSES:
                logger.info(
                    f"Workflow {workflow_id} is {workflow.status}; "
                    f"review {review_id} recorded without a transition"
                )
                workflow.touch()
            elif feedback.approved:
                if feedback.corrected_output is not None:
                    for entry in history:
                        if entry.step == step_id:
                            entry.output = feedback.corrected_output
                    if history and history[-1].step == step_id:
                        workflow.context.output = feedback.corrected_output
                self._transition(workflow, "running")
                if workflow.is_finished():
                    self._transition(workflow, "completed")
            else:
                workflow.context.history = [e for e in history if e.step != step_id]
                workflow.progress = workflow.progress_snapshot().progress
                if workflow.status in ("pending", "paused"):
                    self._transition(workflow, "running")
                self._transition(
                    workflow,
                    "failed",
                    current_step=step_id,
                    error_message=f"Human review rejected: {feedback.feedback or 'no feedback'}",
                )
            await self._persist(workflow)
        logger.info(
            f"Review {review_id} for workflow {workflow_id} resolved: approved={feedback.approved}"
        )
        return workflow

    # ------------------------------------------------------------------
    # Events
    def subscribe(self, workflow_id: str) -> EventStream:
        stream = EventStream(workflow_id)
        self._streams[workflow_id].append(stream)
        return stream

    def unsubscribe(self, stream: EventStream) -> None:
        streams = self._streams.get(stream.workflow_id, [])
        if stream in streams:
            streams.remove(stream)
        if not streams:
            self._streams.pop(stream.workflow_id, None)
        stream.close()


def build_engine(
    config: Optional[StepwrightConfig] = None,
    invoker: Optional[ModelInvoker] = None,
    provider_access: Optional[ProviderAccess] = None,
) -> WorkflowEngine:
    """Wire an engine from configuration using the persistence factories.

    Without an explicit ``config`` the factories hand out their shared
    backends.
    """

    explicit = config
    config = config or load_config()
    profile = load_scoring_profile(config.scoring_path)
    repository = get_repository(config=explicit)
    catalog = get_model_catalog(config=explicit)
    invoker = invoker or PydanticAIInvoker()
    selector = ModelSelector(catalog, profile=profile, settings=config.selector)
    usage = UsageMonitor(
        get_ledger(config=explicit),
        defaults=config.limits,
        catalog=catalog,
        default_pricing=ModelPricing(**profile.selector.default_pricing.model_dump()),
    )
    quality = QualityGate(get_review_repository(config=explicit), invoker=invoker, profile=profile)
    return WorkflowEngine(
        repository,
        invoker,
        selector,
        usage,
        quality,
        provider_access or StaticProviderAccess(config.providers),
        settings=config.engine,
    )
