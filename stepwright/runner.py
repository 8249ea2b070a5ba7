"""Drive a workflow through its dependency layers."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, List

from .contracts import ExecutionResult
from .engine import WorkflowEngine
from .errors import StepwrightError
from .events import ErrorEvent, ErrorInfo, UsageEvent, usage_totals
from .persistence import WorkflowInstance
from .validation import execution_layers

logger = logging.getLogger(__name__)


class WorkflowRunner:
    """Run every pending step of a workflow, layer by layer.

    Steps whose dependencies are all satisfied form a layer. A layer with a
    single step goes through :meth:`WorkflowEngine.execute_step`, wider
    layers through :meth:`WorkflowEngine.execute_parallel_steps`. The run
    stops at the first failed step or when the workflow leaves ``running``
    (paused for review or budget, cancelled, completed). A finished human
    review is applied before anything runs; a pending one stops the run.
    """

    def __init__(self, engine: WorkflowEngine) -> None:
        self.engine = engine

    async def run(self, workflow_id: str) -> WorkflowInstance:
        workflow = await self.engine.resume_workflow(workflow_id)
        if workflow.metadata.get("pending_review_id"):
            resolved = await self.engine.resolve_human_review(workflow_id)
            if resolved is None:
                logger.info(f"Workflow {workflow_id} is waiting for human review")
                return workflow
            workflow = resolved
            if workflow.status != "running":
                return workflow
        for layer in execution_layers(workflow.steps):
            done = set(workflow.context.completed_steps())
            pending = [step_id for step_id in layer if step_id not in done]
            if not pending:
                continue

            results: List[ExecutionResult]
            if len(pending) == 1:
                results = [await self.engine.execute_step(workflow_id, pending[0])]
            else:
                parallel = await self.engine.execute_parallel_steps(workflow_id, pending)
                results = [item.result for item in parallel]

            workflow = await self.engine.resume_workflow(workflow_id)
            failures = [r for r in results if not r.success]
            if failures:
                if workflow.status == "running" and not workflow.metadata.get("pending_review_id"):
                    workflow = await self.engine.update_workflow_status(
                        workflow_id, "failed", error_message=failures[0].error
                    )
                logger.info(f"Workflow {workflow_id} stopped after {len(failures)} failed steps")
                break
            if workflow.status != "running":
                logger.info(f"Workflow {workflow_id} is {workflow.status}, stopping run")
                break
        return await self.engine.resume_workflow(workflow_id)

    async def stream(self, workflow_id: str) -> AsyncIterator[str]:
        """Run the workflow and yield its events as ``data:`` frames."""

        stream = self.engine.subscribe(workflow_id)

        async def drive() -> None:
            try:
                workflow = await self.run(workflow_id)
                records = await self.engine.usage.get_workflow_usage(
                    workflow.user_id, workflow.id, workflow.created_at
                )
                stream.publish(UsageEvent(workflow_id=workflow_id, usage=usage_totals(records)))
            except StepwrightError as exc:
                stream.publish(
                    ErrorEvent(
                        workflow_id=workflow_id,
                        error=ErrorInfo(message=str(exc), code=exc.kind.upper()),
                    )
                )
            finally:
                self.engine.unsubscribe(stream)

        task = asyncio.create_task(drive())
        try:
            async for frame in stream.frames():
                yield frame
        finally:
            if not task.done():
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
