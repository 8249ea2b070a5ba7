"""Command line interface for operating stepwright stores."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from stepwright.cli_utils.loaders import format_report, load_model_file, load_template_file
from stepwright.config import load_config
from stepwright.engine import build_engine, count_by_status
from stepwright.errors import StepwrightError, WorkflowNotFound
from stepwright.persistence import (
    get_ledger,
    get_model_catalog,
    get_repository,
    get_review_repository,
)
from stepwright.quality import QualityGate
from stepwright.runner import WorkflowRunner
from stepwright.usage import UsageMonitor
from stepwright.validation import validate_steps

app = typer.Typer(help="CLI for stepwright workflows")

# Command groups
workflow_app = typer.Typer(help="Inspect and run workflows")
template_app = typer.Typer(help="Validate and register workflow templates")
usage_app = typer.Typer(help="Usage, limits and cost analytics")
review_app = typer.Typer(help="Human review queue")
model_app = typer.Typer(help="Model catalog")

app.add_typer(workflow_app, name="workflow")
app.add_typer(template_app, name="template")
app.add_typer(usage_app, name="usage")
app.add_typer(review_app, name="review")
app.add_typer(model_app, name="model")


@app.callback()
def main() -> None:
    """stepwright CLI entry point."""
    pass


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _monitor() -> UsageMonitor:
    return UsageMonitor(get_ledger(), defaults=load_config().limits)


# ----------------------------------------------------------------------
# workflow
@workflow_app.command("list")
def workflow_list(status: Optional[str] = typer.Option(None, help="Only this status")) -> None:
    """
    List workflows with their status and progress.

    Example:
        stepwright workflow list --status failed
    """
    repo = get_repository()
    workflows = asyncio.run(repo.list_workflows(status=status))
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.id}\t{wf.status}\t{wf.progress:.0f}%\t{wf.user_id}")


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """Show a workflow's status, cost and step history."""
    repo = get_repository()
    wf = asyncio.run(repo.get_workflow(workflow_id))
    if wf is None:
        _fail("Workflow not found")
    typer.echo(f"Workflow {wf.id}: {wf.status}")
    typer.echo(f"User: {wf.user_id}  Template: {wf.template_id or '-'}")
    typer.echo(f"Cost: ${wf.total_cost:.4f}  Progress: {wf.progress:.0f}%")
    if wf.error_message:
        typer.echo(f"Error: {wf.error_message}")
    if wf.metadata.get("pending_review_id"):
        typer.echo(f"Pending review: {wf.metadata['pending_review_id']}")
    done = {entry.step: entry for entry in wf.context.history}
    for step in wf.steps:
        entry = done.get(step.id)
        marker = "*" if step.id == wf.current_step else " "
        detail = f"done in {entry.duration_ms:.0f}ms" if entry else "pending"
        typer.echo(f"{marker} {step.id} ({step.agent_type}): {detail}")


@workflow_app.command("progress")
def workflow_progress(workflow_id: str) -> None:
    """Print progress as JSON."""
    repo = get_repository()
    wf = asyncio.run(repo.get_workflow(workflow_id))
    if wf is None:
        _fail("Workflow not found")
    typer.echo(wf.progress_snapshot().model_dump_json())


@workflow_app.command("stats")
def workflow_stats() -> None:
    """Count stored workflows by status (cancelled excluded)."""
    stats = count_by_status(asyncio.run(get_repository().list_workflows()))
    for name, value in stats.model_dump().items():
        typer.echo(f"{name}: {value}")


@workflow_app.command("cleanup")
def workflow_cleanup(
    days: int = typer.Option(7, help="Delete completed workflows idle this many days"),
) -> None:
    """Delete completed workflows older than ``days``."""
    engine = build_engine()
    deleted = asyncio.run(engine.cleanup_workflows(days))
    typer.echo(f"Deleted {deleted} workflows")


@workflow_app.command("create")
def workflow_create(
    template_id: str,
    user: str = typer.Option(..., help="User the workflow runs for"),
    input: Optional[str] = typer.Option(None, help="Workflow input text"),
    metadata: Optional[str] = typer.Option(None, help="Metadata as a JSON object"),
) -> None:
    """Create a pending workflow from a registered template."""
    try:
        extra = json.loads(metadata) if metadata else {}
    except ValueError:
        _fail("Metadata must be a JSON object")
    engine = build_engine()
    try:
        workflow_id = asyncio.run(engine.create_workflow(user, template_id, input, extra))
    except StepwrightError as exc:
        _fail(str(exc))
    typer.echo(f"Workflow created: {workflow_id}")


@workflow_app.command("run")
def workflow_run(
    workflow_id: str,
    stream: bool = typer.Option(False, help="Print event frames while running"),
) -> None:
    """Run every pending step of a workflow."""
    runner = WorkflowRunner(build_engine())

    async def _stream() -> None:
        async for frame in runner.stream(workflow_id):
            typer.echo(frame, nl=False)

    try:
        if stream:
            asyncio.run(_stream())
            return
        wf = asyncio.run(runner.run(workflow_id))
    except StepwrightError as exc:
        _fail(str(exc))
    typer.echo(f"Workflow {wf.id}: {wf.status} ({wf.progress:.0f}%)")
    if wf.error_message:
        typer.echo(f"Error: {wf.error_message}")


# ----------------------------------------------------------------------
# template
@template_app.command("validate")
def template_validate(path: Path) -> None:
    """
    Check a YAML or JSON template file.

    Reports duplicate ids, unknown dependencies and cycles as errors,
    unresolved input variables as warnings, and prints the execution layers.
    """
    if not path.exists():
        _fail("Specified path does not exist")
    try:
        template = load_template_file(path)
    except (ValueError, ValidationError) as exc:
        _fail(f"Could not parse template: {exc}")
    report = validate_steps(template.steps)
    for line in format_report(report):
        typer.echo(line)
    if not report.is_valid:
        raise typer.Exit(code=1)
    typer.echo(f"Template {template.id} is valid")


@template_app.command("register")
def template_register(path: Path) -> None:
    """Validate a template file and store it."""
    if not path.exists():
        _fail("Specified path does not exist")
    try:
        template = load_template_file(path)
    except (ValueError, ValidationError) as exc:
        _fail(f"Could not parse template: {exc}")
    report = validate_steps(template.steps)
    if not report.is_valid:
        for line in format_report(report):
            typer.echo(line)
        raise typer.Exit(code=1)
    asyncio.run(get_repository().save_template(template))
    typer.echo(f"Registered template {template.id}")


@template_app.command("list")
def template_list() -> None:
    templates = asyncio.run(get_repository().list_templates())
    if not templates:
        typer.echo("No templates found")
        return
    for template in templates:
        typer.echo(f"{template.id}\t{template.name}\t{len(template.steps)} steps")


# ----------------------------------------------------------------------
# usage
@usage_app.command("show")
def usage_show(user_id: str) -> None:
    """Show today's and this month's spend against the user's limits."""
    stats = asyncio.run(_monitor().get_current_usage(user_id))
    typer.echo(f"Status: {stats.status}")
    for label, period in (("Today", stats.today), ("Month", stats.this_month)):
        typer.echo(
            f"{label}: ${period.cost:.4f} of ${period.limit:.2f} "
            f"({period.percentage:.1f}%), {period.requests} requests, {period.tokens} tokens"
        )
    typer.echo(
        f"Remaining: ${stats.remaining.daily:.4f} today, ${stats.remaining.monthly:.4f} this month"
    )


@usage_app.command("analytics")
def usage_analytics(user_id: str, days: int = typer.Option(30, help="Look-back window")) -> None:
    """Print usage analytics as JSON."""
    analytics = asyncio.run(_monitor().get_usage_analytics(user_id, days=days))
    typer.echo(analytics.model_dump_json(indent=2))


@usage_app.command("set-limits")
def usage_set_limits(
    user_id: str,
    daily: Optional[float] = typer.Option(None, help="Daily limit in USD"),
    monthly: Optional[float] = typer.Option(None, help="Monthly limit in USD"),
    warning_threshold: Optional[float] = typer.Option(None, help="Warning fraction (0-1]"),
    hard_stop: Optional[bool] = typer.Option(None, "--hard-stop/--no-hard-stop"),
    auto_pause: Optional[bool] = typer.Option(None, "--auto-pause/--no-auto-pause"),
) -> None:
    """Update a user's spending limits."""
    changes = {
        key: value
        for key, value in (
            ("daily_limit_usd", daily),
            ("monthly_limit_usd", monthly),
            ("warning_threshold", warning_threshold),
            ("hard_stop_enabled", hard_stop),
            ("auto_pause_workflows", auto_pause),
        )
        if value is not None
    }
    if not changes:
        _fail("Nothing to update")
    try:
        limits = asyncio.run(_monitor().update_limits(user_id, **changes))
    except ValidationError as exc:
        _fail(f"Invalid limits: {exc}")
    typer.echo(limits.model_dump_json())


# ----------------------------------------------------------------------
# review
@review_app.command("list")
def review_list() -> None:
    """List pending human reviews."""
    gate = QualityGate(get_review_repository())
    reviews = asyncio.run(gate.list_pending_reviews())
    if not reviews:
        typer.echo("No pending reviews")
        return
    for review in reviews:
        overall = f"{review.quality.metrics.overall_quality:.2f}" if review.quality else "-"
        typer.echo(
            f"{review.id}\t{review.priority}\t{review.workflow_id}/{review.step_id}\t"
            f"overall={overall}"
        )


@review_app.command("show")
def review_show(review_id: str) -> None:
    repo = get_review_repository()
    review = asyncio.run(repo.get_review(review_id))
    if review is None:
        _fail("Review not found")
    typer.echo(f"Review {review.id}: {review.status} ({review.priority})")
    typer.echo(f"Workflow: {review.workflow_id}  Step: {review.step_id}")
    for issue in review.quality.issues if review.quality else []:
        typer.echo(f"- [{issue.severity}] {issue.message}")
    typer.echo("")
    typer.echo(review.content)


@review_app.command("complete")
def review_complete(
    review_id: str,
    approve: bool = typer.Option(..., "--approve/--reject"),
    feedback: Optional[str] = typer.Option(None, help="Reviewer comment"),
    corrected_output: Optional[str] = typer.Option(None, help="Replacement output"),
    reviewer: Optional[str] = typer.Option(None, help="Reviewer id"),
) -> None:
    """Record a reviewer's verdict and apply it to the reviewed workflow."""
    engine = build_engine()

    async def _complete():
        review = await engine.quality.complete_human_review(
            review_id,
            approved=approve,
            feedback=feedback,
            corrected_output=corrected_output,
            reviewer_id=reviewer,
        )
        if not review.workflow_id:
            return review, None
        try:
            workflow = await engine.resolve_human_review(review.workflow_id)
        except WorkflowNotFound:
            return review, None
        return review, workflow

    try:
        review, workflow = asyncio.run(_complete())
    except StepwrightError as exc:
        _fail(str(exc))
    verdict = "approved" if review.approved else "rejected"
    typer.echo(f"Review {review.id} {verdict}")
    if workflow is not None:
        typer.echo(f"Workflow {workflow.id}: {workflow.status}")
        if workflow.error_message and workflow.status == "failed":
            typer.echo(f"Error: {workflow.error_message}")


# ----------------------------------------------------------------------
# model
@model_app.command("register")
def model_register(path: Path) -> None:
    """
    Add or replace catalog models from a YAML or JSON file.

    The file holds a list of models, or a mapping with a ``models`` list.
    """
    if not path.exists():
        _fail("Specified path does not exist")
    try:
        models = load_model_file(path)
    except (ValueError, ValidationError) as exc:
        _fail(f"Could not parse models: {exc}")
    catalog = get_model_catalog()

    async def _save() -> None:
        for model in models:
            await catalog.save_model(model)

    asyncio.run(_save())
    typer.echo(f"Registered {len(models)} models")


@model_app.command("list")
def model_list(
    all_models: bool = typer.Option(False, "--all", help="Include inactive models"),
) -> None:
    models = asyncio.run(get_model_catalog().list_models(active_only=not all_models))
    if not models:
        typer.echo("No models found")
        return
    for model in models:
        metrics = model.metrics
        typer.echo(
            f"{model.provider_id}:{model.model_id}\t"
            f"perf={metrics.performance_score:.2f} rel={metrics.reliability_score:.2f} "
            f"${model.pricing.input_cost_per_1k}/${model.pricing.output_cost_per_1k} per 1k"
        )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
