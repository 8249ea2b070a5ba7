import json

import pytest

from stepwright.engine import WorkflowEngine
from stepwright.errors import ProviderError
from stepwright.events import DONE_SENTINEL
from stepwright.persistence import (
    InMemoryUsageLedger,
    SQLiteReviewRepository,
    SQLiteWorkflowRepository,
)
from stepwright.providers import StaticProviderAccess
from stepwright.quality import QualityGate
from stepwright.registry import ModelSelector
from stepwright.runner import WorkflowRunner
from stepwright.usage import UsageMonitor


@pytest.fixture
def sqlite_engine(tmp_path, invoker, catalog):
    db_path = tmp_path / "stepwright.db"
    return WorkflowEngine(
        SQLiteWorkflowRepository(db_path),
        invoker,
        ModelSelector(catalog),
        UsageMonitor(InMemoryUsageLedger(), catalog=catalog),
        QualityGate(SQLiteReviewRepository(db_path), invoker=invoker),
        StaticProviderAccess(["openai", "anthropic"]),
    )


def _payloads(frames):
    return [json.loads(frame[len("data: "):]) for frame in frames if frame != DONE_SENTINEL]


@pytest.mark.asyncio
async def test_runner_completes_workflow_and_persists(sqlite_engine, template, invoker, tmp_path):
    await sqlite_engine.register_template(template)
    wf_id = await sqlite_engine.create_workflow("u1", template.id, input="solar power")

    wf = await WorkflowRunner(sqlite_engine).run(wf_id)

    assert wf.status == "completed"
    assert wf.progress == 100.0
    assert wf.context.completed_steps()[0] == "research"
    assert wf.context.completed_steps()[-1] == "summary"
    assert len(invoker.calls) == 4
    summary_prompt = invoker.calls[-1][1]
    assert "{{" not in summary_prompt

    reopened = SQLiteWorkflowRepository(tmp_path / "stepwright.db")
    stored = await reopened.get_workflow(wf_id)
    assert stored.status == "completed"
    assert stored.total_cost == pytest.approx(wf.total_cost)
    assert stored.total_cost > 0


@pytest.mark.asyncio
async def test_runner_stops_at_failed_step(engine, template, invoker):
    answer = invoker.reply

    def reply(model, prompt):
        if prompt.startswith("Summarise"):
            raise ProviderError("upstream unavailable", provider="openai", model=model)
        return answer

    invoker.reply = reply
    await engine.register_template(template)
    wf_id = await engine.create_workflow("u1", template.id, input="solar power")

    wf = await WorkflowRunner(engine).run(wf_id)

    assert wf.status == "failed"
    assert wf.current_step == "summary"
    assert "upstream unavailable" in wf.error_message
    assert len(wf.context.history) == 3


@pytest.mark.asyncio
async def test_runner_stops_when_budget_pauses(engine, template, invoker):
    await engine.usage.update_limits("u1", daily_limit_usd=0.000001)
    await engine.register_template(template)
    wf_id = await engine.create_workflow("u1", template.id, input="solar power")

    wf = await WorkflowRunner(engine).run(wf_id)

    assert wf.status == "paused"
    assert wf.context.history == []
    assert invoker.calls == []


@pytest.mark.asyncio
async def test_resumed_run_skips_completed_steps(engine, template, invoker):
    await engine.register_template(template)
    wf_id = await engine.create_workflow("u1", template.id, input="solar power")
    await engine.execute_step(wf_id, "research")

    wf = await WorkflowRunner(engine).run(wf_id)

    assert wf.status == "completed"
    assert [prompt for _, prompt in invoker.calls].count("Research solar power") == 1


@pytest.mark.asyncio
async def test_stream_yields_events_then_done(engine, template):
    await engine.register_template(template)
    wf_id = await engine.create_workflow("u1", template.id, input="solar power")

    frames = [frame async for frame in WorkflowRunner(engine).stream(wf_id)]

    assert frames[-1] == DONE_SENTINEL
    payloads = _payloads(frames)
    types = [p["type"] for p in payloads]
    assert types[0] == "step"
    assert types.count("content") == 4
    assert types[-1] == "usage"
    usage = payloads[-1]["usage"]
    assert usage["requests"] == 4
    assert usage["total_cost_usd"] > 0
    completed = [
        p["step"]["id"]
        for p in payloads
        if p["type"] == "step" and p["step"]["status"] == "completed"
    ]
    assert completed[0] == "research"
    assert completed[-1] == "summary"


@pytest.mark.asyncio
async def test_stream_reports_unknown_workflow(engine):
    frames = [frame async for frame in WorkflowRunner(engine).stream("missing")]

    assert frames[-1] == DONE_SENTINEL
    error = _payloads(frames)[0]
    assert error["type"] == "error"
    assert error["error"]["code"] == "WORKFLOW_NOT_FOUND"
