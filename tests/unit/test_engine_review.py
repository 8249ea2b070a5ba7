import asyncio

import pytest

from stepwright.config import EngineSettings
from stepwright.contracts import AgentStep, WorkflowTemplate
from stepwright.engine import WorkflowEngine
from stepwright.runner import WorkflowRunner

IMPROVED = (
    "Quantum sensors measure tiny changes in magnetic fields with great precision. "
    "Hospitals use them to map brain activity without surgery. "
    "Engineers also place them in navigation systems that must work without satellites."
)


def _template(rules):
    return WorkflowTemplate(
        id="reviewed",
        name="Reviewed",
        steps=[
            AgentStep(
                id="draft",
                name="Draft",
                agent_type="writer",
                prompt_template="Write about {{input}}",
                validation_rules=rules,
            )
        ],
    )


KEYWORD_RULE = {
    "id": "mentions-quantum",
    "type": "keywords",
    "required": True,
    "parameters": {"required": ["quantum"]},
}


async def _paused_for_review(engine):
    await engine.register_template(_template([KEYWORD_RULE]))
    wf_id = await engine.create_workflow("u1", "reviewed", input="sensors")
    result = await engine.execute_step(wf_id, "draft")
    return wf_id, result


@pytest.mark.asyncio
async def test_high_severity_issue_pauses_for_review(engine, invoker):
    wf_id, result = await _paused_for_review(engine)

    assert result.success
    assert result.output == invoker.reply
    review_id = result.metadata["pending_review_id"]

    wf = await engine.resume_workflow(wf_id)
    assert wf.status == "paused"
    assert wf.metadata["pending_review_id"] == review_id
    assert wf.context.completed_steps() == ["draft"]

    pending = await engine.quality.list_pending_reviews()
    assert [r.id for r in pending] == [review_id]
    assert pending[0].priority == "high"
    assert await engine.resolve_human_review(wf_id) is None


@pytest.mark.asyncio
async def test_approved_review_applies_correction_and_completes(engine):
    wf_id, result = await _paused_for_review(engine)
    review_id = result.metadata["pending_review_id"]

    await engine.quality.complete_human_review(
        review_id, approved=True, corrected_output=IMPROVED, reviewer_id="editor"
    )
    wf = await engine.resolve_human_review(wf_id)

    assert wf.status == "completed"
    assert wf.context.output_of("draft") == IMPROVED
    assert wf.context.output == IMPROVED
    assert "pending_review_id" not in wf.metadata
    assert wf.metadata["reviews"][0]["reviewer_id"] == "editor"


@pytest.mark.asyncio
async def test_rejected_review_fails_the_step(engine):
    wf_id, result = await _paused_for_review(engine)
    review_id = result.metadata["pending_review_id"]

    await engine.quality.complete_human_review(review_id, approved=False, feedback="Off topic")
    wf = await engine.resolve_human_review(wf_id)

    assert wf.status == "failed"
    assert wf.current_step == "draft"
    assert wf.context.history == []
    assert "Off topic" in wf.error_message


@pytest.mark.asyncio
async def test_resolve_without_pending_review_is_a_no_op(engine, template):
    await engine.register_template(template)
    wf_id = await engine.create_workflow("u1", template.id)

    wf = await engine.resolve_human_review(wf_id)

    assert wf.status == "pending"


@pytest.mark.asyncio
async def test_self_correction_replaces_short_output(engine, invoker):
    engine.settings = EngineSettings(self_correction_attempts=2)

    def reply(model, prompt):
        if prompt.startswith("Please improve"):
            return IMPROVED
        return "Too short answer here."

    invoker.reply = reply
    await engine.register_template(
        _template([{"id": "long-enough", "type": "length", "parameters": {"min_length": 200}}])
    )
    wf_id = await engine.create_workflow("u1", "reviewed", input="sensors")

    result = await engine.execute_step(wf_id, "draft")

    assert result.success
    assert result.output == IMPROVED
    assert result.metadata["self_correction_attempts"] == 1
    assert result.metadata["quality"]["passed"]
    assert len(invoker.calls) == 2
    wf = await engine.resume_workflow(wf_id)
    assert wf.status == "completed"
    assert wf.context.output_of("draft") == IMPROVED


def test_engine_settings_default_to_no_self_correction(engine):
    assert isinstance(engine, WorkflowEngine)
    assert engine.settings.self_correction_attempts == 0


def _two_step_template():
    template = _template([KEYWORD_RULE])
    template.id = "reviewed-then-final"
    template.steps.append(
        AgentStep(
            id="final",
            name="Final",
            prompt_template="Polish {{draft.output}}",
            dependencies=["draft"],
        )
    )
    return template


async def _run_until_review(engine):
    template = _two_step_template()
    await engine.register_template(template)
    wf_id = await engine.create_workflow("u1", template.id, input="sensors")
    wf = await WorkflowRunner(engine).run(wf_id)
    return wf_id, wf


@pytest.mark.asyncio
async def test_pending_review_blocks_further_steps(engine, invoker):
    wf_id, wf = await _run_until_review(engine)
    review_id = wf.metadata["pending_review_id"]
    assert wf.status == "paused"

    refused = await engine.execute_step(wf_id, "final")
    again = await WorkflowRunner(engine).run(wf_id)

    assert not refused.success
    assert refused.metadata["error_kind"] == "review_pending"
    assert refused.metadata["pending_review_id"] == review_id
    assert again.status == "paused"
    assert again.context.completed_steps() == ["draft"]
    assert again.metadata["pending_review_id"] == review_id
    assert len(invoker.calls) == 1


@pytest.mark.asyncio
async def test_manual_resume_does_not_skip_review(engine, invoker):
    wf_id, wf = await _run_until_review(engine)

    await engine.resume_paused_workflow(wf_id)
    result = await engine.execute_step(wf_id, "final")

    assert not result.success
    assert result.metadata["error_kind"] == "review_pending"
    assert (await engine.resume_workflow(wf_id)).context.completed_steps() == ["draft"]
    assert len(invoker.calls) == 1


@pytest.mark.asyncio
async def test_runner_continues_after_approval(engine, invoker):
    wf_id, wf = await _run_until_review(engine)
    await engine.quality.complete_human_review(
        wf.metadata["pending_review_id"], approved=True, corrected_output=IMPROVED
    )

    done = await WorkflowRunner(engine).run(wf_id)

    assert done.status == "completed"
    assert done.context.completed_steps() == ["draft", "final"]
    assert invoker.calls[-1][1] == f"Polish {IMPROVED}"


@pytest.mark.asyncio
async def test_runner_stops_after_rejection(engine, invoker):
    wf_id, wf = await _run_until_review(engine)
    await engine.quality.complete_human_review(
        wf.metadata["pending_review_id"], approved=False, feedback="Off topic"
    )

    done = await WorkflowRunner(engine).run(wf_id)

    assert done.status == "failed"
    assert done.current_step == "draft"
    assert done.context.history == []
    assert len(invoker.calls) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("approved", [True, False])
async def test_verdict_on_cancelled_workflow_is_recorded_without_transition(engine, approved):
    wf_id, wf = await _run_until_review(engine)
    review_id = wf.metadata["pending_review_id"]
    await engine.cancel_workflow(wf_id)
    await engine.quality.complete_human_review(review_id, approved=approved)

    resolved = await engine.resolve_human_review(wf_id)

    assert resolved.status == "cancelled"
    assert "pending_review_id" not in resolved.metadata
    assert resolved.metadata["reviews"][0]["review_id"] == review_id
    assert resolved.metadata["reviews"][0]["workflow_status"] == "cancelled"
    stored = await engine.repository.get_workflow(wf_id)
    assert stored.metadata == resolved.metadata
    assert await engine.resolve_human_review(wf_id) is resolved


@pytest.mark.asyncio
async def test_cancel_stops_inflight_self_correction(engine, invoker):
    engine.settings = EngineSettings(self_correction_attempts=2)

    def reply(model, prompt):
        invoker.delay = 5.0
        return "Too short answer here."

    invoker.reply = reply
    await engine.register_template(
        _template([{"id": "long-enough", "type": "length", "parameters": {"min_length": 200}}])
    )
    wf_id = await engine.create_workflow("u1", "reviewed", input="sensors")

    task = asyncio.create_task(engine.execute_step(wf_id, "draft"))
    while len(invoker.calls) < 2:
        await asyncio.sleep(0.01)
    await engine.cancel_workflow(wf_id)
    result = await asyncio.wait_for(task, timeout=1.0)

    assert invoker.calls[1][1].startswith("Please improve")
    assert not result.success
    assert result.metadata["error_kind"] == "step_cancelled"
    assert (await engine.resume_workflow(wf_id)).status == "cancelled"
