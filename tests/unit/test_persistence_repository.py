import uuid
from datetime import timedelta

import pytest

from stepwright.contracts import HistoryEntry, utc_now
from stepwright.persistence import (
    InMemoryWorkflowRepository,
    SQLiteModelCatalog,
    SQLiteReviewRepository,
    SQLiteWorkflowRepository,
    WorkflowBackup,
    WorkflowInstance,
    get_ledger,
    get_model_catalog,
    get_repository,
    get_review_repository,
)
from stepwright.persistence.inmemory import InMemoryUsageLedger
from stepwright.quality import ReviewRequest
from stepwright.registry import ModelInfo, ModelMetrics


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        return InMemoryWorkflowRepository()
    return SQLiteWorkflowRepository(tmp_path / "wf.db")


def _workflow(status="running", **fields):
    return WorkflowInstance(id=str(uuid.uuid4()), user_id="u1", status=status, **fields)


@pytest.mark.asyncio
async def test_workflow_crud(repo, template):
    wf = _workflow(template_id=template.id, steps=template.steps)
    wf.context.input = {"topic": "solar"}
    wf.context.record(HistoryEntry(step="research", output="notes", duration_ms=4.0))

    await repo.save_workflow(wf)
    wf.status = "paused"
    await repo.save_workflow(wf)

    loaded = await repo.get_workflow(wf.id)
    assert loaded is not None
    assert loaded.status == "paused"
    assert loaded.context.input == {"topic": "solar"}
    assert loaded.context.output_of("research") == "notes"
    assert [s.id for s in loaded.steps] == [s.id for s in template.steps]

    assert [w.id for w in await repo.list_workflows("paused")] == [wf.id]
    assert await repo.list_workflows("running") == []

    await repo.delete_workflow(wf.id)
    assert await repo.get_workflow(wf.id) is None


@pytest.mark.asyncio
async def test_stored_copies_are_detached(repo):
    wf = _workflow()
    await repo.save_workflow(wf)

    wf.status = "failed"
    loaded = await repo.get_workflow(wf.id)
    loaded.metadata["x"] = 1

    again = await repo.get_workflow(wf.id)
    assert again.status == "running"
    assert again.metadata == {}


@pytest.mark.asyncio
async def test_delete_workflows_by_status_and_age(repo):
    old = utc_now() - timedelta(days=10)
    stale = _workflow("completed", updated_at=old)
    fresh = _workflow("completed")
    failed = _workflow("failed", updated_at=old)
    for wf in (stale, fresh, failed):
        await repo.save_workflow(wf)

    removed = await repo.delete_workflows("completed", utc_now() - timedelta(days=7))

    assert removed == 1
    assert {w.id for w in await repo.list_workflows()} == {fresh.id, failed.id}


@pytest.mark.asyncio
async def test_backups_latest_first(repo):
    wf = _workflow()
    first = WorkflowBackup(id="b1", workflow_id=wf.id, snapshot=wf.model_copy(deep=True))
    wf.progress = 50.0
    second = WorkflowBackup(
        id="b2", workflow_id=wf.id, snapshot=wf, created_at=first.created_at + timedelta(seconds=1)
    )
    await repo.save_backup(first)
    await repo.save_backup(second)

    latest = await repo.get_backup(wf.id)
    named = await repo.get_backup(wf.id, "b1")

    assert latest.id == "b2"
    assert latest.snapshot.progress == 50.0
    assert named.snapshot.progress == 0.0
    assert [b.id for b in await repo.list_backups(wf.id)] == ["b2", "b1"]
    assert await repo.get_backup(wf.id, "missing") is None
    assert await repo.get_backup("other") is None


@pytest.mark.asyncio
async def test_templates(repo, template):
    await repo.save_template(template)
    renamed = template.model_copy(update={"name": "Renamed"})
    await repo.save_template(renamed)

    loaded = await repo.get_template(template.id)
    assert loaded.name == "Renamed"
    assert loaded.steps[3].dependencies == ["critique", "fact-check"]
    assert [t.id for t in await repo.list_templates()] == [template.id]
    assert await repo.get_template("missing") is None


@pytest.mark.asyncio
async def test_sqlite_model_catalog(tmp_path):
    catalog = SQLiteModelCatalog(tmp_path / "models.db")
    await catalog.save_model(ModelInfo(id="a", provider_id="openai", model_id="model-a"))
    await catalog.save_model(
        ModelInfo(id="b", provider_id="openai", model_id="model-b", is_active=False)
    )

    assert [m.model_id for m in await catalog.list_models()] == ["model-a"]
    assert len(await catalog.list_models(active_only=False)) == 2

    await catalog.update_model_metrics("model-a", ModelMetrics(reliability_score=0.5))
    await catalog.update_model_metrics("missing", ModelMetrics())

    stored = await catalog.get_model("model-a")
    assert stored.metrics.reliability_score == 0.5
    assert await catalog.get_model("missing") is None


@pytest.mark.asyncio
async def test_sqlite_model_catalog_keeps_providers_apart(tmp_path):
    catalog = SQLiteModelCatalog(tmp_path / "models.db")
    await catalog.save_model(ModelInfo(id="openai-shared", provider_id="openai", model_id="shared"))
    await catalog.save_model(
        ModelInfo(id="anthropic-shared", provider_id="anthropic", model_id="shared")
    )

    assert [m.id for m in await catalog.list_models()] == ["anthropic-shared", "openai-shared"]

    await catalog.update_model_metrics("anthropic:shared", ModelMetrics(reliability_score=0.4))

    assert (await catalog.get_model("anthropic-shared")).metrics.reliability_score == 0.4
    assert (await catalog.get_model("openai-shared")).metrics.reliability_score == 0.9
    assert await catalog.get_model("shared") is None


@pytest.mark.asyncio
async def test_sqlite_review_repository(tmp_path):
    reviews = SQLiteReviewRepository(tmp_path / "reviews.db")
    review = ReviewRequest(id="r1", workflow_id="wf", step_id="draft", content="text")
    await reviews.create_review(review)

    assert [r.id for r in await reviews.list_reviews("pending")] == ["r1"]

    review.status = "completed"
    review.approved = True
    await reviews.save_review(review)

    loaded = await reviews.get_review("r1")
    assert loaded.approved is True
    assert await reviews.list_reviews("pending") == []
    assert len(await reviews.list_reviews()) == 1


def test_factories_follow_database_url(tmp_path):
    url = f"sqlite://{tmp_path / 'factory.db'}"

    repo = get_repository(url)

    assert isinstance(repo, SQLiteWorkflowRepository)
    assert get_repository() is repo
    assert isinstance(get_model_catalog(url), SQLiteModelCatalog)
    assert isinstance(get_review_repository(url), SQLiteReviewRepository)
    assert isinstance(get_ledger(), InMemoryUsageLedger)


def test_factories_default_to_memory():
    assert isinstance(get_repository(), InMemoryWorkflowRepository)


def test_unsupported_backend_raises():
    with pytest.raises(ValueError):
        get_repository("mysql://localhost/db")
