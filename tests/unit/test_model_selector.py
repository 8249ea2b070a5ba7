import pytest

from stepwright.errors import NoAccessibleModel, NoCapableModel
from stepwright.persistence import InMemoryModelCatalog
from stepwright.registry import (
    ModelCapabilities,
    ModelInfo,
    ModelMetrics,
    ModelSelector,
    TaskRequirements,
)


def _pair():
    return [
        ModelInfo(
            id="a",
            provider_id="openai",
            model_id="model-a",
            metrics=ModelMetrics(performance_score=0.9, cost_efficiency=0.3),
        ),
        ModelInfo(
            id="b",
            provider_id="openai",
            model_id="model-b",
            metrics=ModelMetrics(performance_score=0.5, cost_efficiency=0.9),
        ),
    ]


@pytest.mark.asyncio
async def test_priority_changes_ranking():
    selector = ModelSelector(InMemoryModelCatalog(_pair()))

    quality = await selector.select_optimal_model(
        TaskRequirements(priority="quality"), ["openai"]
    )
    cost = await selector.select_optimal_model(TaskRequirements(priority="cost"), ["openai"])

    assert quality.primary_model.model_id == "model-a"
    assert [m.model_id for m in quality.fallback_models] == ["model-b"]
    assert cost.primary_model.model_id == "model-b"


@pytest.mark.asyncio
async def test_preferred_model_is_promoted():
    selector = ModelSelector(InMemoryModelCatalog(_pair()))

    selection = await selector.select_optimal_model(
        TaskRequirements(priority="quality"), ["openai"], preferred="openai:model-b"
    )

    assert selection.primary_model.model_id == "model-b"
    assert selection.fallback_models[0].model_id == "model-a"


@pytest.mark.asyncio
async def test_filters_raise_typed_errors(catalog):
    selector = ModelSelector(catalog)

    with pytest.raises(NoAccessibleModel):
        await selector.select_optimal_model(TaskRequirements(), ["mistral"])
    with pytest.raises(NoCapableModel):
        await selector.select_optimal_model(
            TaskRequirements(required_capabilities=["vision"]), ["openai", "anthropic"]
        )
    with pytest.raises(NoCapableModel):
        await selector.select_optimal_model(TaskRequirements(quality_threshold=0.99), ["openai"])


@pytest.mark.asyncio
async def test_capability_and_cost_ceiling_filters():
    models = _pair()
    models[1].capabilities = ModelCapabilities(vision=True)
    models[0].pricing.output_cost_per_1k = 1.0
    selector = ModelSelector(InMemoryModelCatalog(models))

    vision = await selector.select_optimal_model(
        TaskRequirements(required_capabilities=["vision"]), ["openai"]
    )
    cheap = await selector.select_optimal_model(
        TaskRequirements(priority="quality", max_cost_per_request=0.5), ["openai"]
    )

    assert vision.primary_model.model_id == "model-b"
    assert cheap.primary_model.model_id == "model-b"
    assert cheap.fallback_models == []


@pytest.mark.asyncio
async def test_estimated_cost_and_reasoning(catalog):
    selector = ModelSelector(catalog)

    selection = await selector.select_optimal_model(
        TaskRequirements(task_type="research", estimated_input_tokens=2000, estimated_output_tokens=500),
        ["openai"],
    )

    assert selection.estimated_cost == pytest.approx(2 * 0.00015 + 0.5 * 0.0006)
    assert selection.reasoning.startswith("Selected gpt-4o-mini for research task")
    assert "optimized for research" in selection.reasoning
    assert 0 < selection.confidence <= 1


@pytest.mark.asyncio
async def test_metric_updates_use_ema_and_invalidate_cache(catalog):
    selector = ModelSelector(catalog)
    await selector.get_model("gpt-4o-mini")

    updated = await selector.update_model_metrics("gpt-4o-mini", 0.0, True, quality_score=1.0)

    assert updated.reliability_score == pytest.approx(0.9 + 0.1 * (1.0 - 0.9))
    assert updated.speed_score == pytest.approx(0.9 + 0.1 * (1.0 - 0.9))
    assert updated.performance_score == pytest.approx(0.75 + 0.1 * 0.25)
    stored = await catalog.get_model("gpt-4o-mini")
    assert stored.metrics == updated
    assert (await selector.get_model("gpt-4o-mini")).metrics == updated


@pytest.mark.asyncio
async def test_failure_lowers_reliability_without_touching_performance(catalog):
    selector = ModelSelector(catalog)

    updated = await selector.update_model_metrics("claude-sonnet", 20_000.0, False)

    assert updated.reliability_score == pytest.approx(0.81)
    assert updated.speed_score == pytest.approx(0.54)
    assert updated.performance_score == pytest.approx(0.95)
    assert await selector.update_model_metrics("unknown", 10.0, True) is None


@pytest.mark.asyncio
async def test_cache_respects_ttl():
    now = [0.0]
    catalog = InMemoryModelCatalog(_pair())
    selector = ModelSelector(catalog, clock=lambda: now[0])
    await selector.select_optimal_model(TaskRequirements(), ["openai"])

    await catalog.save_model(
        ModelInfo(id="c", provider_id="openai", model_id="model-c", best_use_cases=["coding"])
    )
    assert await selector.get_model_recommendations("coding", ["openai"]) == []

    now[0] = 301.0
    recommended = await selector.get_model_recommendations("coding", ["openai"])
    assert [m.model_id for m in recommended] == ["model-c"]


@pytest.mark.asyncio
async def test_fallback_model_excludes_failed_one(catalog):
    selector = ModelSelector(catalog)

    fallback = await selector.get_fallback_model(
        "gpt-4o-mini", TaskRequirements(), ["openai", "anthropic"]
    )
    none_left = await selector.get_fallback_model("gpt-4o-mini", TaskRequirements(), ["openai"])

    assert fallback.model_id == "claude-sonnet"
    assert none_left is None


def _shared_name():
    return [
        ModelInfo(id="openai-shared", provider_id="openai", model_id="shared"),
        ModelInfo(id="anthropic-shared", provider_id="anthropic", model_id="shared"),
    ]


@pytest.mark.asyncio
async def test_same_model_id_under_two_providers_stays_distinct():
    catalog = InMemoryModelCatalog(_shared_name())
    selector = ModelSelector(catalog)

    selection = await selector.select_optimal_model(TaskRequirements(), ["openai", "anthropic"])
    picked = [selection.primary_model, *selection.fallback_models]
    assert sorted(m.ref for m in picked) == ["anthropic:shared", "openai:shared"]

    await selector.update_model_metrics("openai-shared", 100.0, success=False)

    openai = await catalog.get_model("openai:shared")
    anthropic = await catalog.get_model("anthropic:shared")
    assert openai.metrics.reliability_score < 0.9
    assert anthropic.metrics.reliability_score == 0.9
    assert await selector.get_model("shared") is None
    assert (await selector.get_model("anthropic:shared")).id == "anthropic-shared"
