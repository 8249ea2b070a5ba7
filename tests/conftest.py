import asyncio
from typing import Callable, List, Optional, Tuple, Union

import pytest

import stepwright.persistence as persistence
from stepwright.contracts import AgentStep, WorkflowTemplate
from stepwright.engine import WorkflowEngine
from stepwright.persistence import (
    InMemoryModelCatalog,
    InMemoryReviewRepository,
    InMemoryUsageLedger,
    InMemoryWorkflowRepository,
)
from stepwright.providers import ModelResponse, StaticProviderAccess
from stepwright.quality import QualityGate
from stepwright.registry import ModelInfo, ModelMetrics, ModelPricing, ModelSelector
from stepwright.usage import UsageMonitor

GOOD_ANSWER = (
    "The survey found that small teams adopt compact models first. "
    "Larger models follow once budgets allow steady growth."
)

Reply = Union[str, Callable[[str, str], str]]


class ScriptedInvoker:
    """Model invoker double that answers from a script and records calls."""

    def __init__(self, reply: Reply = GOOD_ANSWER) -> None:
        self.reply = reply
        self.delay = 0.0
        self.error: Optional[Exception] = None
        self.calls: List[Tuple[str, str]] = []

    async def invoke(self, model, prompt, *, cancel_token=None):
        self.calls.append((model, prompt))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        content = self.reply(model, prompt) if callable(self.reply) else self.reply
        return ModelResponse(
            content=content,
            input_tokens=len(prompt.split()),
            output_tokens=len(content.split()),
            latency_ms=12.0,
        )


def make_models() -> List[ModelInfo]:
    return [
        ModelInfo(
            id="openai-gpt-4o-mini",
            provider_id="openai",
            model_id="gpt-4o-mini",
            pricing=ModelPricing(input_cost_per_1k=0.00015, output_cost_per_1k=0.0006),
            metrics=ModelMetrics(performance_score=0.75, cost_efficiency=0.95, speed_score=0.9),
            best_use_cases=["research", "summarization"],
        ),
        ModelInfo(
            id="anthropic-claude-sonnet",
            provider_id="anthropic",
            model_id="claude-sonnet",
            pricing=ModelPricing(input_cost_per_1k=0.003, output_cost_per_1k=0.015),
            metrics=ModelMetrics(performance_score=0.95, cost_efficiency=0.5, speed_score=0.6),
            best_use_cases=["analysis", "writing"],
        ),
    ]


def make_template(template_id: str = "research") -> WorkflowTemplate:
    return WorkflowTemplate(
        id=template_id,
        name="Research and summarise",
        steps=[
            AgentStep(id="research", name="Research", prompt_template="Research {{input}}"),
            AgentStep(
                id="critique",
                name="Critique",
                agent_type="critic",
                prompt_template="Critique: {{research.output}}",
                dependencies=["research"],
            ),
            AgentStep(
                id="fact-check",
                name="Fact check",
                agent_type="analyzer",
                prompt_template="Check facts in {{research.output}}",
                dependencies=["research"],
            ),
            AgentStep(
                id="summary",
                name="Summary",
                agent_type="summarizer",
                prompt_template="Summarise {{critique.output}} and {{fact_check.output}}",
                dependencies=["critique", "fact-check"],
            ),
        ],
    )


@pytest.fixture(autouse=True)
def _reset_factories(monkeypatch):
    monkeypatch.delenv("STEPWRIGHT_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("STEPWRIGHT_LEDGER_URL", raising=False)
    persistence.reset_factories()
    yield
    persistence.reset_factories()


@pytest.fixture
def invoker() -> ScriptedInvoker:
    return ScriptedInvoker()


@pytest.fixture
def catalog() -> InMemoryModelCatalog:
    return InMemoryModelCatalog(make_models())


@pytest.fixture
def engine(invoker, catalog) -> WorkflowEngine:
    selector = ModelSelector(catalog)
    usage = UsageMonitor(InMemoryUsageLedger(), catalog=catalog)
    gate = QualityGate(InMemoryReviewRepository(), invoker=invoker)
    return WorkflowEngine(
        InMemoryWorkflowRepository(),
        invoker,
        selector,
        usage,
        gate,
        StaticProviderAccess(["openai", "anthropic"]),
    )


@pytest.fixture
def template() -> WorkflowTemplate:
    return make_template()
