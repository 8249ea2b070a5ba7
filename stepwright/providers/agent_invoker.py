"""Model invoker backed by pydantic-ai agents."""

from __future__ import annotations

import logging
import time
from typing import Dict, Optional

from pydantic_ai import Agent
from pydantic_ai.models import Model

from ..errors import ProviderError
from .base import CancellationToken, ModelResponse

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are one step of a multi-step workflow. Answer the prompt directly "
    "and completely."
)


class PydanticAIInvoker:
    """Invoke ``provider:model`` ids through a cached ``pydantic_ai.Agent``.

    ``overrides`` maps model ids to concrete pydantic-ai ``Model`` objects,
    and ``default_model`` replaces every model. Both are how tests plug in
    ``TestModel`` or ``FunctionModel``.
    """

    def __init__(
        self,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        overrides: Optional[Dict[str, Model]] = None,
        default_model: Optional[Model] = None,
    ) -> None:
        self.system_prompt = system_prompt
        self._overrides = dict(overrides or {})
        self._default_model = default_model
        self._agents: Dict[str, Agent] = {}

    def _agent_for(self, model: str) -> Agent:
        agent = self._agents.get(model)
        if agent is None:
            target = self._overrides.get(model) or self._default_model or model
            agent = Agent(target, system_prompt=self.system_prompt)
            self._agents[model] = agent
        return agent

    async def invoke(
        self,
        model: str,
        prompt: str,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ModelResponse:
        provider = model.split(":", 1)[0] if ":" in model else None
        start = time.perf_counter()
        try:
            agent = self._agent_for(model)
            result = await agent.run(prompt)
        except Exception as exc:
            logger.warning(f"Model {model} failed: {exc}")
            raise ProviderError(str(exc), provider=provider, model=model) from exc
        latency_ms = (time.perf_counter() - start) * 1000

        usage = result.usage()
        output = result.output
        content = output if isinstance(output, str) else str(output)
        logger.debug(
            f"Model {model} answered in {latency_ms:.0f}ms "
            f"({usage.input_tokens} in / {usage.output_tokens} out)"
        )
        return ModelResponse(
            content=content,
            input_tokens=usage.input_tokens or 0,
            output_tokens=usage.output_tokens or 0,
            latency_ms=latency_ms,
        )
