"""Progress events emitted by the engine and their wire framing.

Frames follow the server-sent-events convention used by the web client:
``data: <json>\\n\\n`` per event and ``data: [DONE]\\n\\n`` at the end.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DONE_SENTINEL = "data: [DONE]\n\n"


class StepInfo(BaseModel):
    number: int
    id: str
    name: str
    status: str
    description: Optional[str] = None


class StepEvent(BaseModel):
    type: Literal["step"] = "step"
    workflow_id: str
    step: StepInfo


class ContentEvent(BaseModel):
    type: Literal["content"] = "content"
    workflow_id: str
    step_id: str
    content: str


class UsageSummary(BaseModel):
    total_cost_usd: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    requests: int = 0
    provider_breakdown: Dict[str, float] = Field(default_factory=dict)


class UsageEvent(BaseModel):
    type: Literal["usage"] = "usage"
    workflow_id: str
    usage: UsageSummary


class ErrorInfo(BaseModel):
    message: str
    code: str = "WORKFLOW_ERROR"


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    workflow_id: str
    error: ErrorInfo


Event = Union[StepEvent, ContentEvent, UsageEvent, ErrorEvent]


def encode_frame(event: Event) -> str:
    return f"data: {event.model_dump_json(exclude_none=True)}\n\n"


class EventStream:
    """Single-consumer queue of events for one workflow."""

    def __init__(self, workflow_id: str, maxsize: int = 0) -> None:
        self.workflow_id = workflow_id
        self._queue: "asyncio.Queue[Optional[Event]]" = asyncio.Queue(maxsize)
        self.closed = False

    def publish(self, event: Event) -> None:
        if self.closed:
            logger.debug(f"Dropping {event.type} event on closed stream {self.workflow_id}")
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[Event]:
        return self._events()

    async def _events(self) -> AsyncIterator[Event]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def frames(self) -> AsyncIterator[str]:
        """Yield encoded frames, finishing with the ``[DONE]`` sentinel."""
        async for event in self:
            yield encode_frame(event)
        yield DONE_SENTINEL


def usage_totals(records: Any) -> UsageSummary:
    summary = UsageSummary()
    for record in records:
        cost = record.total_cost_usd
        summary.total_cost_usd += cost
        summary.input_tokens += record.input_tokens
        summary.output_tokens += record.output_tokens
        summary.requests += 1
        summary.provider_breakdown[record.provider_id] = (
            summary.provider_breakdown.get(record.provider_id, 0.0) + cost
        )
    return summary
