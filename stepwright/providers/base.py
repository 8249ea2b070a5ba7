"""Model invocation contract shared by the engine and the quality gate."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional, Protocol

from pydantic import BaseModel

from ..errors import StepCancelled, StepTimeout

logger = logging.getLogger(__name__)


class ModelResponse(BaseModel):
    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: float = 0.0


class CancellationToken:
    """Cooperative cancellation flag shared by every call of one workflow."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class ModelInvoker(Protocol):
    """Send a prompt to a model and return its text with token counts."""

    async def invoke(
        self,
        model: str,
        prompt: str,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ModelResponse:
        """Raise :class:`~stepwright.errors.ProviderError` on failure."""


class ProviderAccess(Protocol):
    def providers_for(self, user_id: str) -> set[str]:
        """Return the provider ids the user holds credentials for."""


class StaticProviderAccess:
    """Grant every user the same set of providers."""

    def __init__(self, providers: Iterable[str]):
        self._providers = {p.lower() for p in providers}

    def providers_for(self, user_id: str) -> set[str]:
        return set(self._providers)


async def invoke_with_deadline(
    invoker: ModelInvoker,
    model: str,
    prompt: str,
    *,
    timeout_ms: int,
    cancel_token: Optional[CancellationToken] = None,
) -> ModelResponse:
    """Run ``invoker.invoke`` and abort it on timeout or cancellation.

    A ``timeout_ms`` of zero disables the deadline.
    """

    if cancel_token is not None and cancel_token.cancelled:
        raise StepCancelled(f"Invocation of {model} cancelled before start")

    call = asyncio.ensure_future(
        invoker.invoke(model, prompt, cancel_token=cancel_token)
    )
    waiters = {call}
    watcher: Optional[asyncio.Future] = None
    if cancel_token is not None:
        watcher = asyncio.ensure_future(cancel_token.wait())
        waiters.add(watcher)

    timeout = timeout_ms / 1000 if timeout_ms > 0 else None
    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        call.cancel()
        raise
    finally:
        if watcher is not None and not watcher.done():
            watcher.cancel()

    if call in done:
        return call.result()

    call.cancel()
    try:
        await call
    except asyncio.CancelledError:
        pass
    if watcher is not None and watcher in done:
        logger.info(f"Invocation of {model} cancelled: {cancel_token.reason}")
        raise StepCancelled(f"Invocation of {model} cancelled")
    logger.warning(f"Invocation of {model} exceeded {timeout_ms}ms")
    raise StepTimeout(
        f"Model {model} did not answer within {timeout_ms}ms", model=model
    )
