from .agent_invoker import PydanticAIInvoker
from .base import (
    CancellationToken,
    ModelInvoker,
    ModelResponse,
    ProviderAccess,
    StaticProviderAccess,
    invoke_with_deadline,
)

__all__ = [
    "CancellationToken",
    "ModelInvoker",
    "ModelResponse",
    "ProviderAccess",
    "StaticProviderAccess",
    "invoke_with_deadline",
    "PydanticAIInvoker",
]
