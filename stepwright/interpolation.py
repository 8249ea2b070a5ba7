"""Prompt template substitution against a workflow context."""

from __future__ import annotations

import re
from typing import Any, Dict

from .contracts import WorkflowContext

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z0-9_.\-]+)\s*\}\}")
_STEP_KEY = re.compile(r"[^a-zA-Z0-9_]")


def step_key(step_id: str) -> str:
    """Placeholder-safe form of a step id."""
    return _STEP_KEY.sub("_", step_id)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def interpolate(template: str, context: WorkflowContext) -> str:
    """Substitute ``{{...}}`` placeholders. Unknown names are left untouched.

    Resolves ``{{input}}``, ``{{output}}``, any metadata key and
    ``{{<step_id>.output}}`` for every step in the history.
    """

    values: Dict[str, str] = {
        "input": _text(context.input),
        "output": _text(context.output),
    }
    for key, value in context.metadata.items():
        values.setdefault(key, _text(value))
    for entry in context.history:
        values[f"{step_key(entry.step)}.output"] = _text(entry.output)

    def replace(match: re.Match) -> str:
        return values.get(match.group(1), match.group(0))

    return _PLACEHOLDER.sub(replace, template)
