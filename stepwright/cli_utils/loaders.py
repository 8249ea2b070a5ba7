"""Helpers for reading template and model files."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, List

import yaml

from stepwright.contracts import WorkflowTemplate
from stepwright.registry import ModelInfo
from stepwright.validation import ValidationReport


def read_document(path: Path) -> Any:
    """Parse a YAML or JSON file, chosen by suffix."""
    text = path.read_text()
    if path.suffix.lower() == ".json":
        return json.loads(text)
    try:
        return yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML: {exc}") from exc


def load_template_file(path: Path) -> WorkflowTemplate:
    return WorkflowTemplate.model_validate(read_document(path))


def load_model_file(path: Path) -> List[ModelInfo]:
    """Read a list of models, either bare or under a ``models`` key."""
    data = read_document(path)
    if isinstance(data, dict):
        data = data.get("models", [])
    if not isinstance(data, list):
        raise ValueError("Model file must hold a list of models")
    return [ModelInfo.model_validate(item) for item in data]


def format_report(report: ValidationReport) -> Iterable[str]:
    for error in report.errors:
        yield f"ERROR: {error}"
    for warning in report.warnings:
        yield f"WARNING: {warning}"
    for number, layer in enumerate(report.layers, 1):
        yield f"Layer {number}: {', '.join(layer)}"
