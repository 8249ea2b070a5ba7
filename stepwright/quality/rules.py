"""Validation rules run by the quality gate.

Rules are pydantic models tagged by ``type``. New rule types are added by
subclassing :class:`ValidationRule` and decorating the class with
:func:`register_rule`.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Type, Union

from pydantic import BaseModel, Field

from .models import RuleOutcome, Severity

logger = logging.getLogger(__name__)

RULE_TYPES: Dict[str, Type["ValidationRule"]] = {}

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_TRANSITIONS = re.compile(
    r"\b(however|therefore|furthermore|moreover|consequently)\b", re.IGNORECASE
)
_MARKDOWN = re.compile(r"[#*_`\[\]]")


def register_rule(type_name: str):
    """Class decorator adding a rule class to :data:`RULE_TYPES`."""

    def decorator(cls: Type["ValidationRule"]) -> Type["ValidationRule"]:
        RULE_TYPES[type_name] = cls
        return cls

    return decorator


def split_sentences(text: str) -> List[str]:
    return [s for s in _SENTENCE_SPLIT.split(text) if s.strip()]


class ValidationRule(BaseModel):
    id: str
    name: str = ""
    type: str
    required: bool = False
    weight: float = 1.0

    # Maps keys of a nested ``parameters`` dict onto field names.
    parameter_aliases: ClassVar[Dict[str, str]] = {}

    def evaluate(self, output: str) -> RuleOutcome:
        raise NotImplementedError

    def outcome(
        self,
        passed: bool,
        message: str,
        severity: Severity = "low",
        suggested_fix: Optional[str] = None,
    ) -> RuleOutcome:
        return RuleOutcome(
            rule_id=self.id,
            rule_type=self.type,
            rule_name=self.name or self.id,
            required=self.required,
            passed=passed,
            message=message,
            severity=severity,
            suggested_fix=suggested_fix,
        )

    @classmethod
    def from_spec(cls, spec: Dict[str, Any]) -> "ValidationRule":
        data = {k: v for k, v in spec.items() if k != "parameters"}
        for key, value in (spec.get("parameters") or {}).items():
            data[cls.parameter_aliases.get(key, key)] = value
        return cls.model_validate(data)


@register_rule("length")
class LengthRule(ValidationRule):
    """Character-count bounds."""

    type: str = "length"
    min_length: int = 0
    max_length: Optional[int] = None

    def evaluate(self, output: str) -> RuleOutcome:
        length = len(output)
        if length < self.min_length:
            return self.outcome(
                False,
                f"Output too short: {length} characters (minimum: {self.min_length})",
                "medium",
                f"Expand the output to at least {self.min_length} characters",
            )
        if self.max_length is not None and length > self.max_length:
            return self.outcome(
                False,
                f"Output too long: {length} characters (maximum: {self.max_length})",
                "low",
                f"Shorten the output to at most {self.max_length} characters",
            )
        return self.outcome(True, "Length validation passed")


@register_rule("keywords")
class KeywordsRule(ValidationRule):
    type: str = "keywords"
    required_keywords: List[str] = Field(default_factory=list)
    forbidden_keywords: List[str] = Field(default_factory=list)

    parameter_aliases: ClassVar[Dict[str, str]] = {
        "required": "required_keywords",
        "forbidden": "forbidden_keywords",
    }

    def evaluate(self, output: str) -> RuleOutcome:
        lowered = output.lower()
        for keyword in self.required_keywords:
            if keyword.lower() not in lowered:
                return self.outcome(
                    False,
                    f"Missing required keyword: {keyword}",
                    "high",
                    f"Mention '{keyword}'",
                )
        for keyword in self.forbidden_keywords:
            if keyword.lower() in lowered:
                return self.outcome(
                    False,
                    f'Contains forbidden keyword: "{keyword}"',
                    "medium",
                    f"Remove '{keyword}'",
                )
        return self.outcome(True, "Keywords validation passed")


@register_rule("format")
class FormatRule(ValidationRule):
    type: str = "format"
    format: str = "text"

    def evaluate(self, output: str) -> RuleOutcome:
        if self.format == "json":
            try:
                json.loads(output)
            except ValueError:
                return self.outcome(False, "Invalid JSON format", "high", "Return valid JSON")
            return self.outcome(True, "Valid JSON format")
        if self.format == "markdown":
            if _MARKDOWN.search(output):
                return self.outcome(True, "Valid markdown format", "medium")
            return self.outcome(
                False,
                "No markdown formatting detected",
                "medium",
                "Use markdown headings, lists or emphasis",
            )
        return self.outcome(True, "Format validation passed")


@register_rule("coherence")
class CoherenceRule(ValidationRule):
    """Heuristic coherence check.

    Sentences after the first that carry a transition word count as linked;
    one link per two sentences earns full marks. Repeated sentences scale
    the score down by the share of distinct ones.
    """

    type: str = "coherence"
    min_score: float = 0.5

    def evaluate(self, output: str) -> RuleOutcome:
        sentences = [s.strip().lower() for s in split_sentences(output)]
        if len(sentences) < 2:
            return self.outcome(True, "Single sentence, coherence check passed")
        linked = sum(1 for s in sentences[1:] if _TRANSITIONS.search(s))
        density = min(1.0, 2 * linked / (len(sentences) - 1))
        distinct = len(set(sentences)) / len(sentences)
        score = (0.4 + 0.6 * density) * distinct
        if score < 0.3:
            severity: Severity = "high"
        elif score < 0.6:
            severity = "medium"
        else:
            severity = "low"
        return self.outcome(score > self.min_score, f"Coherence score: {score:.2f}", severity)


RuleSpec = Union[ValidationRule, Dict[str, Any]]


def build_rules(specs: Iterable[RuleSpec]) -> List[ValidationRule]:
    """Turn rule dicts into rule objects. Unknown types are skipped."""
    rules: List[ValidationRule] = []
    for spec in specs:
        if isinstance(spec, ValidationRule):
            rules.append(spec)
            continue
        rule_cls = RULE_TYPES.get(spec.get("type", ""))
        if rule_cls is None:
            logger.warning(f"Unknown validation rule type: {spec.get('type')}")
            continue
        rules.append(rule_cls.from_spec(spec))
    return rules
