"""Heuristic quality metrics."""

from __future__ import annotations

from typing import Sequence

from ..scoring import QualityScoring
from .models import QualityMetrics, RuleOutcome
from .rules import split_sentences

# Distance from the normal length at which the clarity sub-score reaches 0.
WORD_LENGTH_SPAN = 10
SENTENCE_LENGTH_SPAN = 20

CONFIDENCE_BASE = 0.8
INTERNAL_CONSISTENCY = 0.85


def rule_compliance(outcomes: Sequence[RuleOutcome]) -> float:
    if not outcomes:
        return 1.0
    return sum(1 for o in outcomes if o.passed) / len(outcomes)


def completeness_score(output: str, step_type: str, scoring: QualityScoring) -> float:
    words = len(output.split())
    return min(1.0, words / scoring.min_words_for(step_type))


def clarity_score(output: str, scoring: QualityScoring) -> float:
    words = output.split()
    sentences = split_sentences(output)
    if not words or not sentences:
        return 0.0
    avg_word = sum(len(w) for w in words) / len(words)
    avg_sentence = len(words) / len(sentences)
    word_score = max(0.0, 1 - abs(avg_word - scoring.normal_word_length) / WORD_LENGTH_SPAN)
    sentence_score = max(
        0.0, 1 - abs(avg_sentence - scoring.normal_sentence_length) / SENTENCE_LENGTH_SPAN
    )
    return (word_score + sentence_score) / 2


def compute_metrics(
    output: str,
    outcomes: Sequence[RuleOutcome],
    step_type: str,
    scoring: QualityScoring,
) -> QualityMetrics:
    accuracy = rule_compliance(outcomes)
    # Relevance and factual consistency need a reference corpus; configured
    # baselines stand in for them.
    relevance = scoring.relevance_baseline
    factual = scoring.factual_consistency_baseline
    completeness = completeness_score(output, step_type, scoring)
    clarity = clarity_score(output, scoring)

    weights = scoring.metric_weights
    overall = (
        accuracy * weights["accuracy"]
        + relevance * weights["relevance"]
        + completeness * weights["completeness"]
        + clarity * weights["clarity"]
        + factual * weights["factual_consistency"]
    )
    return QualityMetrics(
        accuracy_score=accuracy,
        relevance_score=relevance,
        completeness_score=completeness,
        clarity_score=clarity,
        factual_consistency=factual,
        overall_quality=overall,
    )


def length_appropriateness(output: str, step_type: str, scoring: QualityScoring) -> float:
    """1.0 inside 0.8-1.5x the expected length, 0.8 inside 0.5-2x, else 0.6."""
    ratio = len(output) / scoring.expected_length_for(step_type)
    if 0.8 <= ratio <= 1.5:
        return 1.0
    if 0.5 <= ratio <= 2.0:
        return 0.8
    return 0.6


def confidence_score(
    output: str,
    model_reliability: float,
    step_type: str,
    outcomes: Sequence[RuleOutcome],
    scoring: QualityScoring,
) -> float:
    confidence = CONFIDENCE_BASE
    confidence *= model_reliability
    confidence *= length_appropriateness(output, step_type, scoring)
    confidence *= rule_compliance(outcomes)
    confidence *= INTERNAL_CONSISTENCY
    return max(0.0, min(1.0, confidence))
