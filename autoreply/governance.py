"""Confidence scoring and response governance.

A generated reply is delivered only when its confidence reaches the agent
threshold and it passes every governance check. Confidence comes from a
single heuristic (:func:`score_confidence`); any confidence annotation the
model appends to its text is stripped and ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from .retrieval.base import RetrievalResult
from .tenants.models import AgentSettings

BASE_CONFIDENCE = 0.5
DOCUMENT_WEIGHT = 0.3
RECORDS_BONUS = 0.2
TOOL_BONUS = 0.1
HEDGE_PENALTY = 0.3

HEDGING_PHRASES = (
    "i'm not sure",
    "i am not sure",
    "i don't know",
    "i do not know",
    "not certain",
    "i don't have information",
    "i do not have information",
    "i cannot confirm",
    "i can't confirm",
)

SENSITIVE_PATTERNS: dict[str, re.Pattern[str]] = {
    "card_number": re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"),
    "ssn": re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
}

_CONFIDENCE_ANNOTATION = re.compile(
    r"\s*[\[(]?\s*confidence\s*[:=]\s*[\w.%]+\s*[\])]?\s*$",
    re.IGNORECASE | re.MULTILINE,
)


def strip_confidence_annotation(text: str) -> str:
    """Remove trailing ``CONFIDENCE: x`` markers some models emit."""

    return _CONFIDENCE_ANNOTATION.sub("", text).strip()


def score_confidence(
    text: str, retrieval: RetrievalResult, *, tool_results_found: bool = False
) -> float:
    """Confidence in ``[0, 1]`` for a generated reply.

    ``0.5`` base, plus ``0.3 * max document score``, plus ``0.2`` when
    inventory records were retrieved, plus ``0.1`` when a tool returned data,
    minus ``0.3`` when the reply hedges.
    """

    score = BASE_CONFIDENCE + DOCUMENT_WEIGHT * retrieval.max_score
    if retrieval.records:
        score += RECORDS_BONUS
    if tool_results_found:
        score += TOOL_BONUS
    lowered = text.lower()
    if any(phrase in lowered for phrase in HEDGING_PHRASES):
        score -= HEDGE_PENALTY
    return round(min(1.0, max(0.0, score)), 4)


@dataclass(frozen=True)
class ValidationResult:
    violations: tuple[str, ...] = field(default=())

    @property
    def valid(self) -> bool:
        return not self.violations


class ResponseValidator:
    def validate(self, text: str, settings: AgentSettings) -> ValidationResult:
        violations: list[str] = []
        length = len(text.strip())
        if length < settings.min_response_length:
            violations.append("too_short")
        if length > settings.max_response_length:
            violations.append("too_long")

        lowered = text.lower()
        for topic in settings.forbidden_topics:
            if topic and topic.lower() in lowered:
                violations.append(f"forbidden_topic:{topic}")
        for term in settings.blocked_terms:
            if term and re.search(rf"\b{re.escape(term.lower())}\b", lowered):
                violations.append(f"blocked_term:{term}")
        for name, pattern in SENSITIVE_PATTERNS.items():
            if pattern.search(text):
                violations.append(f"sensitive_data:{name}")
        return ValidationResult(tuple(violations))
