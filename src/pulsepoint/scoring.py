"""Severity normalization and idea scoring."""

from __future__ import annotations

from .models import Severity

SEVERITY_MULTIPLIERS: dict[Severity, int] = {
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}

# Substrings recognized per level
_HIGH_TOKENS = ("high", "critical", "severe")
_MEDIUM_TOKENS = ("medium", "moderate")
_LOW_TOKENS = ("low", "minor")


def normalize_severity(value: object) -> Severity:
    """Map free-form model output onto low/medium/high.

    Mixed values resolve toward the middle ("low-medium" is medium) except
    high+medium, which stays high. Unrecognized or missing input is medium.
    """
    if not isinstance(value, str):
        return Severity.MEDIUM

    text = value.strip().lower()
    if text in {s.value for s in Severity}:
        return Severity(text)

    has_high = any(token in text for token in _HIGH_TOKENS)
    has_medium = any(token in text for token in _MEDIUM_TOKENS)
    has_low = any(token in text for token in _LOW_TOKENS)

    if has_high and has_medium:
        return Severity.HIGH
    if has_low and (has_medium or has_high):
        return Severity.MEDIUM
    if has_high:
        return Severity.HIGH
    if has_low:
        return Severity.LOW
    return Severity.MEDIUM


def idea_score(frequency: int, severity: Severity | str) -> int:
    """Score an idea as cluster frequency times the severity multiplier."""
    return max(0, int(frequency)) * SEVERITY_MULTIPLIERS[normalize_severity(severity)]
