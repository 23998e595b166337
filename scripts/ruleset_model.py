#!/usr/bin/env python3
"""
Ruleset Model - Typed records for ruleset documents and their diagnostics.

A ruleset file is decoded into these records by semantic_validator. Rule
bodies form a tagged union selected by the ``op`` field:

- CountRule: count blocks matched by a selector, bounded by min/max
- TermDensityRule: cap the density of a list of terms
- LlmRule: delegate the check to a prompt file
"""

import math
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional, Tuple, Union


ROOT_PATH = "(root)"

ALLOWED_OPS = ("count", "term_density", "llm")
ALLOWED_SEVERITIES = ("low", "medium", "high")
ALLOWED_DIMENSIONS = (
    "structure",
    "answerability",
    "neutrality",
    "topical_focus",
    "entity_binding",
)

# Every dimension carries a weight when weights are given.
REQUIRED_WEIGHTS = ALLOWED_DIMENSIONS
WEIGHT_SUM_TOLERANCE = 1e-4


class RulesetToolError(Exception):
    """Base exception for failures that abort a whole command."""
    pass


@dataclass(frozen=True)
class Diagnostic:
    """
    One finding about a ruleset file.

    Attributes:
        file: Ruleset path as displayed to the user
        path: Locator into the document, e.g. ``checks[3].rule.min`` or ``(root)``
        message: Human-readable description
        severity: "error" (fails the file) or "warning" (advisory only)
    """
    file: str
    path: str
    message: str
    severity: str = "error"

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def format_line(self) -> str:
        """
        Format the diagnostic for console output.

        Example:
            FAIL rules/seo/ruleset.yml checks[0].id: duplicate id 'h1-count'
            WARN rules/seo/ruleset.yml weights: sum is 0.900000, expected ~1.0 (±1e-4).
        """
        tag = "FAIL" if self.is_error else "WARN"
        return f"{tag} {self.file} {self.path}: {self.message}"


@dataclass(frozen=True)
class CountRule:
    op: ClassVar[str] = "count"
    selector: str
    min: int
    max: int


@dataclass(frozen=True)
class TermDensityRule:
    op: ClassVar[str] = "term_density"
    terms: Tuple[str, ...]
    max_density: float


@dataclass(frozen=True)
class LlmRule:
    op: ClassVar[str] = "llm"
    prompt_ref: str
    intro_blocks: Optional[int] = None


RuleBody = Union[CountRule, TermDensityRule, LlmRule]


@dataclass(frozen=True)
class CheckSpec:
    id: str
    severity: str
    dimension: str
    penalty: float
    message: str
    rule: RuleBody


@dataclass(frozen=True)
class RulesetDocument:
    checks: Tuple[CheckSpec, ...] = ()
    language: Optional[str] = None
    weights: Optional[Dict[str, float]] = None
    extra: Dict[str, Any] = field(default_factory=dict)


# Numeric predicates. YAML booleans load as Python bools, which are ints;
# they never count as numbers here.

def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_integer(value: Any) -> bool:
    """True for ints and for floats with an integral value (``5.0``)."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def is_nan(value: Any) -> bool:
    return isinstance(value, float) and math.isnan(value)


def is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and len(value.strip()) > 0


def approx_equals(a: float, b: float, eps: float = WEIGHT_SUM_TOLERANCE) -> bool:
    return abs(a - b) <= eps


def to_float(value: Any) -> float:
    """Numeric value as a float; ints too large for a float become signed infinity."""
    try:
        return float(value)
    except OverflowError:
        return math.inf if value > 0 else -math.inf
