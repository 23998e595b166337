#!/usr/bin/env python3
"""
Semantic Validator - checks on rulesets that JSON Schema cannot express.

This module decodes a parsed ruleset into typed records (see ruleset_model)
and collects every problem it finds along the way instead of stopping at
the first one.

Checks:
- language formatting and shape (warnings)
- weights cover all five dimensions and sum to 1.0 within 1e-4
- checks is a list; each check has a unique id, known severity and
  dimension, a non-negative penalty and a message
- rule bodies, per operator:
  count: selector defined in the selector table, 0 <= min <= max
  term_density: non-empty terms, maxDensity in [0, 1]
  llm: promptRef points to a readable file, introBlocks >= 1

Errors fail the file; warnings are advisory.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from ruleset_loader import load_ruleset
from ruleset_model import (
    ALLOWED_DIMENSIONS,
    ALLOWED_OPS,
    ALLOWED_SEVERITIES,
    REQUIRED_WEIGHTS,
    ROOT_PATH,
    CheckSpec,
    CountRule,
    Diagnostic,
    LlmRule,
    RuleBody,
    RulesetDocument,
    TermDensityRule,
    approx_equals,
    is_integer,
    is_nan,
    is_non_empty_string,
    is_number,
    to_float,
)
from selector_table import SelectorTable


LANGUAGE_PATTERN = re.compile(r'[a-z]{2}(-[a-z0-9]+)?', re.IGNORECASE | re.ASCII)

KNOWN_TOP_LEVEL = ("language", "weights", "checks")


@dataclass
class ValidationReport:
    """
    Outcome of validating one ruleset file.

    Attributes:
        file: Ruleset path as displayed to the user
        errors: Fatal diagnostics, in discovery order
        warnings: Advisory diagnostics, in discovery order
        document: Decoded ruleset, only set when there are no errors
    """
    file: str
    errors: List[Diagnostic] = field(default_factory=list)
    warnings: List[Diagnostic] = field(default_factory=list)
    document: Optional[RulesetDocument] = None

    @property
    def passed(self) -> bool:
        return not self.errors


class SemanticValidator:
    """
    Validates parsed ruleset documents against the selector table.

    One instance can validate any number of files; every call to
    validate() starts from empty diagnostic lists.
    """

    def __init__(self, selectors: SelectorTable, base_dir: Optional[Path] = None):
        """
        Args:
            selectors: Selector vocabulary for op=count rules
            base_dir: Directory that relative promptRef paths resolve
                against (defaults to the current working directory)
        """
        self.selectors = selectors
        self.base_dir = base_dir if base_dir is not None else Path.cwd()
        self.file = ""
        self.errors: List[Diagnostic] = []
        self.warnings: List[Diagnostic] = []

    def validate(self, file: str, data: Any) -> ValidationReport:
        """
        Validate one parsed ruleset.

        Args:
            file: Display name used in diagnostics
            data: Result of parsing the ruleset YAML

        Returns:
            ValidationReport with all errors and warnings
        """
        self.file = file
        self.errors = []
        self.warnings = []

        if data is None:
            self._error(ROOT_PATH, "Ruleset is empty (YAML parsed to null).")
            return self._report(None)
        if not isinstance(data, dict):
            self._error(ROOT_PATH, "Ruleset must be an object.")
            return self._report(None)

        language = self._check_language(data)
        weights = self._check_weights(data)
        checks = self._check_checks(data)

        document = None
        if not self.errors:
            document = RulesetDocument(
                checks=tuple(checks),
                language=language,
                weights=weights,
                extra={k: v for k, v in data.items() if k not in KNOWN_TOP_LEVEL},
            )
        return self._report(document)

    def _report(self, document: Optional[RulesetDocument]) -> ValidationReport:
        return ValidationReport(
            file=self.file,
            errors=list(self.errors),
            warnings=list(self.warnings),
            document=document,
        )

    def _error(self, path: str, message: str) -> None:
        self.errors.append(Diagnostic(self.file, path, message, "error"))

    def _warn(self, path: str, message: str) -> None:
        self.warnings.append(Diagnostic(self.file, path, message, "warning"))

    # Top-level fields

    def _check_language(self, data: Dict[str, Any]) -> Optional[str]:
        """Accept "de" or "DE"; warn about anything else that looks off."""
        if "language" not in data:
            return None

        lang = data["language"]
        if not isinstance(lang, str):
            self._warn("language", 'should be a string (e.g., "de").')
            return None

        normalized = lang.strip().lower()
        if lang != normalized and lang != normalized.upper():
            self._warn("language", f"'{lang}' unusual formatting; consider 'de' or 'en'.")
        if not LANGUAGE_PATTERN.fullmatch(lang.strip()):
            self._warn("language", f"'{lang}' doesn't look like a BCP-47 code.")
        return lang

    def _check_weights(self, data: Dict[str, Any]) -> Optional[Dict[str, float]]:
        if "weights" not in data:
            return None

        weights = data["weights"]
        if not isinstance(weights, dict):
            self._error("weights", "weights must be an object if provided.")
            return None

        missing = [k for k in REQUIRED_WEIGHTS if not is_number(weights.get(k))]
        if missing:
            self._warn("weights", f"missing or non-numeric keys: {', '.join(missing)}")
            return None

        values = {k: to_float(weights[k]) for k in REQUIRED_WEIGHTS}
        total = sum(values.values())
        if not approx_equals(total, 1.0):
            self._warn("weights", f"sum is {total:.6f}, expected ~1.0 (±1e-4).")
        return values

    def _check_checks(self, data: Dict[str, Any]) -> List[CheckSpec]:
        raw_checks = data.get("checks")
        if not isinstance(raw_checks, list):
            self._error("checks", "checks must be an array.")
            raw_checks = []

        seen_ids: Set[str] = set()
        decoded: List[CheckSpec] = []
        for i, entry in enumerate(raw_checks):
            check = self._check_entry(entry, f"checks[{i}]", seen_ids)
            if check is not None:
                decoded.append(check)
        return decoded

    # Per-check fields

    def _check_entry(self, entry: Any, base: str, seen_ids: Set[str]) -> Optional[CheckSpec]:
        """
        Check one entry of ``checks``.

        Returns:
            The decoded CheckSpec, or None if the entry had any error
        """
        if not isinstance(entry, dict):
            self._error(base, "check must be an object.")
            return None

        errors_before = len(self.errors)

        check_id = entry.get("id")
        if not is_non_empty_string(check_id):
            self._error(f"{base}.id", "id is required and must be a non-empty string.")
        else:
            if check_id in seen_ids:
                self._error(f"{base}.id", f"duplicate id '{check_id}'")
            seen_ids.add(check_id)

        severity = entry.get("severity")
        if not isinstance(severity, str) or severity not in ALLOWED_SEVERITIES:
            self._error(f"{base}.severity", f"severity must be one of: {', '.join(ALLOWED_SEVERITIES)}")

        dimension = entry.get("dimension")
        if not isinstance(dimension, str) or dimension not in ALLOWED_DIMENSIONS:
            self._error(f"{base}.dimension", f"dimension must be one of: {', '.join(ALLOWED_DIMENSIONS)}")

        penalty = entry.get("penalty")
        if not is_number(penalty) or is_nan(penalty):
            self._error(f"{base}.penalty", "penalty must be a number.")
        elif penalty < 0:
            self._error(f"{base}.penalty", "penalty must be >= 0.")

        message = entry.get("message")
        if not is_non_empty_string(message):
            self._error(f"{base}.message", "message must be a non-empty string.")

        rule = self._check_rule(entry.get("rule"), f"{base}.rule")

        if rule is None or len(self.errors) > errors_before:
            return None
        return CheckSpec(
            id=check_id,
            severity=severity,
            dimension=dimension,
            penalty=penalty,
            message=message,
            rule=rule,
        )

    def _check_rule(self, rule: Any, path: str) -> Optional[RuleBody]:
        if not isinstance(rule, dict):
            self._error(path, "rule is required and must be an object.")
            return None

        op = rule.get("op")
        decoder = RULE_DECODERS.get(op) if isinstance(op, str) else None
        if decoder is None:
            self._error(f"{path}.op", f"op must be one of: {', '.join(ALLOWED_OPS)}")
            return None

        errors_before = len(self.errors)
        body = decoder(self, rule, path)
        return body if len(self.errors) == errors_before else None

    # Operator-specific rule bodies

    def _decode_count(self, rule: Dict[str, Any], path: str) -> Optional[CountRule]:
        selector = rule.get("selector")
        if not is_non_empty_string(selector):
            self._error(f"{path}.selector", "selector is required for op=count.")
        elif selector not in self.selectors:
            self._error(f"{path}.selector", f"'{selector}' is not defined in {self.selectors.source}")

        low = rule.get("min")
        high = rule.get("max")
        if not is_integer(low) or low < 0:
            self._error(f"{path}.min", "min must be an integer >= 0.")
        if not is_integer(high) or high < 0:
            self._error(f"{path}.max", "max must be an integer >= 0.")

        # Reported even when either bound is negative.
        if is_integer(low) and is_integer(high) and low > high:
            self._error(path, f"min ({int(low)}) must be <= max ({int(high)}).")

        if not (is_integer(low) and is_integer(high)):
            return None
        return CountRule(selector=selector, min=int(low), max=int(high))

    def _decode_term_density(self, rule: Dict[str, Any], path: str) -> Optional[TermDensityRule]:
        terms = rule.get("terms")
        if (
            not isinstance(terms, list)
            or len(terms) == 0
            or not all(is_non_empty_string(t) for t in terms)
        ):
            self._error(f"{path}.terms", "terms must be a non-empty array of strings.")

        max_density = rule.get("maxDensity")
        if (
            not is_number(max_density)
            or is_nan(max_density)
            or max_density < 0
            or max_density > 1
        ):
            self._error(f"{path}.maxDensity", "maxDensity must be a number between 0 and 1.")

        if not isinstance(terms, list) or not is_number(max_density):
            return None
        return TermDensityRule(terms=tuple(terms), max_density=max_density)

    def _decode_llm(self, rule: Dict[str, Any], path: str) -> Optional[LlmRule]:
        ref = rule.get("promptRef")
        if not is_non_empty_string(ref):
            self._error(f"{path}.promptRef", "promptRef is required for op=llm.")
        elif not self.prompt_exists(ref):
            self._error(f"{path}.promptRef", f"file not found '{ref}'")

        intro_blocks = rule.get("introBlocks")
        if "introBlocks" in rule:
            if not is_integer(intro_blocks) or intro_blocks < 1:
                self._error(f"{path}.introBlocks", "introBlocks must be an integer >= 1.")

        if not isinstance(ref, str):
            return None
        return LlmRule(
            prompt_ref=ref,
            intro_blocks=int(intro_blocks) if is_integer(intro_blocks) else None,
        )

    def prompt_exists(self, ref: str) -> bool:
        """Read-access probe for a promptRef; the file is not opened."""
        path = Path(ref)
        if not path.is_absolute():
            path = self.base_dir / path
        try:
            return os.access(path, os.R_OK)
        except (ValueError, OSError):
            return False


RuleDecoder = Callable[[SemanticValidator, Dict[str, Any], str], Optional[RuleBody]]

RULE_DECODERS: Dict[str, RuleDecoder] = {
    "count": SemanticValidator._decode_count,
    "term_density": SemanticValidator._decode_term_density,
    "llm": SemanticValidator._decode_llm,
}


def validate_ruleset_file(path: Path, file: str, validator: SemanticValidator) -> ValidationReport:
    """
    Load and validate one ruleset file.

    Load failures (parse error, empty document, non-mapping document)
    produce a report with that single root-level error; the semantic
    checks are skipped.
    """
    data, load_errors = load_ruleset(path, file)
    if load_errors:
        return ValidationReport(file=file, errors=load_errors)
    return validator.validate(file, data)


if __name__ == '__main__':
    import sys
    from selector_table import SelectorTableError, load_selector_table

    if len(sys.argv) < 3:
        print("Usage: semantic_validator.py <selectors.yml> <ruleset.yml> [...]")
        sys.exit(1)

    try:
        table = load_selector_table(Path(sys.argv[1]))
    except SelectorTableError as e:
        print(e.usage(), file=sys.stderr)
        sys.exit(1)

    validator = SemanticValidator(table)
    failed = False
    for arg in sys.argv[2:]:
        report = validate_ruleset_file(Path(arg), arg, validator)
        for diagnostic in report.warnings + report.errors:
            print(diagnostic.format_line(), file=sys.stderr)
        if report.passed:
            print(f"OK   semantic {arg}")
        failed = failed or not report.passed

    sys.exit(1 if failed else 0)
