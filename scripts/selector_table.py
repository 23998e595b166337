#!/usr/bin/env python3
"""
Selector Table Loader

Loads the shared selector vocabulary (schema/selectors.yml). Rulesets may
only reference selector names defined here. The table is loaded once per
run; any problem with it aborts the command before rulesets are read.

Expected document shape:

    version: v1
    selectors:
      h1: { kind: heading, level: 1 }
      p: { kind: paragraph }
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet

import yaml

from ruleset_model import RulesetToolError


SELECTORS_EXAMPLE = (
    "version: v1\n"
    "selectors:\n"
    "  h1: { kind: heading, level: 1 }\n"
    "  p: { kind: paragraph }\n"
)


class SelectorTableError(RulesetToolError):
    """Raised when the selector table is missing, empty or malformed."""

    def __init__(self, source: str, detail: str = ""):
        self.source = source
        self.detail = detail
        super().__init__(f"{source}: missing/empty/invalid")

    def usage(self) -> str:
        """Fixed usage message printed before aborting."""
        return f"FAIL {self.source}: missing/empty/invalid. Expected:\n{SELECTORS_EXAMPLE}"


@dataclass(frozen=True)
class SelectorTable:
    """
    Immutable selector vocabulary.

    Attributes:
        source: Display path of the selector document (used in messages)
        names: Defined selector names
        definitions: Raw selector definitions, keyed by name
    """
    source: str
    names: FrozenSet[str]
    definitions: Dict[str, Any] = field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name in self.names


def load_selector_table(path: Path, source: str = "") -> SelectorTable:
    """
    Load and check the selector document.

    Args:
        path: Location of selectors.yml
        source: Display name used in diagnostics (defaults to the path)

    Returns:
        SelectorTable with the key set of ``selectors``

    Raises:
        SelectorTableError: If the file cannot be read or parsed, is not a
            mapping, or has no non-empty ``selectors`` mapping
    """
    source = source or path.as_posix()

    try:
        raw = path.read_text(encoding='utf-8')
        doc = yaml.safe_load(raw)
    except (OSError, UnicodeDecodeError, yaml.YAMLError, RecursionError) as e:
        raise SelectorTableError(source, str(e)) from e

    if not isinstance(doc, dict):
        raise SelectorTableError(source, "document is not a mapping")

    selectors = doc.get("selectors")
    if not isinstance(selectors, dict) or not selectors:
        raise SelectorTableError(source, "'selectors' must be a non-empty mapping")

    return SelectorTable(
        source=source,
        names=frozenset(str(name) for name in selectors),
        definitions={str(name): definition for name, definition in selectors.items()},
    )
