#!/usr/bin/env python3
"""
Ruleset Loader - discovery and parsing of ruleset YAML files.

load_ruleset() never raises: every failure becomes a single root-level
Diagnostic, and callers skip semantic validation for that file.
"""

from pathlib import Path
from typing import Any, List, Optional, Tuple

import yaml
from yaml.constructor import ConstructorError

from ruleset_model import ROOT_PATH, Diagnostic


RULES_DIR = "rules"
RULESET_GLOB = "rules/**/ruleset.y{a,}ml"
YAML_SUFFIXES = (".yml", ".yaml")


class UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects duplicate keys within one mapping.

    Keys pulled in through ``<<`` merges may still be overridden locally.
    """

    def construct_mapping(self, node, deep=False):
        if isinstance(node, yaml.MappingNode):
            seen = set()
            for key_node, _ in node.value:
                if key_node.tag in ('tag:yaml.org,2002:merge', 'tag:yaml.org,2002:value'):
                    continue
                key = self.construct_object(key_node, deep=deep)
                try:
                    duplicate = key in seen
                except TypeError:
                    # Unhashable keys are reported by the base constructor.
                    continue
                if duplicate:
                    raise ConstructorError(
                        "while constructing a mapping", node.start_mark,
                        f"found duplicate key {key!r}", key_node.start_mark,
                    )
                seen.add(key)
        return super().construct_mapping(node, deep=deep)


def parse_yaml(text: str) -> Any:
    """
    Parse one YAML document.

    Raises:
        yaml.YAMLError: On malformed syntax, multiple documents or duplicate keys
        RecursionError: On collections nested deeper than the interpreter stack
    """
    return yaml.load(text, Loader=UniqueKeyLoader)


def display_path(path: Path, root: Path) -> str:
    """Path relative to the project root, with forward slashes."""
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


def discover_rulesets(root: Path) -> List[Path]:
    """Find ruleset.yml / ruleset.yaml files under rules/, sorted by path."""
    rules_dir = root / RULES_DIR
    found = [
        p for p in rules_dir.glob('**/ruleset.*')
        if p.suffix in YAML_SUFFIXES and p.is_file()
    ]
    return sorted(found)


def discover_rule_yaml(root: Path) -> List[Path]:
    """Find every YAML file under rules/, sorted by path."""
    rules_dir = root / RULES_DIR
    found = [
        p for p in rules_dir.glob('**/*')
        if p.suffix in YAML_SUFFIXES and p.is_file()
    ]
    return sorted(found)


def load_ruleset(path: Path, file: str) -> Tuple[Optional[dict], List[Diagnostic]]:
    """
    Read and parse one ruleset file.

    Args:
        path: Location of the ruleset on disk
        file: Display name used in diagnostics

    Returns:
        (document, diagnostics). On success the document is a mapping and
        diagnostics is empty. Otherwise the document is None and there is
        exactly one root-level error.
    """
    try:
        raw = path.read_text(encoding='utf-8')
        data = parse_yaml(raw)
    except (OSError, UnicodeDecodeError, yaml.YAMLError, RecursionError) as e:
        return None, [Diagnostic(file, ROOT_PATH, f"YAML parse error: {e}")]

    if data is None:
        return None, [Diagnostic(file, ROOT_PATH, "Ruleset is empty (YAML parsed to null).")]

    if not isinstance(data, dict):
        return None, [Diagnostic(file, ROOT_PATH, "Ruleset must be an object.")]

    return data, []
