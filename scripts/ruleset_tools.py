#!/usr/bin/env python3
"""Validation and build tool for scoring rulesets."""

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List

import yaml
from jsonschema import Draft202012Validator, FormatChecker
from jsonschema.exceptions import SchemaError, ValidationError

from markdown_parser import probe_selectors as count_selector_matches
from ruleset_loader import (
    RULESET_GLOB,
    discover_rule_yaml,
    discover_rulesets,
    display_path,
    load_ruleset,
    parse_yaml,
)
from ruleset_model import RulesetToolError, is_non_empty_string
from selector_table import SelectorTable, SelectorTableError, load_selector_table
from semantic_validator import SemanticValidator, ValidationReport, validate_ruleset_file


# Well-known locations, relative to the project root (--root)
SELECTORS_PATH = "schema/selectors.yml"
SCHEMA_PATH = "schema/ruleset.schema.json"
DIST_DIR = "dist"


class SchemaLoadError(RulesetToolError):
    """Raised when the ruleset JSON Schema cannot be loaded."""
    pass


def project_root(args) -> Path:
    return Path(getattr(args, 'root', None) or '.')


def load_selectors(root: Path) -> SelectorTable:
    return load_selector_table(root / SELECTORS_PATH, SELECTORS_PATH)


def load_schema_validator(schema_path: Path) -> Draft202012Validator:
    """Load the ruleset schema and build a draft 2020-12 validator.

    Raises:
        SchemaLoadError: If the file is unreadable, not JSON, or not a valid schema
    """
    try:
        schema = json.loads(schema_path.read_text(encoding='utf-8'))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SchemaLoadError(f"Failed to load schema {schema_path}: {e}") from e

    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as e:
        raise SchemaLoadError(f"Invalid schema {schema_path}: {e.message}") from e

    return Draft202012Validator(schema, format_checker=FormatChecker())


def instance_path(error: ValidationError) -> str:
    """JSON Pointer of the failing value, or (root)."""
    parts = [str(p).replace('~', '~0').replace('/', '~1') for p in error.absolute_path]
    return "".join(f"/{p}" for p in parts) or "(root)"


def print_report(report: ValidationReport) -> bool:
    """Print one file's diagnostics and verdict.

    Returns:
        True if the file failed
    """
    for warning in report.warnings:
        print(warning.format_line(), file=sys.stderr)

    if report.errors:
        for error in report.errors:
            print(error.format_line(), file=sys.stderr)
        return True

    print(f"OK   semantic {report.file}")
    return False


def lint_yaml(args) -> int:
    """Check that every YAML file under rules/ parses.

    Args:
        args: Command-line arguments from argparse

    Returns:
        Exit code: 0 on success, 1 on errors
    """
    root = project_root(args)
    files = discover_rule_yaml(root)

    if not files:
        print("No rules YAML files found under rules/**")
        return 0

    failed = False
    for path in files:
        file = display_path(path, root)
        try:
            parse_yaml(path.read_text(encoding='utf-8'))
        except (OSError, UnicodeDecodeError, yaml.YAMLError, RecursionError) as e:
            failed = True
            print(f"FAIL {file}", file=sys.stderr)
            print(str(e), file=sys.stderr)
            continue
        print(f"OK  {file}")

    return 1 if failed else 0


def validate_schema(args) -> int:
    """Validate rulesets against schema/ruleset.schema.json.

    Args:
        args: Command-line arguments from argparse

    Returns:
        Exit code: 0 on success, 1 on errors
    """
    root = project_root(args)

    try:
        validator = load_schema_validator(root / SCHEMA_PATH)
    except SchemaLoadError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1

    files = discover_rulesets(root)
    if not files:
        print("No ruleset.yml files found under rules/**")
        return 0

    failed = False
    for path in files:
        file = display_path(path, root)
        try:
            data = parse_yaml(path.read_text(encoding='utf-8'))
        except (OSError, UnicodeDecodeError, yaml.YAMLError, RecursionError) as e:
            failed = True
            print(f"FAIL schema {file}", file=sys.stderr)
            print(f" - (root): YAML parse error: {e}", file=sys.stderr)
            continue

        errors = sorted(validator.iter_errors(data), key=instance_path)
        if errors:
            failed = True
            print(f"FAIL schema {file}", file=sys.stderr)
            for error in errors:
                print(f" - {instance_path(error)}: {error.message}", file=sys.stderr)
        else:
            print(f"OK   schema {file}")

    return 1 if failed else 0


def validate_semantic(args) -> int:
    """Run semantic checks on every ruleset.

    Args:
        args: Command-line arguments from argparse

    Returns:
        Exit code: 0 if no file had errors, 1 otherwise (or if the
        selector table cannot be loaded)
    """
    root = project_root(args)

    try:
        selectors = load_selectors(root)
    except SelectorTableError as e:
        print(e.usage(), file=sys.stderr)
        return 1

    files = discover_rulesets(root)
    if not files:
        print(f"OK semantic: no files matched {RULESET_GLOB}")
        return 0

    validator = SemanticValidator(selectors, base_dir=root)

    failed_any = False
    for path in files:
        report = validate_ruleset_file(path, display_path(path, root), validator)
        failed_any = print_report(report) or failed_any

    return 1 if failed_any else 0


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with milliseconds, e.g. 2024-05-01T12:00:00.000Z."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def json_keys(value):
    """Copy of a parsed YAML value whose mapping keys json.dumps accepts.

    Keys that are not str, int, float, bool or None (dates, for example)
    are converted with str().
    """
    if isinstance(value, dict):
        return {
            (k if k is None or isinstance(k, (str, int, float, bool)) else str(k)): json_keys(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [json_keys(v) for v in value]
    return value


def build_dist(args) -> int:
    """Compile each ruleset to dist/<id>.json with a createdAt timestamp.

    Args:
        args: Command-line arguments from argparse

    Returns:
        Exit code: 0 if every ruleset was written, 1 otherwise
    """
    root = project_root(args)
    dist_dir = root / DIST_DIR
    dist_dir.mkdir(parents=True, exist_ok=True)

    files = discover_rulesets(root)
    if not files:
        print("No ruleset.yml files found under rules/**")
        return 0

    failed = False
    for path in files:
        file = display_path(path, root)
        ruleset, load_errors = load_ruleset(path, file)
        if load_errors:
            failed = True
            for diagnostic in load_errors:
                print(f"FAIL {file}: {diagnostic.message}", file=sys.stderr)
            continue

        ruleset_id = ruleset.get("id")
        if not is_non_empty_string(ruleset_id):
            failed = True
            print(f"FAIL {file}: id is required to name the compiled artifact.", file=sys.stderr)
            continue
        if Path(ruleset_id).name != ruleset_id:
            failed = True
            print(f"FAIL {file}: id '{ruleset_id}' must be a plain file name.", file=sys.stderr)
            continue

        try:
            payload = json_keys(ruleset)
            payload["createdAt"] = utc_timestamp()
            content = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
        except (ValueError, RecursionError) as e:
            # Self-referencing anchors
            failed = True
            print(f"FAIL {file}: cannot serialize to JSON: {e}", file=sys.stderr)
            continue

        out_path = dist_dir / f"{ruleset_id}.json"
        out_path.write_text(content, encoding='utf-8')
        print(f"Wrote {display_path(out_path, root)}")

    return 1 if failed else 0


def probe_selectors(args) -> int:
    """Show how many blocks each selector matches in markdown documents.

    Args:
        args: Command-line arguments from argparse

    Returns:
        Exit code: 0 on success, 1 if the selector table or a document
        cannot be read
    """
    root = project_root(args)

    try:
        selectors = load_selectors(root)
    except SelectorTableError as e:
        print(e.usage(), file=sys.stderr)
        return 1

    failed = False
    for document in args.documents:
        try:
            text = Path(document).read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            failed = True
            print(f"[ERROR] {document}: {e}", file=sys.stderr)
            continue

        counts = count_selector_matches(text, selectors.definitions)
        print(f"=== {document} ===")
        for name, count in counts.items():
            if count is None:
                definition = selectors.definitions.get(name)
                kind = definition.get("kind") if isinstance(definition, dict) else None
                print(f"  {name}: unsupported kind '{kind}'")
            else:
                print(f"  {name}: {count}")

    return 1 if failed else 0


def validate_all(args) -> int:
    """Run all validators in sequence.

    Args:
        args: Command-line arguments from argparse

    Returns:
        Exit code: 0 if all validators pass, first non-zero exit code otherwise

    Execution order:
        1. YAML lint
        2. Schema validation
        3. Semantic validation
    """
    validators = [
        ('YAML lint', lint_yaml),
        ('Schema', validate_schema),
        ('Semantic', validate_semantic),
    ]

    results = {}
    print("=" * 60)

    for name, validator in validators:
        print(f"\nRunning {name} validation...")
        print("-" * 60)
        results[name] = validator(args)

    print("\n" + "=" * 60)
    print("VALIDATION SUMMARY")
    print("=" * 60)

    for name, exit_code in results.items():
        status = "PASSED" if exit_code == 0 else "FAILED"
        print(f"{name}: {status}")

    for exit_code in results.values():
        if exit_code != 0:
            return exit_code
    return 0


def main(argv: List[str] = None) -> int:
    """Main entry point for the ruleset tool."""
    parser = argparse.ArgumentParser(
        description="Validate and build scoring rulesets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s lint-yaml
  %(prog)s validate-semantic
  %(prog)s --root path/to/project validate-all
  %(prog)s probe-selectors article.md
        """
    )
    parser.add_argument(
        '--root',
        default='.',
        help='Project root containing rules/ and schema/ (default: current directory)'
    )

    subparsers = parser.add_subparsers(
        dest='command',
        required=True,
        help='Command to run'
    )

    subparsers.add_parser(
        'lint-yaml',
        help='Check that all YAML files under rules/ parse'
    )

    subparsers.add_parser(
        'validate-schema',
        help='Validate rulesets against the JSON Schema'
    )

    subparsers.add_parser(
        'validate-semantic',
        help='Run semantic checks (weights, ids, selectors, prompt files)'
    )

    subparsers.add_parser(
        'build-dist',
        help='Compile rulesets to dist/<id>.json'
    )

    parser_probe = subparsers.add_parser(
        'probe-selectors',
        help='Count selector matches in markdown documents'
    )
    parser_probe.add_argument(
        'documents',
        nargs='+',
        help='Markdown documents to probe'
    )

    subparsers.add_parser(
        'validate-all',
        help='Run lint, schema and semantic validation'
    )

    args = parser.parse_args(argv)

    handlers: Dict[str, callable] = {
        'lint-yaml': lint_yaml,
        'validate-schema': validate_schema,
        'validate-semantic': validate_semantic,
        'build-dist': build_dist,
        'probe-selectors': probe_selectors,
        'validate-all': validate_all,
    }

    handler = handlers.get(args.command)
    if handler is None:
        print(f"Error: Unknown command '{args.command}'", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
