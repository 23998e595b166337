#!/usr/bin/env python3
"""
End-to-end tests for the ruleset_tools command line.

Each test builds a throwaway project root (schema/, rules/, prompts/)
and runs commands through main(['--root', ...]).
"""

import json
import re
import shutil
import pytest
from pathlib import Path

from ruleset_tools import main


REPO_ROOT = Path(__file__).parent.parent

SELECTORS_YML = """\
version: v1
selectors:
  h1: { kind: heading, level: 1 }
  h2: { kind: heading, level: 2 }
  p: { kind: paragraph }
  img: { kind: image }
"""

VALID_RULESET = """\
id: demo
language: en
weights:
  structure: 0.2
  answerability: 0.2
  neutrality: 0.2
  topical_focus: 0.2
  entity_binding: 0.2
checks:
  - id: one-h1
    severity: high
    dimension: structure
    penalty: 5
    message: Exactly one H1.
    rule: { op: count, selector: h1, min: 1, max: 1 }
  - id: intro
    severity: low
    dimension: neutrality
    penalty: 1
    message: Intro is opinionated.
    rule: { op: llm, promptRef: prompts/intro.md, introBlocks: 2 }
"""


@pytest.fixture
def project(tmp_path):
    (tmp_path / "schema").mkdir()
    (tmp_path / "schema" / "selectors.yml").write_text(SELECTORS_YML, encoding="utf-8")
    shutil.copy(REPO_ROOT / "schema" / "ruleset.schema.json", tmp_path / "schema" / "ruleset.schema.json")
    (tmp_path / "prompts").mkdir()
    (tmp_path / "prompts" / "intro.md").write_text("# Intro prompt\n", encoding="utf-8")
    return tmp_path


def add_ruleset(root: Path, name: str, text: str, filename: str = "ruleset.yml") -> Path:
    path = root / "rules" / name / filename
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def run(root: Path, *args: str) -> int:
    return main(["--root", str(root), *args])


# ============================================================================
# validate-semantic
# ============================================================================

def test_semantic_ok(project, capsys):
    add_ruleset(project, "demo", VALID_RULESET)
    assert run(project, "validate-semantic") == 0

    out, err = capsys.readouterr()
    assert out == "OK   semantic rules/demo/ruleset.yml\n"
    assert err == ""


def test_semantic_no_files(project, capsys):
    assert run(project, "validate-semantic") == 0
    out, _ = capsys.readouterr()
    assert out == "OK semantic: no files matched rules/**/ruleset.y{a,}ml\n"


def test_semantic_missing_selectors_aborts(project, capsys):
    add_ruleset(project, "demo", VALID_RULESET)
    (project / "schema" / "selectors.yml").unlink()

    assert run(project, "validate-semantic") == 1
    out, err = capsys.readouterr()
    assert out == ""
    assert err.startswith("FAIL schema/selectors.yml: missing/empty/invalid. Expected:\n")
    assert "semantic" not in err


def test_semantic_empty_checks_no_weights(project, capsys):
    add_ruleset(project, "empty-checks", "checks: []\n")
    assert run(project, "validate-semantic") == 0
    out, err = capsys.readouterr()
    assert out == "OK   semantic rules/empty-checks/ruleset.yml\n"
    assert err == ""


def test_semantic_empty_file(project, capsys):
    add_ruleset(project, "blank", "")
    assert run(project, "validate-semantic") == 1
    out, err = capsys.readouterr()
    assert out == ""
    assert err == "FAIL rules/blank/ruleset.yml (root): Ruleset is empty (YAML parsed to null).\n"


def test_semantic_warnings_do_not_fail(project, capsys):
    add_ruleset(project, "warn", "language: German\nweights: {structure: 1}\nchecks: []\n")
    assert run(project, "validate-semantic") == 0
    out, err = capsys.readouterr()
    assert out == "OK   semantic rules/warn/ruleset.yml\n"
    assert err.splitlines() == [
        "WARN rules/warn/ruleset.yml language: 'German' unusual formatting; consider 'de' or 'en'.",
        "WARN rules/warn/ruleset.yml language: 'German' doesn't look like a BCP-47 code.",
        "WARN rules/warn/ruleset.yml weights: missing or non-numeric keys: "
        "answerability, neutrality, topical_focus, entity_binding",
    ]


def test_semantic_warnings_printed_before_errors(project, capsys):
    add_ruleset(project, "bad", (
        "language: xx_YY\n"
        "checks:\n"
        "  - id: a\n"
        "    severity: high\n"
        "    dimension: structure\n"
        "    penalty: 1\n"
        "    message: m\n"
        "    rule: { op: count, selector: h9, min: 5, max: 3 }\n"
        "  - id: b\n"
        "    severity: high\n"
        "    dimension: structure\n"
        "    penalty: 1\n"
        "    message: m\n"
        "    rule: { op: llm, promptRef: does/not/exist.md }\n"
    ))
    assert run(project, "validate-semantic") == 1
    out, err = capsys.readouterr()
    assert out == ""
    lines = err.splitlines()
    assert lines[0].startswith("WARN rules/bad/ruleset.yml language:")
    assert lines[-3:] == [
        "FAIL rules/bad/ruleset.yml checks[0].rule.selector: 'h9' is not defined in schema/selectors.yml",
        "FAIL rules/bad/ruleset.yml checks[0].rule: min (5) must be <= max (3).",
        "FAIL rules/bad/ruleset.yml checks[1].rule.promptRef: file not found 'does/not/exist.md'",
    ]


def test_semantic_one_bad_file_does_not_stop_others(project, capsys):
    add_ruleset(project, "a-broken", "checks: [\n")
    add_ruleset(project, "b-list", "- 1\n- 2\n", filename="ruleset.yaml")
    add_ruleset(project, "c-good", VALID_RULESET)

    assert run(project, "validate-semantic") == 1
    out, err = capsys.readouterr()
    assert out == "OK   semantic rules/c-good/ruleset.yml\n"
    lines = err.splitlines()
    assert lines[0].startswith("FAIL rules/a-broken/ruleset.yml (root): YAML parse error: ")
    assert "FAIL rules/b-list/ruleset.yaml (root): Ruleset must be an object." in lines


def test_semantic_deep_nesting_does_not_stop_others(project, capsys):
    depth = 5000
    add_ruleset(project, "a-deep", "checks: " + "[" * depth + "]" * depth + "\n")
    add_ruleset(project, "b-good", VALID_RULESET)

    assert run(project, "validate-semantic") == 1
    out, err = capsys.readouterr()
    assert out == "OK   semantic rules/b-good/ruleset.yml\n"
    assert err.startswith("FAIL rules/a-deep/ruleset.yml (root): YAML parse error: ")


def test_lint_and_schema_survive_deep_nesting(project, capsys):
    depth = 5000
    add_ruleset(project, "deep", "checks: " + "[" * depth + "]" * depth + "\n")

    assert run(project, "lint-yaml") == 1
    assert run(project, "validate-schema") == 1
    _, err = capsys.readouterr()
    assert "FAIL rules/deep/ruleset.yml" in err.splitlines()
    assert "FAIL schema rules/deep/ruleset.yml" in err.splitlines()


def test_semantic_runs_are_identical(project, capsys):
    add_ruleset(project, "bad", "weights: 3\nchecks: [1, {id: x}]\n")
    run(project, "validate-semantic")
    first = capsys.readouterr()
    run(project, "validate-semantic")
    second = capsys.readouterr()
    assert first == second


# ============================================================================
# lint-yaml, validate-schema
# ============================================================================

def test_lint_yaml(project, capsys):
    add_ruleset(project, "good", VALID_RULESET)
    add_ruleset(project, "good", "- maybe\n- perhaps\n", filename="terms.yaml")
    add_ruleset(project, "broken", "a: [\n", filename="extra.yml")

    assert run(project, "lint-yaml") == 1
    out, err = capsys.readouterr()
    assert out.splitlines() == [
        "OK  rules/good/ruleset.yml",
        "OK  rules/good/terms.yaml",
    ]
    assert err.splitlines()[0] == "FAIL rules/broken/extra.yml"


def test_lint_yaml_no_files(project, capsys):
    assert run(project, "lint-yaml") == 0
    out, _ = capsys.readouterr()
    assert out == "No rules YAML files found under rules/**\n"


def test_validate_schema_ok(project, capsys):
    add_ruleset(project, "demo", VALID_RULESET)
    assert run(project, "validate-schema") == 0
    out, _ = capsys.readouterr()
    assert out == "OK   schema rules/demo/ruleset.yml\n"


def test_validate_schema_errors(project, capsys):
    add_ruleset(project, "demo", "id: demo\nchecks:\n  - id: a\n    severity: extreme\n")
    assert run(project, "validate-schema") == 1
    _, err = capsys.readouterr()
    lines = err.splitlines()
    assert lines[0] == "FAIL schema rules/demo/ruleset.yml"
    assert any(line.startswith(" - /checks/0:") for line in lines)
    assert any(line.startswith(" - /checks/0/severity:") for line in lines)


def test_validate_schema_root_error(project, capsys):
    add_ruleset(project, "demo", "checks: []\n")
    assert run(project, "validate-schema") == 1
    _, err = capsys.readouterr()
    assert " - (root): 'id' is a required property" in err.splitlines()


def test_validate_schema_missing_schema(project, capsys):
    (project / "schema" / "ruleset.schema.json").unlink()
    add_ruleset(project, "demo", VALID_RULESET)
    assert run(project, "validate-schema") == 1
    _, err = capsys.readouterr()
    assert err.startswith("[ERROR] Failed to load schema")


# ============================================================================
# build-dist
# ============================================================================

def test_build_dist(project, capsys):
    add_ruleset(project, "demo", VALID_RULESET)
    assert run(project, "build-dist") == 0

    out, _ = capsys.readouterr()
    assert out == "Wrote dist/demo.json\n"

    payload = json.loads((project / "dist" / "demo.json").read_text(encoding="utf-8"))
    assert payload["id"] == "demo"
    assert len(payload["checks"]) == 2
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z", payload["createdAt"])
    assert list(payload)[-1] == "createdAt"


def test_build_dist_stringifies_dates(project):
    add_ruleset(project, "dated", "id: dated\nreleased: 2024-05-01\nchecks: []\n")
    assert run(project, "build-dist") == 0
    payload = json.loads((project / "dist" / "dated.json").read_text(encoding="utf-8"))
    assert payload["released"] == "2024-05-01"


def test_build_dist_stringifies_date_keys(project, capsys):
    add_ruleset(project, "dated", (
        "id: dated\n"
        "history:\n"
        "  2024-01-01: first draft\n"
        "  3: third\n"
        "  true: flag\n"
        "checks: []\n"
    ))
    assert run(project, "build-dist") == 0
    out, _ = capsys.readouterr()
    assert out == "Wrote dist/dated.json\n"
    payload = json.loads((project / "dist" / "dated.json").read_text(encoding="utf-8"))
    assert payload["history"] == {"2024-01-01": "first draft", "3": "third", "true": "flag"}


def test_build_dist_self_referencing_anchor(project, capsys):
    add_ruleset(project, "a-loop", "id: loop\nextra: &x [*x]\nchecks: []\n")
    add_ruleset(project, "b-ok", "id: ok\nchecks: []\n")

    assert run(project, "build-dist") == 1
    out, err = capsys.readouterr()
    assert out == "Wrote dist/ok.json\n"
    assert err.startswith("FAIL rules/a-loop/ruleset.yml: cannot serialize to JSON: ")
    assert not (project / "dist" / "loop.json").exists()


def test_build_dist_requires_id(project, capsys):
    add_ruleset(project, "a-no-id", "checks: []\n")
    add_ruleset(project, "b-sneaky", "id: ../escape\nchecks: []\n")
    add_ruleset(project, "c-ok", "id: ok\nchecks: []\n")

    assert run(project, "build-dist") == 1
    out, err = capsys.readouterr()
    assert out == "Wrote dist/ok.json\n"
    assert err.splitlines() == [
        "FAIL rules/a-no-id/ruleset.yml: id is required to name the compiled artifact.",
        "FAIL rules/b-sneaky/ruleset.yml: id '../escape' must be a plain file name.",
    ]
    assert not (project / "escape.json").exists()


# ============================================================================
# probe-selectors, validate-all
# ============================================================================

def test_probe_selectors(project, capsys):
    doc = project / "article.md"
    doc.write_text("# Title\n\nIntro.\n\n## Part\n\nBody.\n", encoding="utf-8")

    assert run(project, "probe-selectors", str(doc)) == 0
    out, _ = capsys.readouterr()
    assert out.splitlines() == [
        f"=== {doc} ===",
        "  h1: 1",
        "  h2: 1",
        "  p: 2",
        "  img: unsupported kind 'image'",
    ]


def test_probe_selectors_missing_document(project, capsys):
    assert run(project, "probe-selectors", str(project / "missing.md")) == 1
    _, err = capsys.readouterr()
    assert err.startswith("[ERROR] ")


def test_validate_all(project, capsys):
    add_ruleset(project, "demo", VALID_RULESET)
    assert run(project, "validate-all") == 0
    out, _ = capsys.readouterr()
    assert "YAML lint: PASSED" in out
    assert "Schema: PASSED" in out
    assert "Semantic: PASSED" in out


def test_validate_all_reports_failure(project, capsys):
    add_ruleset(project, "demo", VALID_RULESET.replace("min: 1, max: 1", "min: 2, max: 1"))
    assert run(project, "validate-all") == 1
    out, _ = capsys.readouterr()
    assert "Schema: PASSED" in out
    assert "Semantic: FAILED" in out


def test_command_required():
    with pytest.raises(SystemExit):
        main([])


# ============================================================================
# Repository content
# ============================================================================

def test_repository_rulesets_pass(capsys):
    assert main(["--root", str(REPO_ROOT), "validate-all"]) == 0
