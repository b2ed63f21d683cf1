import json
from pathlib import Path

import pytest

from ebinterface_validation.cli import build_parser, main

FIXTURES = Path(__file__).resolve().parent / "fixtures"
INSTANCES = FIXTURES / "instances"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("EBINTERFACE_SIGNATURE_URL", raising=False)
    monkeypatch.delenv("EBINTERFACE_CATALOG", raising=False)


def run(*argv):
    return main([
        "--schema-dir", str(FIXTURES / "schemas"),
        "--ruleset-dir", str(FIXTURES / "rulesets"),
        *argv,
    ])


def test_validate_valid_document(capsys):
    assert run("validate", str(INSTANCES / "invoice-4p0.xml")) == 0
    out = capsys.readouterr().out
    assert "ebInterface 4p0" in out
    assert "✓ Valid" in out


def test_validate_invalid_document(capsys):
    assert run("validate", str(INSTANCES / "invoice-4p0-missing-date.xml")) == 1
    assert "✗ Invalid" in capsys.readouterr().out


def test_validate_unknown_namespace():
    assert run("validate", str(INSTANCES / "unknown-namespace.xml")) == 2


def test_validate_json(capsys):
    assert run("validate", "--json", str(INSTANCES / "invoice-3p02.xml")) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["version"] == "E3P02"
    assert payload["valid"] is True


def test_validate_without_schemas(tmp_path, capsys):
    code = main(["--schema-dir", str(tmp_path), "validate", str(INSTANCES / "invoice-4p0.xml")])
    assert code == 2
    assert "Schema" in capsys.readouterr().err


def test_rule_commands_without_schemas(tmp_path, capsys):
    base = ["--schema-dir", str(tmp_path), "--ruleset-dir", str(FIXTURES / "rulesets")]
    assert main([*base, "evaluate", "basic", str(INSTANCES / "invoice-4p0-incomplete-order.xml")]) == 1
    assert "BASIC-TEST-NUMBER" in capsys.readouterr().out
    assert main([*base, "rules"]) == 0


def test_evaluate(capsys):
    assert run("evaluate", "basic", str(INSTANCES / "invoice-4p0-incomplete-order.xml")) == 1
    out = capsys.readouterr().out
    assert "BASIC-TEST-NUMBER" in out
    assert "1 failures, 1 warnings" in out

    assert run("evaluate", "basic", str(INSTANCES / "invoice-4p0.xml")) == 0


def test_evaluate_unknown_rule_set(capsys):
    assert run("evaluate", "missing", str(INSTANCES / "invoice-4p0.xml")) == 2
    assert "missing" in capsys.readouterr().err


def test_rules(capsys):
    assert run("rules") == 0
    assert "basic" in capsys.readouterr().out

    assert run("rules", "basic") == 0
    description = json.loads(capsys.readouterr().out)
    assert description["title"] == "Basic invoice checks"


def test_render_to_file(tmp_path):
    output = tmp_path / "invoice.html"
    assert run("render", str(INSTANCES / "invoice-3p0.xml"), "-o", str(output)) == 0
    assert "2026-0042" in output.read_text(encoding="utf-8")


def test_schemas_list(tmp_path, capsys):
    assert main(["schemas", "--dir", str(tmp_path), "list"]) == 0
    out = capsys.readouterr().out
    assert "○ 4p0 (available)" in out


def test_no_command_prints_help(capsys):
    assert main([]) == 1
    assert "ebinterface-validate" in capsys.readouterr().out


def test_parser_commands():
    parser = build_parser()
    args = parser.parse_args(["schemas", "download", "--version", "4p0", "--force"])
    assert args.version == "4p0"
    assert args.force
