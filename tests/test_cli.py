"""Tests for the stageflow command line (real shell commands)."""

import json
import sys
import textwrap

import pytest
from typer.testing import CliRunner

from stageflow.cli import app, parse_env_pairs

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell commands")

runner = CliRunner()

PIPELINE = textwrap.dedent(
    """
    name: web
    stages:
      - name: Build
        steps:
          - echo built > build.txt
          - printf %s "$TARGET" > target.txt
      - name: Ship
        credentials:
          - name: registry
            variables:
              REGISTRY_TOKEN: registry_token
        stages:
          - name: Push
            steps:
              - test -n "$REGISTRY_TOKEN" && echo pushed > push.txt
    post:
      always:
        - echo done > always.txt
    """
)

FAILING = textwrap.dedent(
    """
    name: web
    stages:
      - name: Test
        steps:
          - echo "2 tests failed" >&2; exit 3
      - name: Deploy
        steps:
          - echo deployed > deploy.txt
    post:
      failure:
        - echo failed > failure.txt
    """
)

PARALLEL = textwrap.dedent(
    """
    name: matrix
    stages:
      - name: Checks
        parallel:
          - name: Slow
            steps:
              - sleep 5; echo late > slow.txt
          - name: Broken
            steps:
              - exit 1
    """
)


def write(tmp_path, content: str, name: str = "pipeline.yaml") -> str:
    path = tmp_path / name
    path.write_text(content)
    return str(path)


def json_from(output: str) -> dict:
    return json.loads(output[output.index("{\n") :])


def test_run_success(tmp_path):
    result = runner.invoke(
        app,
        ["run", write(tmp_path, PIPELINE), "--workspace", str(tmp_path), "-e", "TARGET=staging"],
    )

    assert result.exit_code == 0, result.output
    assert "Result: SUCCEEDED" in result.output
    assert "[ok] Push" in result.output
    assert (tmp_path / "build.txt").read_text().strip() == "built"
    assert (tmp_path / "target.txt").read_text() == "staging"
    assert (tmp_path / "push.txt").exists()
    assert (tmp_path / "always.txt").exists()


def test_run_failure_exit_code(tmp_path):
    result = runner.invoke(app, ["run", write(tmp_path, FAILING), "--workspace", str(tmp_path)])

    assert result.exit_code == 1
    assert "Result: FAILED" in result.output
    assert "[command] web / Test" in result.output
    assert "2 tests failed" in result.output
    assert "[skipped] Deploy" in result.output
    assert not (tmp_path / "deploy.txt").exists()
    assert (tmp_path / "failure.txt").exists()


def test_run_json_output(tmp_path):
    result = runner.invoke(
        app, ["run", write(tmp_path, FAILING), "--workspace", str(tmp_path), "--json"]
    )

    assert result.exit_code == 1
    data = json_from(result.stdout)
    assert data["pipeline"] == "web"
    assert data["result"] == "failed"
    assert data["cause"]["kind"] == "command"
    assert data["cause"]["exit_code"] == 3
    assert [c["status"] for c in data["root"]["children"]] == ["failed", "skipped"]
    assert [h["hook"] for h in data["hooks"]] == ["on_failure"]


def test_run_fail_fast_flag(tmp_path):
    result = runner.invoke(
        app,
        ["run", write(tmp_path, PARALLEL), "--workspace", str(tmp_path), "--fail-fast"],
    )

    assert result.exit_code == 1
    assert "[ABORTED] Slow" in result.output
    assert not (tmp_path / "slow.txt").exists()


def test_run_timeout(tmp_path):
    result = runner.invoke(
        app,
        ["run", write(tmp_path, PARALLEL), "--workspace", str(tmp_path), "--timeout", "0.5"],
    )

    assert result.exit_code == 1
    assert "Result: ABORTED" in result.output
    assert "[timeout]" in result.output


def test_run_writes_audit_log(tmp_path):
    audit = tmp_path / "audit.json"

    result = runner.invoke(
        app,
        ["run", write(tmp_path, PIPELINE), "--workspace", str(tmp_path), "--audit-log", str(audit)],
    )

    assert result.exit_code == 0, result.output
    data = json.loads(audit.read_text())
    assert {e["action"] for e in data["events"]} == {"materialize", "revoke"}
    assert "glpat" not in audit.read_text()


def test_run_invalid_definition(tmp_path):
    path = write(tmp_path, "name: web\nstages:\n  - name: Broken\n    steps:\n      - gate: q\n")

    result = runner.invoke(app, ["run", path])

    assert result.exit_code == 2
    assert "Invalid pipeline" in result.output


def test_run_missing_file(tmp_path):
    result = runner.invoke(app, ["run", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 2
    assert "not found" in result.output


def test_run_rejects_bad_env_pair(tmp_path):
    result = runner.invoke(app, ["run", write(tmp_path, PIPELINE), "--env", "NOVALUE"])

    assert result.exit_code == 2


def test_validate(tmp_path):
    result = runner.invoke(app, ["validate", write(tmp_path, PIPELINE)])

    assert result.exit_code == 0
    assert "Valid pipeline 'web': 3 stages, 3 actions" in result.output


def test_parse_env_pairs():
    assert parse_env_pairs(["A=1", "URL=http://x?a=b", "EMPTY="]) == {
        "A": "1",
        "URL": "http://x?a=b",
        "EMPTY": "",
    }
