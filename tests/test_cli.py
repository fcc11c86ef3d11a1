"""Tests for the noxkit CLI commands."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

from typer.testing import CliRunner

from noxkit.cli import app

runner = CliRunner()


def _env(workspace: Path) -> dict:
    return {"NOX_WORKSPACE": str(workspace), "NOX_AUDIT_LOG_PATH": ""}


class TestContextCommand:
    def test_json_output(self, sample_workspace: Path):
        with patch.dict(os.environ, _env(sample_workspace)):
            result = runner.invoke(app, ["context", "foo", "--format", "json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [f["path"] for f in data["files"]] == ["a.js", "README.md"]

    def test_missing_workspace(self, tmp_path: Path):
        with patch.dict(os.environ, _env(tmp_path / "missing")):
            result = runner.invoke(app, ["context", "foo"])
        assert result.exit_code == 1
        assert "Workspace not found" in result.stdout


class TestRunCommand:
    def test_auto_allowed_create(self, workspace: Path):
        capability = {"category": "fileOperations", "action": "create", "payload": {"path": "hi.txt", "content": "hi"}}
        with patch.dict(os.environ, _env(workspace)):
            result = runner.invoke(app, ["run", json.dumps(capability)])
        assert result.exit_code == 0
        assert (workspace / "hi.txt").read_text() == "hi"

    def test_restricted_command_fails(self, workspace: Path):
        capability = {"category": "terminalOperations", "action": "execute", "payload": {"command": "rm -rf /"}}
        with patch.dict(os.environ, _env(workspace)):
            result = runner.invoke(app, ["run", "--yes", json.dumps(capability)])
        assert result.exit_code == 1
        assert "restricted_command" in result.stdout

    def test_reads_stdin(self, workspace: Path):
        capability = {"category": "fileOperations", "action": "create", "payload": {"path": "in.txt"}}
        with patch.dict(os.environ, _env(workspace)):
            result = runner.invoke(app, ["run", "-"], input=json.dumps(capability))
        assert result.exit_code == 0
        assert (workspace / "in.txt").exists()

    def test_invalid_json(self, workspace: Path):
        with patch.dict(os.environ, _env(workspace)):
            result = runner.invoke(app, ["run", "{nope"])
        assert result.exit_code == 1
        assert "Invalid capability" in result.stdout


class TestHistoryCommand:
    def test_lists_recorded_executions(self, workspace: Path):
        capability = {"category": "quantumOperations", "action": "entangle"}
        with patch.dict(os.environ, _env(workspace)):
            runner.invoke(app, ["run", json.dumps(capability)])
            result = runner.invoke(app, ["history"])
        assert result.exit_code == 0
        assert "quantumOperations.entangle" in result.stdout
        assert "unsupported" in result.stdout

    def test_empty(self, workspace: Path):
        with patch.dict(os.environ, _env(workspace)):
            result = runner.invoke(app, ["history"])
        assert "No executions recorded yet." in result.stdout


class TestCapabilitiesCommand:
    def test_task_filter(self, workspace: Path):
        with patch.dict(os.environ, _env(workspace)):
            result = runner.invoke(app, ["capabilities", "--task", "git"])
        assert result.exit_code == 0
        assert "GIT OPERATIONS" in result.stdout
        assert "TERMINAL OPERATIONS" not in result.stdout
