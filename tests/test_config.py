"""Tests for noxkit.config."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

from noxkit.config import (
    AUDIT_LOG_NAME,
    DEFAULT_EXCLUDE_PATTERNS,
    DEFAULT_HISTORY_SIZE,
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_MODEL,
    Config,
)

ENV_KEYS = [
    "NOX_WORKSPACE",
    "ANTHROPIC_API_KEY",
    "NOX_MODEL",
    "NOX_EXCLUDE",
    "NOX_MAX_FILE_SIZE",
    "NOX_MAX_SCAN_DEPTH",
    "NOX_HISTORY_SIZE",
    "NOX_MAX_CONTEXT_FILES",
    "NOX_MAX_CONTEXT_LINES",
    "NOX_AUDIT_LOG_PATH",
]


def _clean_env() -> dict:
    return {k: v for k, v in os.environ.items() if k not in ENV_KEYS}


class TestConfigDefaults:
    def test_default_values(self):
        config = Config()
        assert config.anthropic_api_key == ""
        assert config.model == DEFAULT_MODEL
        assert config.max_file_size == DEFAULT_MAX_FILE_SIZE
        assert config.history_size == DEFAULT_HISTORY_SIZE
        assert config.exclude_patterns == list(DEFAULT_EXCLUDE_PATTERNS)

    def test_exclude_patterns_are_independent_copies(self):
        c1 = Config()
        c2 = Config()
        c1.exclude_patterns.append("vendor")
        assert "vendor" not in c2.exclude_patterns

    def test_audit_log_defaults_into_workspace(self, tmp_path: Path):
        config = Config(workspace_path=tmp_path)
        assert config.resolved_audit_log_path == tmp_path / AUDIT_LOG_NAME


class TestConfigLoad:
    def test_load_from_env(self, tmp_path: Path):
        env = {
            "NOX_WORKSPACE": str(tmp_path),
            "ANTHROPIC_API_KEY": "sk-ant-test",
            "NOX_EXCLUDE": "vendor, *.gen.js ,",
            "NOX_MAX_FILE_SIZE": "2048",
            "NOX_HISTORY_SIZE": "5",
            "NOX_AUDIT_LOG_PATH": str(tmp_path / "audit.jsonl"),
        }
        with patch.dict(os.environ, env, clear=False):
            config = Config.load()
        assert config.workspace_path == tmp_path
        assert config.anthropic_api_key == "sk-ant-test"
        assert config.exclude_patterns == ["vendor", "*.gen.js"]
        assert config.max_file_size == 2048
        assert config.history_size == 5
        assert config.resolved_audit_log_path == tmp_path / "audit.jsonl"

    def test_load_defaults_when_env_empty(self):
        with patch.dict(os.environ, _clean_env(), clear=True):
            config = Config.load()
        assert config.workspace_path == Path.cwd()
        assert config.model == DEFAULT_MODEL
        assert config.audit_log_path is None

    def test_bad_integer_falls_back_to_default(self):
        env = _clean_env()
        env["NOX_HISTORY_SIZE"] = "lots"
        with patch.dict(os.environ, env, clear=True):
            config = Config.load()
        assert config.history_size == DEFAULT_HISTORY_SIZE


class TestConfigValidate:
    def test_valid_config(self, tmp_path: Path):
        config = Config(workspace_path=tmp_path, anthropic_api_key="sk-ant-test")
        assert config.validate() == []

    def test_missing_key_and_workspace(self, tmp_path: Path):
        config = Config(workspace_path=tmp_path / "missing")
        issues = config.validate()
        assert len(issues) == 2
        assert any("ANTHROPIC_API_KEY" in i for i in issues)
        assert any("NOX_WORKSPACE" in i for i in issues)

    def test_non_positive_limits(self, tmp_path: Path):
        config = Config(workspace_path=tmp_path, anthropic_api_key="k", history_size=0)
        assert config.validate() == ["history_size must be positive"]
