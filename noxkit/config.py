"""Configuration loading for noxkit.

Config sources (in priority order):
1. Explicit arguments passed to functions
2. Environment variables (NOX_WORKSPACE, NOX_MAX_FILE_SIZE, etc.)
3. .env file in current directory
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_MAX_FILE_SIZE = 1024 * 1024  # 1MB
DEFAULT_MAX_SCAN_DEPTH = 10
DEFAULT_HISTORY_SIZE = 100
DEFAULT_MAX_CONTEXT_FILES = 10
DEFAULT_MAX_CONTEXT_LINES = 100
AUDIT_LOG_NAME = ".nox-audit.jsonl"
DEFAULT_EXCLUDE_PATTERNS = [
    "node_modules",
    ".git",
    ".vscode",
    "dist",
    "build",
    "target",
    ".next",
    ".nuxt",
    "coverage",
    ".nyc_output",
    "logs",
    "tmp",
    "__pycache__",
    ".venv",
    "*.min.js",
    "*.bundle.js",
    "*.map",
]


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def _list_env(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name, "")
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Config:
    workspace_path: Path = field(default_factory=Path.cwd)
    anthropic_api_key: str = ""
    model: str = DEFAULT_MODEL
    exclude_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    max_scan_depth: int = DEFAULT_MAX_SCAN_DEPTH
    history_size: int = DEFAULT_HISTORY_SIZE
    max_context_files: int = DEFAULT_MAX_CONTEXT_FILES
    max_context_lines: int = DEFAULT_MAX_CONTEXT_LINES
    audit_log_path: Path | None = None  # None → <workspace>/.nox-audit.jsonl

    @classmethod
    def load(cls) -> Config:
        workspace = Path(os.getenv("NOX_WORKSPACE", "") or Path.cwd())
        audit_env = os.getenv("NOX_AUDIT_LOG_PATH", "")
        return cls(
            workspace_path=workspace,
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            model=os.getenv("NOX_MODEL", "") or DEFAULT_MODEL,
            exclude_patterns=_list_env("NOX_EXCLUDE", DEFAULT_EXCLUDE_PATTERNS),
            max_file_size=_int_env("NOX_MAX_FILE_SIZE", DEFAULT_MAX_FILE_SIZE),
            max_scan_depth=_int_env("NOX_MAX_SCAN_DEPTH", DEFAULT_MAX_SCAN_DEPTH),
            history_size=_int_env("NOX_HISTORY_SIZE", DEFAULT_HISTORY_SIZE),
            max_context_files=_int_env("NOX_MAX_CONTEXT_FILES", DEFAULT_MAX_CONTEXT_FILES),
            max_context_lines=_int_env("NOX_MAX_CONTEXT_LINES", DEFAULT_MAX_CONTEXT_LINES),
            audit_log_path=Path(audit_env) if audit_env else None,
        )

    @property
    def resolved_audit_log_path(self) -> Path:
        return self.audit_log_path or self.workspace_path / AUDIT_LOG_NAME

    def validate(self) -> list[str]:
        """Return a list of config issues."""
        issues = []
        if not self.workspace_path.is_dir():
            issues.append(f"Workspace is not a directory: {self.workspace_path} (NOX_WORKSPACE)")
        if not self.anthropic_api_key:
            issues.append("Anthropic API key not set (ANTHROPIC_API_KEY)")
        for name in ("max_file_size", "max_scan_depth", "history_size",
                     "max_context_files", "max_context_lines"):
            if getattr(self, name) <= 0:
                issues.append(f"{name} must be positive")
        return issues
