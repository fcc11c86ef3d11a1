"""Core data models for the workspace index."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Symbol:
    name: str  # e.g. "parseConfig", "TODO: handle retries"
    type: str  # "function" | "class" | "method" | "variable" | "import" | "todo"
    line: int  # 1-based
    file: str = ""  # workspace-relative path of the owning FileRecord


@dataclass
class SymbolLocation:
    file: str
    line: int
    type: str


@dataclass
class FileRecord:
    path: str  # workspace-relative, POSIX separators
    content: str
    symbols: list[Symbol] = field(default_factory=list)
    last_indexed: datetime = field(default_factory=datetime.now)
    size: int = 0
    extension: str = ""


@dataclass
class IndexStats:
    total_files: int = 0
    indexed_files: int = 0
    skipped_files: int = 0
    errors: int = 0
    last_index_duration: float = 0.0  # seconds
