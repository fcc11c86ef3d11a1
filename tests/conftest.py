"""Shared test fixtures for noxkit."""

from __future__ import annotations

from pathlib import Path

import pytest

from noxkit.approval import StaticConfirmer
from noxkit.capabilities.executor import CapabilityExecutor
from noxkit.capabilities.registry import CapabilityRegistry
from noxkit.config import DEFAULT_EXCLUDE_PATTERNS
from noxkit.indexing.index import WorkspaceIndex
from noxkit.ops.files import FileOperations
from noxkit.ops.terminal import CommandResult
from noxkit.retrieval.engine import ContextRetriever


class FakeRunner:
    """Process runner that records commands instead of running them."""

    def __init__(self, exit_code: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.commands: list[str] = []
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr

    async def run(self, command: str, timeout: float | None = None) -> CommandResult:
        self.commands.append(command)
        return CommandResult(command, self.stdout, self.stderr, self.exit_code, 1.0)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def sample_workspace(workspace: Path) -> Path:
    """The three-file workspace: a.js, b.py and README.md."""
    (workspace / "a.js").write_text("function foo() {}\n")
    (workspace / "b.py").write_text("def bar():\n    return 1\n")
    (workspace / "README.md").write_text("# TODO: fix foo\n")
    return workspace


@pytest.fixture
def file_ops(workspace: Path) -> FileOperations:
    return FileOperations(workspace)


@pytest.fixture
def index(file_ops: FileOperations) -> WorkspaceIndex:
    return WorkspaceIndex(file_ops, exclude_patterns=list(DEFAULT_EXCLUDE_PATTERNS))


@pytest.fixture
def retriever(index: WorkspaceIndex) -> ContextRetriever:
    return ContextRetriever(index)


@pytest.fixture
def registry() -> CapabilityRegistry:
    return CapabilityRegistry()


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def confirmer() -> StaticConfirmer:
    return StaticConfirmer(True)


@pytest.fixture
def executor(
    registry: CapabilityRegistry,
    file_ops: FileOperations,
    runner: FakeRunner,
    confirmer: StaticConfirmer,
) -> CapabilityExecutor:
    return CapabilityExecutor(registry, file_ops, process_runner=runner, confirmer=confirmer)
