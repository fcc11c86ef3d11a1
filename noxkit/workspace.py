"""Wiring: one Config → the index, retriever, registry and executor over a workspace."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial

from noxkit.approval import Confirmer
from noxkit.audit import log_execution
from noxkit.capabilities.executor import CapabilityExecutor
from noxkit.capabilities.registry import CapabilityRegistry
from noxkit.config import Config
from noxkit.indexing.index import WorkspaceIndex
from noxkit.ops.files import FileOperations
from noxkit.ops.git import GitOperations
from noxkit.ops.terminal import ProcessRunner
from noxkit.retrieval.engine import ContextRetriever

logger = logging.getLogger(__name__)


@dataclass
class Workspace:
    config: Config
    files: FileOperations
    index: WorkspaceIndex
    retriever: ContextRetriever
    registry: CapabilityRegistry
    executor: CapabilityExecutor

    @classmethod
    def open(cls, config: Config, confirmer: Confirmer | None = None) -> Workspace:
        """Build the components. The index starts empty; call `scan()` to fill it."""
        files = FileOperations(config.workspace_path)
        index = WorkspaceIndex.from_config(config, files)
        registry = CapabilityRegistry()
        executor = CapabilityExecutor(
            registry,
            files,
            process_runner=ProcessRunner(config.workspace_path),
            git_ops=GitOperations(config.workspace_path),
            confirmer=confirmer,
            history_size=config.history_size,
            on_record=partial(log_execution, log_path=config.resolved_audit_log_path),
        )
        retriever = ContextRetriever(
            index,
            max_files=config.max_context_files,
            max_lines=config.max_context_lines,
        )
        return cls(config, files, index, retriever, registry, executor)

    async def scan(self) -> dict:
        await self.index.scan_workspace()
        return self.index.get_stats()
