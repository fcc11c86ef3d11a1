"""In-memory workspace index: path → FileRecord and symbol name → locations.

The index is process-scoped and rebuilt by scanning on startup. After that it is
kept current by single-file updates (on save) and the coalescing change queue.
It is a best-effort relevance hint, so a file that can't be read is skipped and
logged rather than failing the scan.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import time
from datetime import datetime
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import Mapping

from noxkit.config import Config
from noxkit.indexing.models import FileRecord, IndexStats, SymbolLocation
from noxkit.indexing.symbols import extract_symbols
from noxkit.ops.files import DirEntry, FileOperations

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 5
SUPPORTED_EXTENSIONS = frozenset({
    ".js", ".ts", ".jsx", ".tsx", ".mjs", ".cjs", ".py", ".java", ".c", ".cpp",
    ".h", ".hpp", ".cs", ".go", ".rs", ".php", ".rb", ".swift", ".kt", ".scala",
    ".clj", ".html", ".css", ".scss", ".less", ".vue", ".svelte", ".json",
    ".xml", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".conf", ".md", ".txt",
    ".sh",
})
CHANGE_OPERATIONS = {"create", "change", "delete"}


class IndexingError(Exception):
    """A single file could not be read or indexed."""


def normalize_path(path: str) -> str:
    """Workspace-relative POSIX form used as the index key."""
    normalized = PurePosixPath(str(path).replace("\\", "/")).as_posix()
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


class WorkspaceIndex:
    """File and symbol index over one workspace."""

    def __init__(
        self,
        fs: FileOperations,
        exclude_patterns: list[str] | None = None,
        max_file_size: int = 1024 * 1024,
        max_depth: int = 10,
        supported_extensions: frozenset[str] = SUPPORTED_EXTENSIONS,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        self._fs = fs
        self._exclude_patterns = list(exclude_patterns or [])
        self._max_file_size = max_file_size
        self._max_depth = max_depth
        self._supported_extensions = supported_extensions
        self._max_concurrency = max_concurrency

        self._files: dict[str, FileRecord] = {}
        self._symbols: dict[str, list[SymbolLocation]] = {}
        self._queue: dict[str, str] = {}
        self._scanning = False

        self.stats = IndexStats()
        self.last_index_time: datetime | None = None

    @classmethod
    def from_config(cls, config: Config, fs: FileOperations | None = None) -> WorkspaceIndex:
        return cls(
            fs or FileOperations(config.workspace_path),
            exclude_patterns=config.exclude_patterns,
            max_file_size=config.max_file_size,
            max_depth=config.max_scan_depth,
        )

    @property
    def files(self) -> Mapping[str, FileRecord]:
        return MappingProxyType(self._files)

    @property
    def symbols(self) -> Mapping[str, list[SymbolLocation]]:
        return MappingProxyType(self._symbols)

    @property
    def is_scanning(self) -> bool:
        return self._scanning

    def get_file(self, path: str) -> FileRecord | None:
        return self._files.get(normalize_path(path))

    def symbol_locations(self, name: str) -> list[SymbolLocation]:
        return list(self._symbols.get(name, []))

    # -- filtering ---------------------------------------------------------

    def should_exclude(self, name: str, path: str = "") -> bool:
        """Check one directory entry against the exclusion patterns."""
        for pattern in self._exclude_patterns:
            if any(ch in pattern for ch in "*?["):
                if fnmatch.fnmatch(name, pattern):
                    return True
            elif name == pattern or pattern in PurePosixPath(path).parts:
                return True

        # Hidden entries, except .env
        return name.startswith(".") and name != ".env"

    def is_path_excluded(self, path: str) -> bool:
        parts = PurePosixPath(normalize_path(path)).parts
        return any(self.should_exclude(part) for part in parts)

    def should_index(self, path: str) -> bool:
        return PurePosixPath(path).suffix.lower() in self._supported_extensions

    # -- scanning ----------------------------------------------------------

    async def scan_workspace(self) -> IndexStats:
        """Walk the workspace and (re)index every eligible file.

        Not re-entrant: a call made while a scan is running returns the
        current stats without starting a second walk.
        """
        if self._scanning:
            logger.debug("Scan already in progress, skipping")
            return self.stats

        self._scanning = True
        started = time.monotonic()
        self.stats = IndexStats()
        try:
            candidates: list[DirEntry] = []
            await self._collect(".", 0, candidates)
            self.stats.total_files = len(candidates)
            logger.info(f"Found {len(candidates)} files to index")

            semaphore = asyncio.Semaphore(self._max_concurrency)

            async def _process(entry: DirEntry) -> None:
                async with semaphore:
                    try:
                        await self.index_file(entry.path)
                        self.stats.indexed_files += 1
                    except IndexingError as e:
                        logger.warning(str(e))
                        self.stats.errors += 1

            await asyncio.gather(*(_process(entry) for entry in candidates))

            seen = {normalize_path(entry.path) for entry in candidates}
            for stale in [path for path in self._files if path not in seen]:
                self.remove_file(stale)
        finally:
            self._scanning = False

        self.stats.last_index_duration = time.monotonic() - started
        self.last_index_time = datetime.now()
        logger.info(
            f"Indexed {self.stats.indexed_files} files "
            f"({self.stats.skipped_files} skipped, {self.stats.errors} errors) "
            f"in {self.stats.last_index_duration:.2f}s"
        )
        return self.stats

    async def _collect(self, path: str, depth: int, out: list[DirEntry]) -> None:
        if depth > self._max_depth:
            logger.debug(f"Max depth reached for directory: {path}")
            return

        try:
            entries = await self._fs.list_directory(path)
        except (OSError, ValueError) as e:
            logger.debug(f"Failed to list directory {path}: {e}")
            return

        for entry in entries:
            if self.should_exclude(entry.name, entry.path):
                continue
            if entry.is_dir:
                await self._collect(entry.path, depth + 1, out)
            elif self.should_index(entry.path):
                if entry.size > self._max_file_size:
                    logger.debug(f"Skipping large file: {entry.path} ({entry.size} bytes)")
                    self.stats.skipped_files += 1
                    continue
                out.append(entry)

    # -- single-file updates -----------------------------------------------

    async def index_file(self, path: str) -> FileRecord | None:
        """Read one file through the file-system collaborator and index it."""
        try:
            content = await self._fs.read_file(path)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            raise IndexingError(f"Failed to index {path}: {e}") from e
        return self.update_file_index(path, content)

    def update_file_index(self, path: str, content: str) -> FileRecord | None:
        """Re-derive one file's record and symbols from the given content."""
        key = normalize_path(path)
        if not self.should_index(key) or self.is_path_excluded(key):
            return None

        symbols = extract_symbols(content, key)
        record = FileRecord(
            path=key,
            content=content,
            symbols=symbols,
            last_indexed=datetime.now(),
            size=len(content.encode("utf-8")),
            extension=PurePosixPath(key).suffix.lower(),
        )
        self._drop_symbols(key)
        self._files[key] = record
        for symbol in symbols:
            self._symbols.setdefault(symbol.name, []).append(
                SymbolLocation(file=key, line=symbol.line, type=symbol.type)
            )
        logger.debug(f"Indexed {key}: {len(symbols)} symbols")
        return record

    def remove_file(self, path: str) -> bool:
        key = normalize_path(path)
        if key not in self._files:
            return False
        self._drop_symbols(key)
        del self._files[key]
        logger.debug(f"Removed from index: {key}")
        return True

    def _drop_symbols(self, key: str) -> None:
        previous = self._files.get(key)
        if previous is None:
            return
        for name in {symbol.name for symbol in previous.symbols}:
            remaining = [loc for loc in self._symbols.get(name, []) if loc.file != key]
            if remaining:
                self._symbols[name] = remaining
            else:
                self._symbols.pop(name, None)

    # -- change queue ------------------------------------------------------

    def queue_change(self, path: str, operation: str) -> None:
        """Queue a watcher event; the latest operation per path wins."""
        if operation not in CHANGE_OPERATIONS:
            raise ValueError(f"Unknown change operation: {operation}")
        self._queue[normalize_path(path)] = operation

    async def flush_queue(self) -> int:
        """Apply queued changes. Returns how many paths were processed."""
        queued, self._queue = self._queue, {}
        for path, operation in queued.items():
            if operation == "delete":
                self.remove_file(path)
                continue
            try:
                await self.index_file(path)
            except IndexingError as e:
                logger.warning(str(e))
        return len(queued)

    def clear(self) -> None:
        self._files.clear()
        self._symbols.clear()
        self._queue.clear()

    def get_stats(self) -> dict:
        return {
            "total_files": self.stats.total_files,
            "indexed_files": self.stats.indexed_files,
            "skipped_files": self.stats.skipped_files,
            "errors": self.stats.errors,
            "last_index_duration": round(self.stats.last_index_duration, 3),
            "last_index_time": self.last_index_time.isoformat() if self.last_index_time else None,
            "is_indexing": self._scanning,
            "queue_size": len(self._queue),
            "files_in_index": len(self._files),
            "unique_symbols": len(self._symbols),
            "workspace_path": str(self._fs.root),
        }
