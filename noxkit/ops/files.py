"""Workspace file access.

Serves two callers: the index reads and lists through it, and the capability
executor writes through it. Blocking filesystem calls run in worker threads so
the event loop never stalls on disk I/O. All paths are workspace-relative and
may not resolve outside the workspace root.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


class PathOutsideWorkspaceError(ValueError):
    """A path resolved to a location outside the workspace root."""


@dataclass
class DirEntry:
    name: str
    path: str  # workspace-relative, POSIX separators
    size: int
    is_dir: bool


class FileOperations:
    """Async file operations rooted at a workspace directory."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, path: str) -> Path:
        """Resolve a workspace-relative path, refusing anything outside the root."""
        if not path or not str(path).strip():
            raise ValueError("Path must be a non-empty string")
        candidate = (self._root / path).resolve()
        if candidate != self._root and self._root not in candidate.parents:
            raise PathOutsideWorkspaceError(f"Path is outside the workspace: {path}")
        return candidate

    def relative(self, full_path: Path) -> str:
        return full_path.relative_to(self._root).as_posix()

    async def read_file(self, path: str) -> str:
        target = self.resolve(path)
        return await asyncio.to_thread(target.read_text, encoding="utf-8")

    async def write_file(self, path: str, content: str, overwrite: bool = True) -> dict:
        """Write a file, creating parent directories. Returns a small summary."""
        target = self.resolve(path)

        def _write() -> bool:
            existed = target.exists()
            if existed and not overwrite:
                raise FileExistsError(f"File already exists: {path}")
            if target.is_dir():
                raise IsADirectoryError(f"Path is a directory: {path}")
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
            return existed

        existed = await asyncio.to_thread(_write)
        logger.debug(f"Wrote {path} ({len(content)} chars)")
        return {"path": path, "bytes": len(content.encode("utf-8")), "overwritten": existed}

    async def edit_file(
        self,
        path: str,
        content: str | None = None,
        search: str | None = None,
        replace: str | None = None,
    ) -> dict:
        """Replace a file's content, or a single search/replace span within it."""
        target = self.resolve(path)

        def _edit() -> int:
            if not target.is_file():
                raise FileNotFoundError(f"File not found: {path}")
            if content is not None:
                target.write_text(content, encoding="utf-8")
                return 1
            if search is None or replace is None:
                raise ValueError("Edit requires either content or search/replace")
            original = target.read_text(encoding="utf-8")
            if search not in original:
                raise ValueError(f"Search text not found in {path}")
            target.write_text(original.replace(search, replace, 1), encoding="utf-8")
            return 1

        replacements = await asyncio.to_thread(_edit)
        return {"path": path, "replacements": replacements}

    async def delete_file(self, path: str) -> dict:
        target = self.resolve(path)
        if target == self._root:
            raise PathOutsideWorkspaceError("Refusing to delete the workspace root")

        def _delete() -> None:
            if target.is_dir():
                shutil.rmtree(target)
            elif target.exists():
                target.unlink()
            else:
                raise FileNotFoundError(f"File not found: {path}")

        await asyncio.to_thread(_delete)
        return {"path": path, "deleted": True}

    async def copy_file(self, source: str, target: str, overwrite: bool = False) -> dict:
        src = self.resolve(source)
        dst = self.resolve(target)

        def _copy() -> None:
            if not src.exists():
                raise FileNotFoundError(f"File not found: {source}")
            if dst.exists() and not overwrite:
                raise FileExistsError(f"File already exists: {target}")
            dst.parent.mkdir(parents=True, exist_ok=True)
            if src.is_dir():
                shutil.copytree(src, dst, dirs_exist_ok=overwrite)
            else:
                shutil.copy2(src, dst)

        await asyncio.to_thread(_copy)
        return {"source": source, "target": target}

    async def move_file(self, source: str, target: str, overwrite: bool = False) -> dict:
        src = self.resolve(source)
        dst = self.resolve(target)

        def _move() -> None:
            if not src.exists():
                raise FileNotFoundError(f"File not found: {source}")
            if dst.exists() and not overwrite:
                raise FileExistsError(f"File already exists: {target}")
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(src), str(dst))

        await asyncio.to_thread(_move)
        return {"source": source, "target": target}

    async def list_directory(self, path: str = ".") -> list[DirEntry]:
        directory = self.resolve(path)

        def _list() -> list[DirEntry]:
            entries: list[DirEntry] = []
            for child in sorted(directory.iterdir(), key=lambda p: p.name):
                # Symlinks are skipped so the walk can't escape the root or loop
                if child.is_symlink():
                    continue
                is_dir = child.is_dir()
                entries.append(
                    DirEntry(
                        name=child.name,
                        path=self.relative(child),
                        size=0 if is_dir else child.stat().st_size,
                        is_dir=is_dir,
                    )
                )
            return entries

        return await asyncio.to_thread(_list)
