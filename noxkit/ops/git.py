"""Git verbs for git capabilities, run with the local `git` binary.

Arguments are passed as an argv list, never through a shell, so commit messages
and branch names need no quoting.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0  # seconds

INVALID_BRANCH_CHARS = re.compile(r"[~^:?*\[\\\s]")
INVALID_BRANCH_PATTERNS = re.compile(r"^[.-]|[.-]$|\.\.|/{2,}|@\{|\.lock$")


class GitError(Exception):
    """A git command exited non-zero (or git itself is missing)."""

    def __init__(self, args: tuple[str, ...], returncode: int, stderr: str) -> None:
        self.command = ("git", *args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        super().__init__(f"git {' '.join(args)} failed ({returncode}): {self.stderr}")


@dataclass
class FileChange:
    file: str
    status: str  # two-letter porcelain code, e.g. " M", "A ", "??"
    staged: bool
    unstaged: bool

    @property
    def is_new(self) -> bool:
        return "?" in self.status or "A" in self.status

    @property
    def is_modified(self) -> bool:
        return "M" in self.status

    @property
    def is_deleted(self) -> bool:
        return "D" in self.status

    @property
    def is_renamed(self) -> bool:
        return "R" in self.status


@dataclass
class GitStatus:
    branch: str
    changes: list[FileChange] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.changes

    def to_dict(self) -> dict:
        return {
            "branch": self.branch,
            "clean": self.is_clean,
            "changes": [
                {"file": c.file, "status": c.status, "staged": c.staged, "unstaged": c.unstaged}
                for c in self.changes
            ],
        }


def parse_status_output(output: str) -> list[FileChange]:
    """Parse `git status --porcelain` (v1) output."""
    changes: list[FileChange] = []
    for line in output.splitlines():
        if len(line) < 4:
            continue
        status = line[:2]
        path = line[3:]
        # Renames and copies read "old -> new"
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        changes.append(
            FileChange(
                file=path.strip('"'),
                status=status,
                staged=status[0] not in (" ", "?"),
                unstaged=status[1] != " ",
            )
        )
    return changes


def is_valid_branch_name(name: str) -> bool:
    return bool(name) and not INVALID_BRANCH_CHARS.search(name) and not INVALID_BRANCH_PATTERNS.search(name)


class GitOperations:
    """Async wrapper over git in one repository."""

    def __init__(self, root: Path, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._root = Path(root)
        self._timeout = timeout

    async def _git(self, *args: str) -> str:
        """Run a git command in the repository, returning stdout."""
        try:
            process = await asyncio.create_subprocess_exec(
                "git",
                *args,
                cwd=self._root,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise GitError(args, 127, "git executable not found") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise GitError(args, -1, f"timed out after {self._timeout:g}s")

        if process.returncode != 0:
            raise GitError(args, process.returncode, stderr.decode("utf-8", errors="replace"))
        return stdout.decode("utf-8", errors="replace")

    async def status(self) -> GitStatus:
        output = await self._git("status", "--porcelain")
        return GitStatus(branch=await self.current_branch(), changes=parse_status_output(output))

    async def current_branch(self) -> str:
        return (await self._git("branch", "--show-current")).strip()

    async def add(self, files: list[str] | None = None) -> list[str]:
        """Stage the given files, or everything when none are given."""
        if files:
            await self._git("add", "--", *files)
            logger.info(f"Staged {len(files)} files")
            return list(files)
        await self._git("add", "-A")
        logger.info("Staged all changes")
        return []

    async def commit(self, message: str, allow_empty: bool = False) -> dict:
        if not message.strip():
            raise ValueError("Commit message must not be empty")
        args = ["commit", "-m", message]
        if allow_empty:
            args.append("--allow-empty")
        await self._git(*args)
        commit_hash = (await self._git("rev-parse", "--short", "HEAD")).strip()
        logger.info(f"Created commit {commit_hash}: {message}")
        return {"hash": commit_hash, "message": message}

    async def branch_create(self, name: str, base: str | None = None) -> dict:
        if not is_valid_branch_name(name):
            raise ValueError(f"Invalid branch name: {name}")
        args = ["checkout", "-b", name]
        if base:
            args.append(base)
        await self._git(*args)
        logger.info(f"Created branch {name}" + (f" from {base}" if base else ""))
        return {"branch": name, "base": base}

    async def switch_branch(self, name: str) -> dict:
        await self._git("checkout", name)
        return {"branch": name}

    async def push(self, remote: str = "origin", branch: str | None = None, set_upstream: bool = False) -> dict:
        branch = branch or await self.current_branch()
        args = ["push"]
        if set_upstream:
            args.append("-u")
        await self._git(*args, remote, branch)
        logger.info(f"Pushed {branch} to {remote}")
        return {"remote": remote, "branch": branch}

    async def pull(self, remote: str = "origin", branch: str | None = None) -> dict:
        args = ["pull", remote]
        if branch:
            args.append(branch)
        output = await self._git(*args)
        return {"remote": remote, "branch": branch, "output": output.strip()}

    async def merge(self, source: str, no_ff: bool = False) -> dict:
        args = ["merge"]
        if no_ff:
            args.append("--no-ff")
        output = await self._git(*args, source)
        logger.info(f"Merged {source}")
        return {"source": source, "output": output.strip()}

    async def rebase(self, onto: str) -> dict:
        output = await self._git("rebase", onto)
        return {"onto": onto, "output": output.strip()}
