"""Capability executor: policy check → approval gate → execution → record.

Every capability handed to `execute_capability` gets exactly one approval
decision before any side effect, and every attempt is recorded, including
rejected, denied and failed ones. The executor is the error boundary: nothing
a collaborator raises escapes it. Failures come back as CapabilityResult with
`success=False`.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from typing import Any, Awaitable, Callable

from noxkit.approval import Confirmer, StaticConfirmer
from noxkit.capabilities.models import (
    CANCELLED,
    COMMAND_NOT_ALLOWED,
    DENIED,
    EXECUTION_ERROR,
    POLICY_DISABLED,
    RESTRICTED_COMMAND,
    UNSUPPORTED,
    ApprovalDecision,
    Capability,
    CapabilityResult,
    ExecutionRecord,
)
from noxkit.capabilities.registry import CapabilityRegistry
from noxkit.ops.files import FileOperations
from noxkit.ops.git import GitOperations
from noxkit.ops.terminal import ProcessRunner

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 100
RECENT_EXECUTIONS = 10
TERMINAL_CATEGORY = "terminalOperations"

Handler = Callable[[Capability], Awaitable[CapabilityResult]]


def _new_id() -> str:
    return f"cap_{uuid.uuid4().hex[:12]}"


def _require(payload: dict, key: str) -> Any:
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"Missing '{key}' in capability payload")
    return value


def _ok(capability: Capability, message: str, **details: Any) -> CapabilityResult:
    return CapabilityResult(success=True, type=capability.key, message=message, details=details)


def _fail(capability: Capability, reason: str, message: str, error: str | None = None, **details: Any) -> CapabilityResult:
    return CapabilityResult(
        success=False,
        type=capability.key,
        message=message,
        reason=reason,
        error=error,
        details=details,
    )


class CapabilityExecutor:
    """Runs AI-suggested capabilities under the registry's policy."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        file_ops: FileOperations,
        process_runner: ProcessRunner | None = None,
        git_ops: GitOperations | None = None,
        confirmer: Confirmer | None = None,
        history_size: int = DEFAULT_HISTORY_SIZE,
        on_record: Callable[[ExecutionRecord], None] | None = None,
    ) -> None:
        self._registry = registry
        self._files = file_ops
        self._runner = process_runner
        self._git = git_ops
        # Nobody to ask means nothing gets approved
        self._confirmer = confirmer or StaticConfirmer(False)
        self._history: deque[ExecutionRecord] = deque(maxlen=history_size)
        self._pending: dict[str, Capability] = {}
        self._on_record = on_record

        self._handlers: dict[tuple[str, str], Handler] = {
            ("fileOperations", "create"): self._file_create,
            ("fileOperations", "edit"): self._file_edit,
            ("fileOperations", "delete"): self._file_delete,
            ("fileOperations", "move"): self._file_move,
            ("fileOperations", "copy"): self._file_copy,
            ("fileOperations", "batchOperations"): self._file_batch,
            ("codeGeneration", "singleFile"): self._file_create,
            ("codeGeneration", "testGeneration"): self._file_create,
            ("codeGeneration", "documentationGeneration"): self._file_create,
            ("codeGeneration", "configurationGeneration"): self._file_create,
            ("codeGeneration", "multiFile"): self._generate_files,
            ("codeGeneration", "projectScaffolding"): self._generate_files,
            ("gitOperations", "status"): self._git_status,
            ("gitOperations", "add"): self._git_add,
            ("gitOperations", "commit"): self._git_commit,
            ("gitOperations", "branch"): self._git_branch,
            ("gitOperations", "push"): self._git_push,
            ("gitOperations", "pull"): self._git_pull,
            ("gitOperations", "merge"): self._git_merge,
            ("gitOperations", "rebase"): self._git_rebase,
        }
        for action in ("execute", "packageManagement", "buildCommands", "testCommands"):
            self._handlers[(TERMINAL_CATEGORY, action)] = self._terminal_run

    @property
    def history(self) -> list[ExecutionRecord]:
        return list(self._history)

    @property
    def pending_approvals(self) -> dict[str, Capability]:
        """Capabilities currently waiting on a human, by execution id."""
        return dict(self._pending)

    async def execute_capability(
        self,
        capability: Capability,
        context: dict | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CapabilityResult:
        """Decide, then (maybe) perform one capability, and record the outcome.

        `cancel_event`, when set while the capability waits for approval,
        abandons the wait and returns a `cancelled` result.
        """
        capability_id = _new_id()
        logger.info(f"Executing capability {capability.key} ({capability_id})")

        decision, result = self._check_policy(capability)
        try:
            if result is None:
                decision, result = await self._approval_gate(capability_id, capability, cancel_event)
            if result is None:
                result = await self._perform(capability)
        except asyncio.CancelledError:
            logger.info(f"Task cancelled during {capability.key} ({capability_id})")
            self._record(ExecutionRecord(
                id=capability_id,
                capability=capability,
                result=_fail(capability, CANCELLED, "Cancelled by caller"),
                decision=ApprovalDecision.CANCELLED,
                context=dict(context or {}),
            ))
            raise

        self._record(ExecutionRecord(
            id=capability_id,
            capability=capability,
            result=result,
            decision=decision,
            context=dict(context or {}),
        ))
        return result

    # -- decision ----------------------------------------------------------

    def _check_policy(self, capability: Capability) -> tuple[ApprovalDecision, CapabilityResult | None]:
        category, action = capability.category, capability.action
        rejected = ApprovalDecision.REJECTED_BY_POLICY

        if not self._registry.is_known(category, action):
            logger.warning(f"Unsupported capability requested: {capability.key}")
            return rejected, self._unsupported(capability)

        if not self._registry.is_capability_enabled(category, action):
            logger.warning(f"Capability disabled by policy: {capability.key}")
            return rejected, _fail(capability, POLICY_DISABLED, f"Capability {capability.key} is disabled")

        if category == TERMINAL_CATEGORY:
            command = capability.payload.get("command")
            if not isinstance(command, str) or not command.strip():
                return rejected, _fail(capability, COMMAND_NOT_ALLOWED, "No command given")
            restricted = self._registry.restricted_match(command)
            if restricted:
                logger.warning(f"Restricted command blocked ({restricted!r}): {command}")
                return rejected, _fail(
                    capability,
                    RESTRICTED_COMMAND,
                    f"Command blocked: '{restricted}' is not allowed",
                    command=command,
                )
            if not self._registry.is_command_allowed(category, action, command):
                spec = self._registry.get(category, action)
                allowed = ", ".join(spec.allowed_commands or ()) if spec else ""
                logger.warning(f"Command outside allow-list for {capability.key}: {command}")
                return rejected, _fail(
                    capability,
                    COMMAND_NOT_ALLOWED,
                    f"Command not allowed for {capability.key} (allowed: {allowed})",
                    command=command,
                )

        # No rejection; the approval gate decides next
        return ApprovalDecision.AUTO_ALLOWED, None

    async def _approval_gate(
        self,
        capability_id: str,
        capability: Capability,
        cancel_event: asyncio.Event | None,
    ) -> tuple[ApprovalDecision, CapabilityResult | None]:
        if not self._registry.requires_approval(capability.category, capability.action):
            return ApprovalDecision.AUTO_ALLOWED, None

        if cancel_event is not None and cancel_event.is_set():
            return ApprovalDecision.CANCELLED, _fail(capability, CANCELLED, "Cancelled before approval")

        spec = self._registry.get(capability.category, capability.action)
        description = capability.description or (spec.description if spec else capability.key)

        self._pending[capability_id] = capability
        try:
            approved = await self._wait_for_confirmation(capability, description, cancel_event)
        finally:
            self._pending.pop(capability_id, None)

        if approved is None:
            logger.info(f"Approval wait cancelled for {capability.key}")
            return ApprovalDecision.CANCELLED, _fail(capability, CANCELLED, "Cancelled while awaiting approval")
        if not approved:
            logger.info(f"User declined {capability.key}")
            return ApprovalDecision.USER_DENIED, _fail(
                capability, DENIED, f"User declined to execute {capability.key}"
            )
        return ApprovalDecision.USER_APPROVED, None

    async def _wait_for_confirmation(
        self,
        capability: Capability,
        description: str,
        cancel_event: asyncio.Event | None,
    ) -> bool | None:
        """The confirmer's answer, or None if cancelled first. Errors count as a no."""
        confirm_task = asyncio.ensure_future(self._confirmer.confirm(capability, description))
        waiters: set[asyncio.Future] = {confirm_task}
        cancel_task = None
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_task)

        answered = False
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if cancel_task is not None and not cancel_task.done():
                cancel_task.cancel()
            answered = confirm_task.done()
            if not answered:
                confirm_task.cancel()

        if not answered:
            return None

        try:
            return bool(confirm_task.result())
        except Exception as e:
            logger.error(f"Approval request failed for {capability.key}: {e}")
            return False

    # -- execution ---------------------------------------------------------

    async def _perform(self, capability: Capability) -> CapabilityResult:
        handler = self._handlers.get((capability.category, capability.action))
        if handler is None:
            return self._unsupported(capability)
        try:
            return await handler(capability)
        except Exception as e:
            logger.error(f"Capability {capability.key} failed: {e}")
            return _fail(capability, EXECUTION_ERROR, f"Failed to execute {capability.key}: {e}", error=str(e))

    @staticmethod
    def _unsupported(capability: Capability) -> CapabilityResult:
        return _fail(
            capability,
            UNSUPPORTED,
            f"Capability '{capability.key}' is not supported",
            suggestion="This capability requires manual implementation",
        )

    async def _file_create(self, capability: Capability) -> CapabilityResult:
        payload = capability.payload
        path = _require(payload, "path")
        summary = await self._files.write_file(
            path, payload.get("content", ""), overwrite=payload.get("overwrite", True)
        )
        verb = "Updated" if summary["overwritten"] else "Created"
        return _ok(capability, f"{verb} {path}", **summary)

    async def _file_edit(self, capability: Capability) -> CapabilityResult:
        payload = capability.payload
        path = _require(payload, "path")
        summary = await self._files.edit_file(
            path,
            content=payload.get("content"),
            search=payload.get("search"),
            replace=payload.get("replace"),
        )
        return _ok(capability, f"Edited {path}", **summary)

    async def _file_delete(self, capability: Capability) -> CapabilityResult:
        path = _require(capability.payload, "path")
        summary = await self._files.delete_file(path)
        return _ok(capability, f"Deleted {path}", **summary)

    async def _file_move(self, capability: Capability) -> CapabilityResult:
        payload = capability.payload
        source, target = _require(payload, "source"), _require(payload, "target")
        summary = await self._files.move_file(source, target, overwrite=payload.get("overwrite", False))
        return _ok(capability, f"Moved {source} to {target}", **summary)

    async def _file_copy(self, capability: Capability) -> CapabilityResult:
        payload = capability.payload
        source, target = _require(payload, "source"), _require(payload, "target")
        summary = await self._files.copy_file(source, target, overwrite=payload.get("overwrite", False))
        return _ok(capability, f"Copied {source} to {target}", **summary)

    async def _file_batch(self, capability: Capability) -> CapabilityResult:
        """Run each operation in turn, collecting per-item errors.

        Best effort: operations that succeeded before a failure stay applied.
        """
        operations = _require(capability.payload, "operations")
        if not isinstance(operations, list):
            raise ValueError("'operations' must be a list")

        results: list[dict] = []
        errors: list[dict] = []
        for index, operation in enumerate(operations):
            action = operation.get("action", "create") if isinstance(operation, dict) else None
            handler = self._handlers.get(("fileOperations", action))
            if handler is None or action == "batchOperations":
                errors.append({"index": index, "path": None, "error": f"Unsupported batch action: {action}"})
                continue
            item = Capability("fileOperations", action, {k: v for k, v in operation.items() if k != "action"})
            path = item.payload.get("path") or item.payload.get("source")
            try:
                outcome = await handler(item)
                results.append({"index": index, "path": path, "message": outcome.message})
            except Exception as e:
                logger.warning(f"Batch item {index} ({path}) failed: {e}")
                errors.append({"index": index, "path": path, "error": str(e)})

        return self._batch_result(capability, results, errors)

    async def _generate_files(self, capability: Capability) -> CapabilityResult:
        files = _require(capability.payload, "files")
        if not isinstance(files, list):
            raise ValueError("'files' must be a list")

        results: list[dict] = []
        errors: list[dict] = []
        for index, spec in enumerate(files):
            path = spec.get("path") if isinstance(spec, dict) else None
            try:
                if not path:
                    raise ValueError("Missing 'path'")
                await self._files.write_file(path, spec.get("content", ""))
                results.append({"index": index, "path": path, "message": f"Wrote {path}"})
            except Exception as e:
                logger.warning(f"Generating {path} failed: {e}")
                errors.append({"index": index, "path": path, "error": str(e)})

        return self._batch_result(capability, results, errors)

    @staticmethod
    def _batch_result(capability: Capability, results: list[dict], errors: list[dict]) -> CapabilityResult:
        details = {
            "success_count": len(results),
            "error_count": len(errors),
            "results": results,
            "errors": errors,
        }
        message = f"{len(results)} succeeded, {len(errors)} failed"
        if errors:
            failed = ", ".join(str(e["path"] or f"#{e['index']}") for e in errors)
            return _fail(capability, EXECUTION_ERROR, f"{message} ({failed})", error=f"Failed: {failed}", **details)
        return _ok(capability, message, **details)

    async def _terminal_run(self, capability: Capability) -> CapabilityResult:
        if self._runner is None:
            raise RuntimeError("No process runner is configured")
        command = capability.payload["command"]
        outcome = await self._runner.run(command, timeout=capability.payload.get("timeout"))
        details = {
            "command": command,
            "exit_code": outcome.exit_code,
            "stdout": outcome.stdout,
            "stderr": outcome.stderr,
            "duration_ms": round(outcome.duration_ms, 1),
        }
        if not outcome.ok:
            return _fail(
                capability,
                EXECUTION_ERROR,
                f"Command exited with code {outcome.exit_code}: {command}",
                error=outcome.stderr.strip() or f"exit code {outcome.exit_code}",
                **details,
            )
        return _ok(capability, f"Command completed: {command}", **details)

    def _git_ops(self) -> GitOperations:
        if self._git is None:
            raise RuntimeError("No git repository is configured")
        return self._git

    async def _git_status(self, capability: Capability) -> CapabilityResult:
        status = await self._git_ops().status()
        state = "clean" if status.is_clean else f"{len(status.changes)} changed files"
        return _ok(capability, f"On branch {status.branch}: {state}", **status.to_dict())

    async def _git_add(self, capability: Capability) -> CapabilityResult:
        files = capability.payload.get("files") or []
        staged = await self._git_ops().add(files)
        return _ok(capability, f"Staged {len(staged)} files" if staged else "Staged all changes", files=staged)

    async def _git_commit(self, capability: Capability) -> CapabilityResult:
        commit = await self._git_ops().commit(_require(capability.payload, "message"))
        return _ok(capability, f"Created commit {commit['hash']}", **commit)

    async def _git_branch(self, capability: Capability) -> CapabilityResult:
        payload = capability.payload
        name = _require(payload, "name")
        if payload.get("create", True):
            branch = await self._git_ops().branch_create(name, payload.get("base"))
            return _ok(capability, f"Created branch {name}", **branch)
        branch = await self._git_ops().switch_branch(name)
        return _ok(capability, f"Switched to branch {name}", **branch)

    async def _git_push(self, capability: Capability) -> CapabilityResult:
        payload = capability.payload
        pushed = await self._git_ops().push(payload.get("remote", "origin"), payload.get("branch"))
        return _ok(capability, f"Pushed {pushed['branch']} to {pushed['remote']}", **pushed)

    async def _git_pull(self, capability: Capability) -> CapabilityResult:
        payload = capability.payload
        pulled = await self._git_ops().pull(payload.get("remote", "origin"), payload.get("branch"))
        return _ok(capability, f"Pulled from {pulled['remote']}", **pulled)

    async def _git_merge(self, capability: Capability) -> CapabilityResult:
        merged = await self._git_ops().merge(_require(capability.payload, "source"))
        return _ok(capability, f"Merged {merged['source']}", **merged)

    async def _git_rebase(self, capability: Capability) -> CapabilityResult:
        rebased = await self._git_ops().rebase(_require(capability.payload, "onto"))
        return _ok(capability, f"Rebased onto {rebased['onto']}", **rebased)

    # -- history -----------------------------------------------------------

    def _record(self, record: ExecutionRecord) -> None:
        self._history.append(record)
        status = "succeeded" if record.success else f"failed ({record.result.reason})"
        logger.info(f"Capability {record.capability.key} {status} [{record.decision.value}]")
        if self._on_record is not None:
            try:
                self._on_record(record)
            except Exception as e:
                logger.warning(f"Execution record callback failed: {e}")

    def get_stats(self) -> dict:
        total = len(self._history)
        successful = sum(1 for r in self._history if r.success)
        return {
            "total_executions": total,
            "successful": successful,
            "failed": total - successful,
            "success_rate": successful / total if total else 0.0,
            "pending_approvals": len(self._pending),
            "recent_executions": [r.to_dict() for r in list(self._history)[-RECENT_EXECUTIONS:]],
        }

    def clear_history(self) -> None:
        self._history.clear()
