"""Audit log of capability executions.

Appends one JSON line per ExecutionRecord so humans can see what their AI
agent tried to do, what was approved or rejected, and how it went. The log
file lives in the workspace by default (NOX_AUDIT_LOG_PATH overrides).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from noxkit.capabilities.models import ExecutionRecord

logger = logging.getLogger(__name__)

MESSAGE_PREVIEW_LIMIT = 500


def log_execution(record: ExecutionRecord, log_path: Path) -> None:
    """Append an execution record to the audit log. Never raises."""
    try:
        entry = record.to_dict()
        message = entry["result"].get("message") or ""
        entry["result"]["message"] = message[:MESSAGE_PREVIEW_LIMIT]
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, default=str) + "\n")
    except Exception as e:  # an audit failure must not fail the execution
        logger.debug(f"Could not write audit entry to {log_path}: {e}")


def read_audit_log(
    log_path: Path,
    limit: int = 20,
    category: str | None = None,
) -> list[dict]:
    """Read recent audit entries, most recent first."""
    if not log_path.exists():
        return []

    entries: list[dict] = []
    for line in log_path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue

        if category and entry.get("capability", {}).get("category") != category:
            continue

        entries.append(entry)

    entries.reverse()
    return entries[:limit]
