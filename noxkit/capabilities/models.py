"""Data models for capabilities and their execution records."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# CapabilityResult.reason values
POLICY_DISABLED = "policy_disabled"
RESTRICTED_COMMAND = "restricted_command"
COMMAND_NOT_ALLOWED = "command_not_allowed"
DENIED = "denied"
CANCELLED = "cancelled"
EXECUTION_ERROR = "execution_error"
UNSUPPORTED = "unsupported"


class ApprovalDecision(Enum):
    AUTO_ALLOWED = "auto_allowed"
    USER_APPROVED = "user_approved"
    USER_DENIED = "user_denied"
    REJECTED_BY_POLICY = "rejected_by_policy"
    CANCELLED = "cancelled"


@dataclass
class Capability:
    """A proposed action. Approval policy comes from the registry, not from here."""

    category: str  # e.g. "fileOperations", "terminalOperations"
    action: str  # e.g. "create", "execute", "commit"
    payload: dict[str, Any] = field(default_factory=dict)
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> Capability:
        """Build from the JSON shape a model (or a user) emits.

        Accepts `payload` or the older `parameters` key for the action arguments.
        """
        category = data.get("category")
        action = data.get("action")
        if not isinstance(category, str) or not category:
            raise ValueError("Capability is missing a 'category'")
        if not isinstance(action, str) or not action:
            raise ValueError("Capability is missing an 'action'")
        payload = data.get("payload", data.get("parameters")) or {}
        if not isinstance(payload, dict):
            raise ValueError("Capability 'payload' must be an object")
        return cls(
            category=category,
            action=action,
            payload=dict(payload),
            description=str(data.get("description", "")),
        )

    @property
    def key(self) -> str:
        return f"{self.category}.{self.action}"

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CapabilityResult:
    success: bool
    type: str  # "<category>.<action>"
    message: str
    reason: str | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)


@dataclass
class ExecutionRecord:
    id: str
    capability: Capability
    result: CapabilityResult
    decision: ApprovalDecision
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    context: dict[str, Any] = field(default_factory=dict)  # caller metadata, e.g. task type

    @property
    def success(self) -> bool:
        return self.result.success

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "decision": self.decision.value,
            "capability": self.capability.to_dict(),
            "result": self.result.to_dict(),
            "context": self.context,
        }
