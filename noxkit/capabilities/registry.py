"""Capability registry: what may run, and what needs a human to say yes first.

The table is built once per registry instance and treated as immutable
configuration. Updates replace entries on the owning instance; nothing here is
module-level mutable state. Lookups are pure and do no I/O.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace

logger = logging.getLogger(__name__)

RESTRICTED_COMMANDS = (
    "rm -rf", "sudo", "format", "fdisk", "dd", "chmod 777",
    "chown", "passwd", "su", "shutdown", "reboot", "mkfs",
)

TASK_CATEGORIES = {
    "explain": ["codeAnalysis", "workspaceOperations", "webResearch"],
    "refactor": ["codeAnalysis", "fileOperations", "codeGeneration"],
    "analyze": ["codeAnalysis", "workspaceOperations", "webResearch"],
    "generate": ["codeGeneration", "fileOperations", "webResearch"],
    "chat": ["codeAnalysis", "workspaceOperations", "webResearch", "fileOperations"],
    "terminal": ["terminalOperations", "gitOperations"],
    "git": ["gitOperations", "fileOperations"],
}


class CapabilityNotFoundError(KeyError):
    """No such (category, action) pair in the registry."""


@dataclass(frozen=True)
class CapabilitySpec:
    description: str
    enabled: bool = True
    requires_approval: bool = True
    allowed_commands: tuple[str, ...] | None = None  # command prefixes, None = no allow-list


@dataclass(frozen=True)
class CategorySpec:
    capabilities: dict[str, CapabilitySpec]
    enabled: bool = True
    restricted_commands: tuple[str, ...] = field(default_factory=tuple)


def _spec(description: str, approval: bool, allowed: tuple[str, ...] | None = None) -> CapabilitySpec:
    return CapabilitySpec(description=description, requires_approval=approval, allowed_commands=allowed)


def default_capabilities() -> dict[str, CategorySpec]:
    return {
        "fileOperations": CategorySpec({
            "create": _spec("Create new files and directories", False),
            "edit": _spec("Edit existing files", False),
            "delete": _spec("Delete files and directories", True),
            "move": _spec("Move or rename files and directories", True),
            "copy": _spec("Copy files and directories", False),
            "batchOperations": _spec("Perform multiple file operations in one batch", True),
        }),
        "terminalOperations": CategorySpec(
            {
                "execute": _spec("Execute terminal commands", True),
                "packageManagement": _spec(
                    "Install, update, or remove packages", True,
                    ("npm", "yarn", "pip", "cargo", "go", "composer"),
                ),
                "buildCommands": _spec(
                    "Execute build and compilation commands", True,
                    ("npm run", "yarn", "make", "cargo build", "go build"),
                ),
                "testCommands": _spec(
                    "Run test suites and individual tests", False,
                    ("npm test", "yarn test", "pytest", "cargo test"),
                ),
            },
            restricted_commands=RESTRICTED_COMMANDS,
        ),
        "gitOperations": CategorySpec({
            "status": _spec("Check git status and repository information", False),
            "add": _spec("Stage files for commit", False),
            "commit": _spec("Create commits with messages", True),
            "branch": _spec("Create or switch branches", True),
            "push": _spec("Push commits to remote repository", True),
            "pull": _spec("Pull changes from remote repository", True),
            "merge": _spec("Merge branches", True),
            "rebase": _spec("Rebase branches", True),
        }),
        "codeAnalysis": CategorySpec({
            "fullCodebaseAnalysis": _spec("Analyze entire codebase for patterns, issues, and insights", False),
            "dependencyAnalysis": _spec("Map dependencies and analyze impact", False),
            "securityScanning": _spec("Scan for security vulnerabilities", False),
            "performanceAnalysis": _spec("Identify performance bottlenecks", False),
            "codeQualityAssessment": _spec("Assess code quality and suggest improvements", False),
            "architectureAnalysis": _spec("Analyze and suggest architectural improvements", False),
        }),
        "codeGeneration": CategorySpec({
            "singleFile": _spec("Generate individual files with complete implementations", False),
            "multiFile": _spec("Generate multiple related files and project structures", True),
            "projectScaffolding": _spec("Create complete project templates and boilerplates", True),
            "testGeneration": _spec("Generate test suites", False),
            "documentationGeneration": _spec("Generate documentation, README files, and API docs", False),
            "configurationGeneration": _spec("Generate configuration files (Docker, CI/CD, etc.)", True),
        }),
        "webResearch": CategorySpec({
            "documentationLookup": _spec("Search and retrieve documentation", False),
            "packageRecommendations": _spec("Recommend packages with security analysis", False),
            "stackOverflowIntegration": _spec("Search Stack Overflow for solutions", False),
            "technologyTrends": _spec("Analyze technology trends and best practices", False),
            "securityAdvisories": _spec("Check for security advisories and CVEs", False),
        }),
        "workspaceOperations": CategorySpec({
            "fileNavigation": _spec("Navigate and explore workspace files", False),
            "symbolSearch": _spec("Search for symbols, functions, and classes", False),
            "contextGathering": _spec("Gather relevant context for tasks", False),
            "projectStructureAnalysis": _spec("Analyze and understand project structure", False),
        }),
    }


class CapabilityRegistry:
    """Policy table consulted by the executor before any side effect."""

    def __init__(self, categories: dict[str, CategorySpec] | None = None) -> None:
        self._categories = categories if categories is not None else default_capabilities()
        self._collect_restrictions()

    def _collect_restrictions(self) -> None:
        phrases: list[str] = []
        for category in self._categories.values():
            phrases.extend(category.restricted_commands)
        self._restricted = [phrase.lower() for phrase in phrases]

    @property
    def categories(self) -> dict[str, CategorySpec]:
        return dict(self._categories)

    def get(self, category: str, action: str) -> CapabilitySpec | None:
        category_spec = self._categories.get(category)
        if category_spec is None:
            return None
        return category_spec.capabilities.get(action)

    def is_known(self, category: str, action: str) -> bool:
        return self.get(category, action) is not None

    def is_capability_enabled(self, category: str, action: str) -> bool:
        category_spec = self._categories.get(category)
        if category_spec is None or not category_spec.enabled:
            return False
        spec = category_spec.capabilities.get(action)
        return spec is not None and spec.enabled

    def requires_approval(self, category: str, action: str) -> bool:
        """Unknown pairs always require approval."""
        spec = self.get(category, action)
        return True if spec is None else spec.requires_approval

    def restricted_match(self, command: str) -> str | None:
        """The restricted phrase a command contains anywhere, ignoring case."""
        lowered = command.lower()
        for phrase in self._restricted:
            if phrase in lowered:
                return phrase
        return None

    def is_command_restricted(self, command: str) -> bool:
        return self.restricted_match(command) is not None

    def is_command_allowed(self, category: str, action: str, command: str) -> bool:
        """Check a command against the capability's allow-list, if it has one."""
        if category not in self._categories:
            return False
        spec = self.get(category, action)
        if spec is None or spec.allowed_commands is None:
            return True
        lowered = command.strip().lower()
        return any(lowered.startswith(prefix.lower()) for prefix in spec.allowed_commands)

    # -- updates -----------------------------------------------------------

    def update_capability(self, category: str, action: str, **changes) -> CapabilitySpec:
        """Replace one capability entry with the given fields changed."""
        category_spec = self._categories.get(category)
        if category_spec is None or action not in category_spec.capabilities:
            raise CapabilityNotFoundError(f"{category}.{action}")

        updated = replace(category_spec.capabilities[action], **changes)
        capabilities = dict(category_spec.capabilities)
        capabilities[action] = updated
        self._categories[category] = replace(category_spec, capabilities=capabilities)
        logger.info(f"Capability {category}.{action} updated: {changes}")
        return updated

    def enable_capability(self, category: str, action: str) -> CapabilitySpec:
        return self.update_capability(category, action, enabled=True)

    def disable_capability(self, category: str, action: str) -> CapabilitySpec:
        return self.update_capability(category, action, enabled=False)

    def set_category_enabled(self, category: str, enabled: bool) -> None:
        if category not in self._categories:
            raise CapabilityNotFoundError(category)
        self._categories[category] = replace(self._categories[category], enabled=enabled)

    # -- summaries ---------------------------------------------------------

    def get_capability_summary(self, categories: list[str] | None = None) -> str:
        """Describe the enabled capabilities for inclusion in a prompt."""
        summary: list[str] = []
        for name, category in self._categories.items():
            if not category.enabled or (categories is not None and name not in categories):
                continue
            summary.append(f"### {_title(name)}")
            for action, spec in category.capabilities.items():
                if not spec.enabled:
                    continue
                approval = " (requires approval)" if spec.requires_approval else ""
                summary.append(f"- {name}.{action}: {spec.description}{approval}")
            summary.append("")
        return "\n".join(summary).rstrip()

    def get_task_capabilities(self, task_type: str) -> dict[str, CategorySpec]:
        """Enabled categories relevant to a task; all of them for unknown tasks."""
        names = TASK_CATEGORIES.get(task_type, list(self._categories))
        return {
            name: self._categories[name]
            for name in names
            if name in self._categories and self._categories[name].enabled
        }

    def get_stats(self) -> dict:
        total = enabled = approval_required = 0
        for category in self._categories.values():
            if not category.enabled:
                continue
            for spec in category.capabilities.values():
                total += 1
                if spec.enabled:
                    enabled += 1
                    if spec.requires_approval:
                        approval_required += 1
        return {
            "categories": len(self._categories),
            "total_capabilities": total,
            "enabled_capabilities": enabled,
            "approval_required": approval_required,
            "auto_executable": enabled - approval_required,
            "restricted_commands": len(self._restricted),
        }


def _title(category: str) -> str:
    """fileOperations → FILE OPERATIONS"""
    return re.sub(r"(?<!^)([A-Z])", r" \1", category).upper()
