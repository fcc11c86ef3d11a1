"""User confirmation for capabilities that need a human decision.

The executor only knows the `Confirmer` protocol. The CLI plugs in a console
prompt; non-interactive surfaces (the MCP server, tests) plug in a fixed answer.
"""

from __future__ import annotations

import asyncio
import json
from typing import Protocol

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from noxkit.capabilities.models import Capability


class Confirmer(Protocol):
    async def confirm(self, capability: Capability, description: str) -> bool:
        ...


def format_capability_details(capability: Capability, description: str = "") -> str:
    """Plain-text summary of a capability for a confirmation prompt."""
    lines = [
        f"Capability: {capability.key}",
        f"Description: {description or capability.description or '(none)'}",
    ]
    if capability.payload:
        lines.append("Parameters:")
        for key, value in capability.payload.items():
            if isinstance(value, (dict, list)):
                value = json.dumps(value)
            text = str(value)
            if len(text) > 200:
                text = text[:200] + f"... ({len(text)} chars)"
            lines.append(f"  {key}: {text}")
    return "\n".join(lines)


class ConsoleConfirmer:
    """Asks on the terminal. The blocking prompt runs in a worker thread."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()

    async def confirm(self, capability: Capability, description: str) -> bool:
        return await asyncio.to_thread(self._ask, capability, description)

    def _ask(self, capability: Capability, description: str) -> bool:
        self._console.print(Panel(
            format_capability_details(capability, description),
            title="Approval required",
            border_style="yellow",
        ))
        return Confirm.ask("[bold]Approve?[/]", console=self._console, default=False)


class StaticConfirmer:
    """Always gives the same answer; records what it was asked."""

    def __init__(self, approve: bool) -> None:
        self.approve = approve
        self.asked: list[Capability] = []

    async def confirm(self, capability: Capability, description: str) -> bool:
        self.asked.append(capability)
        return self.approve
