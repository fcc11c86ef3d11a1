"""CLI entry point for noxkit."""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import anthropic
import typer
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn

from noxkit.agent.engine import TASK_TYPES, TaskRunner
from noxkit.approval import ConsoleConfirmer, StaticConfirmer
from noxkit.audit import read_audit_log
from noxkit.capabilities.models import Capability, CapabilityResult
from noxkit.config import Config
from noxkit.workspace import Workspace

app = typer.Typer(help="Index a workspace, retrieve context, and run AI-suggested actions safely.")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
    )


def _load_config() -> Config:
    config = Config.load()
    if not config.workspace_path.is_dir():
        rprint(f"[red]Workspace not found: {config.workspace_path} (NOX_WORKSPACE)[/red]")
        raise typer.Exit(1)
    return config


def _print_result(result: CapabilityResult) -> None:
    color = "green" if result.success else "red"
    rprint(f"[{color}]{result.type}: {result.message}[/{color}]")
    if result.reason and not result.success:
        rprint(f"  reason: {result.reason}")
    for key in ("stdout", "stderr"):
        text = result.details.get(key)
        if text:
            rprint(f"  {key}:\n{text.rstrip()}")
    suggestion = result.details.get("suggestion")
    if suggestion:
        rprint(f"  [yellow]{suggestion}[/yellow]")


async def _scan(ws: Workspace) -> dict:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
    ) as progress:
        progress.add_task(f"Indexing {ws.config.workspace_path}...", total=None)
        return await ws.scan()


@app.command()
def index() -> None:
    """Scan the workspace and show index statistics."""
    ws = Workspace.open(_load_config())
    stats = asyncio.run(_scan(ws))

    rprint("[bold]Index statistics:[/bold]")
    rprint(f"  Files indexed:   {stats['indexed_files']} of {stats['total_files']}")
    rprint(f"  Skipped (size):  {stats['skipped_files']}")
    rprint(f"  Errors:          {stats['errors']}")
    rprint(f"  Unique symbols:  {stats['unique_symbols']}")
    rprint(f"  Duration:        {stats['last_index_duration']}s")


@app.command()
def context(
    query: str = typer.Argument(help="What you are looking for"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: text, json or prompt"),
    max_files: int = typer.Option(None, help="Max files to return"),
) -> None:
    """Show the workspace context retrieved for a query."""
    ws = Workspace.open(_load_config())
    asyncio.run(_scan(ws))
    result = ws.retriever.get_context(query, max_files=max_files)

    if format == "json":
        typer.echo(result.to_json())
    elif format == "prompt":
        typer.echo(result.to_prompt())
    else:
        rprint(result.to_text())


@app.command()
def capabilities(
    task: str = typer.Option(None, "--task", "-t", help=f"Only categories for a task: {', '.join(TASK_TYPES)}"),
) -> None:
    """List the capabilities and which ones need approval."""
    ws = Workspace.open(_load_config())
    categories = list(ws.registry.get_task_capabilities(task)) if task else None
    rprint(ws.registry.get_capability_summary(categories))

    s = ws.registry.get_stats()
    rprint(
        f"\n[bold]{s['enabled_capabilities']}[/bold] enabled, "
        f"{s['approval_required']} require approval, "
        f"{s['restricted_commands']} restricted commands"
    )


@app.command()
def run(
    capability_json: str = typer.Argument(help="Capability as JSON, or '-' to read stdin"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Approve anything that asks for approval"),
) -> None:
    """Execute one capability under the approval policy."""
    raw = sys.stdin.read() if capability_json == "-" else capability_json
    try:
        capability = Capability.from_dict(json.loads(raw))
    except (json.JSONDecodeError, ValueError) as e:
        rprint(f"[red]Invalid capability: {e}[/red]")
        raise typer.Exit(1)

    confirmer = StaticConfirmer(True) if yes else ConsoleConfirmer()
    ws = Workspace.open(_load_config(), confirmer)
    result = asyncio.run(ws.executor.execute_capability(capability, {"source": "cli"}))
    _print_result(result)
    if not result.success:
        raise typer.Exit(1)


@app.command()
def ask(
    task: str = typer.Argument(help=f"Task type: {', '.join(TASK_TYPES)}"),
    request: str = typer.Argument(help="What you want done"),
    execute: bool = typer.Option(False, "--execute", "-x", help="Run the suggested capabilities"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: text or json"),
) -> None:
    """Ask the model for help with a task, using workspace context."""
    config = _load_config()
    if not config.anthropic_api_key:
        rprint("[red]ANTHROPIC_API_KEY not set[/red]")
        raise typer.Exit(1)

    ws = Workspace.open(config, ConsoleConfirmer())
    client = anthropic.AsyncAnthropic(api_key=config.anthropic_api_key)
    runner = TaskRunner(ws.retriever, ws.registry, client, model=config.model)

    async def _ask():
        await _scan(ws)
        result = await runner.run(task, request)
        if execute and result.capabilities:
            await runner.execute(result, ws.executor)
        return result

    result = asyncio.run(_ask())

    if format == "json":
        typer.echo(result.to_json())
        return

    rprint(result.answer)
    if result.capabilities and not execute:
        rprint(f"\n[bold]{len(result.capabilities)} suggested action(s)[/bold] (re-run with --execute to apply):")
        for c in result.capabilities:
            rprint(f"  - {c.key}: {c.description}")
    for outcome in result.executions:
        _print_result(outcome)


@app.command()
def history(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of entries"),
    category: str = typer.Option(None, "--category", "-c", help="Only this capability category"),
) -> None:
    """Show recent capability executions from the audit log."""
    config = _load_config()
    entries = read_audit_log(config.resolved_audit_log_path, limit=limit, category=category)
    if not entries:
        rprint("No executions recorded yet.")
        return

    for entry in entries:
        cap = entry.get("capability", {})
        result = entry.get("result", {})
        mark = "[green]ok[/green]" if result.get("success") else f"[red]{result.get('reason') or 'failed'}[/red]"
        rprint(
            f"{entry.get('timestamp', '')[:19]}  {cap.get('category')}.{cap.get('action')}  "
            f"{mark}  [dim]{entry.get('decision')}[/dim]  {result.get('message', '')}"
        )


@app.command()
def serve() -> None:
    """Start the MCP server (called by Claude Code / Cursor automatically)."""
    from noxkit.mcp_server import main as mcp_main
    asyncio.run(mcp_main())
