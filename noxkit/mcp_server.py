"""MCP server for noxkit.

Gives AI coding agents workspace context and policy-gated actions via the
Model Context Protocol. No human sits behind this server, so any capability
that needs approval is denied; only auto-allowed capabilities run.

Usage:
    noxkit serve            (or: python -m noxkit.mcp_server)

Configure in Claude Code (.mcp.json):
    {
      "mcpServers": {
        "noxkit": {
          "type": "stdio",
          "command": "noxkit",
          "args": ["serve"],
          "env": {"NOX_WORKSPACE": "/path/to/project"}
        }
      }
    }
"""

from __future__ import annotations

import json
import logging
import time

import mcp.server.stdio
import mcp.types as types
from mcp.server import Server

from noxkit.approval import StaticConfirmer
from noxkit.audit import read_audit_log
from noxkit.capabilities.models import Capability
from noxkit.config import Config
from noxkit.workspace import Workspace

logger = logging.getLogger(__name__)

server = Server("noxkit")

_workspace: Workspace | None = None


async def _get_workspace() -> Workspace:
    """Open and index the workspace on first use."""
    global _workspace
    if _workspace is None:
        config = Config.load()
        if not config.workspace_path.is_dir():
            raise FileNotFoundError(
                f"Workspace not found at {config.workspace_path}. Set NOX_WORKSPACE."
            )
        _workspace = Workspace.open(config, StaticConfirmer(False))
        await _workspace.scan()
    return _workspace


def _text(payload: dict | str) -> list[types.TextContent]:
    text = payload if isinstance(payload, str) else json.dumps(payload, indent=2, default=str)
    return [types.TextContent(type="text", text=text)]


@server.list_tools()
async def list_tools() -> list[types.Tool]:
    return [
        types.Tool(
            name="get_context",
            description=(
                "Find the files, lines and symbols in this workspace relevant to a query. "
                "Call this before answering questions about the code or planning a change. "
                "Returns matching excerpts with line numbers and an overall relevance score "
                "between 0 and 1; a score of 0 means nothing relevant was found."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "Free-text description of what you are looking for",
                    },
                    "max_files": {
                        "type": "integer",
                        "description": "Maximum number of files to return (default 10)",
                    },
                },
                "required": ["query"],
            },
        ),
        types.Tool(
            name="list_capabilities",
            description=(
                "List the actions available through execute_capability, grouped by category, "
                "and which ones require human approval. Approval-required actions are always "
                "denied through this server."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "task_type": {
                        "type": "string",
                        "description": "Optional task type to narrow the list (explain, refactor, analyze, generate, chat, terminal, git)",
                    },
                },
            },
        ),
        types.Tool(
            name="execute_capability",
            description=(
                "Run one action in the workspace under the capability policy. "
                "Restricted terminal commands are always refused. "
                "Example: {\"category\": \"fileOperations\", \"action\": \"create\", "
                "\"payload\": {\"path\": \"notes.md\", \"content\": \"...\"}}"
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "category": {"type": "string", "description": "Capability category, e.g. fileOperations"},
                    "action": {"type": "string", "description": "Action within the category, e.g. create"},
                    "payload": {"type": "object", "description": "Action parameters"},
                    "description": {"type": "string", "description": "Why this action is needed"},
                },
                "required": ["category", "action"],
            },
        ),
        types.Tool(
            name="index_stats",
            description="Show workspace index statistics: files indexed, skipped, errors, symbols.",
            inputSchema={
                "type": "object",
                "properties": {
                    "rescan": {"type": "boolean", "description": "Re-scan the workspace first"},
                },
            },
        ),
        types.Tool(
            name="execution_history",
            description=(
                "Show recent capability executions from the audit log, most recent first, "
                "including rejected and denied ones."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "limit": {"type": "integer", "description": "Number of entries (default 20)"},
                    "category": {"type": "string", "description": "Only this capability category"},
                },
            },
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[types.TextContent]:
    start = time.time()
    try:
        return await _dispatch_tool(name, arguments or {})
    except FileNotFoundError as e:
        return _text(f"Setup required: {e}")
    except Exception as e:
        logger.error(f"Tool {name} failed: {e}")
        return _text(f"Error: {e}")
    finally:
        logger.debug(f"Tool {name} finished in {int((time.time() - start) * 1000)}ms")


async def _dispatch_tool(name: str, arguments: dict) -> list[types.TextContent]:
    if name == "get_context":
        return await _handle_get_context(arguments["query"], arguments.get("max_files"))
    elif name == "list_capabilities":
        return await _handle_list_capabilities(arguments.get("task_type"))
    elif name == "execute_capability":
        return await _handle_execute(arguments)
    elif name == "index_stats":
        return await _handle_index_stats(bool(arguments.get("rescan")))
    elif name == "execution_history":
        return await _handle_history(arguments.get("limit", 20), arguments.get("category"))
    else:
        return _text(f"Unknown tool: {name}")


async def _handle_get_context(query: str, max_files: int | None) -> list[types.TextContent]:
    ws = await _get_workspace()
    result = ws.retriever.get_context(query, max_files=max_files)
    if result.is_empty:
        return _text(f"No relevant context found for: {query}")
    return _text(result.to_json())


async def _handle_list_capabilities(task_type: str | None) -> list[types.TextContent]:
    ws = await _get_workspace()
    categories = list(ws.registry.get_task_capabilities(task_type)) if task_type else None
    return _text(ws.registry.get_capability_summary(categories))


async def _handle_execute(arguments: dict) -> list[types.TextContent]:
    ws = await _get_workspace()
    try:
        capability = Capability.from_dict(arguments)
    except ValueError as e:
        return _text(f"Invalid capability: {e}")

    result = await ws.executor.execute_capability(capability, {"source": "mcp"})
    if result.success:
        await _refresh_index(ws, capability)
    return _text(result.to_dict())


async def _refresh_index(ws: Workspace, capability: Capability) -> None:
    """Queue index updates for the files a capability touched."""
    payload = capability.payload
    if capability.category not in ("fileOperations", "codeGeneration"):
        return
    if capability.action == "delete":
        ws.index.queue_change(payload["path"], "delete")
    elif capability.action == "move":
        ws.index.queue_change(payload["source"], "delete")
        ws.index.queue_change(payload["target"], "create")
    elif capability.action == "copy":
        ws.index.queue_change(payload["target"], "create")
    elif "path" in payload:
        ws.index.queue_change(payload["path"], "change")
    else:
        # Batches and multi-file generation touch many paths
        await ws.scan()
        return
    await ws.index.flush_queue()


async def _handle_index_stats(rescan: bool) -> list[types.TextContent]:
    ws = await _get_workspace()
    if rescan:
        await ws.scan()
    return _text(ws.index.get_stats())


async def _handle_history(limit: int, category: str | None) -> list[types.TextContent]:
    ws = await _get_workspace()
    entries = read_audit_log(ws.config.resolved_audit_log_path, limit=limit, category=category)
    if not entries:
        return _text("No executions recorded yet.")
    return _text({"count": len(entries), "executions": entries})


async def main() -> None:
    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


if __name__ == "__main__":
    import asyncio
    asyncio.run(main())
