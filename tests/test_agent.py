"""Tests for noxkit.agent.engine — prompt assembly, LM calls and capability parsing."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import pytest

from noxkit.agent.engine import TaskResult, TaskRunner, parse_capabilities
from noxkit.capabilities.executor import CapabilityExecutor
from noxkit.capabilities.registry import CapabilityRegistry
from noxkit.indexing.index import WorkspaceIndex
from noxkit.retrieval.engine import ContextResult, ContextRetriever


def _response(text: str) -> MagicMock:
    response = MagicMock()
    content_block = MagicMock()
    content_block.text = text
    response.content = [content_block]
    return response


def _mock_client(*texts: str) -> MagicMock:
    client = MagicMock()
    client.messages.create = AsyncMock(side_effect=[_response(t) for t in texts])
    return client


def _rate_limit_error() -> anthropic.RateLimitError:
    return anthropic.RateLimitError("slow down", response=MagicMock(status_code=429), body=None)


ANSWER_WITH_CAPABILITY = """Add a helper file.

```capability
{"category": "fileOperations", "action": "create", "payload": {"path": "util.js", "content": "export {}\\n"}}
```
"""


class TestParseCapabilities:
    def test_single_object(self):
        caps = parse_capabilities(ANSWER_WITH_CAPABILITY)
        assert [c.key for c in caps] == ["fileOperations.create"]
        assert caps[0].payload["path"] == "util.js"

    def test_list_and_multiple_blocks(self):
        text = (
            '```capability\n[{"category": "gitOperations", "action": "add"},'
            ' {"category": "gitOperations", "action": "commit", "parameters": {"message": "m"}}]\n```\n'
            'then\n```capability\n{"category": "terminalOperations", "action": "testCommands",'
            ' "payload": {"command": "pytest"}}\n```'
        )
        assert [c.key for c in parse_capabilities(text)] == [
            "gitOperations.add",
            "gitOperations.commit",
            "terminalOperations.testCommands",
        ]

    def test_malformed_blocks_are_skipped(self):
        text = (
            "```capability\n{not json}\n```\n"
            '```capability\n["just a string", {"action": "create"}]\n```\n'
            '```capability\n{"category": "fileOperations", "action": "delete", "payload": {"path": "x"}}\n```'
        )
        assert [c.key for c in parse_capabilities(text)] == ["fileOperations.delete"]

    def test_plain_code_blocks_are_ignored(self):
        assert parse_capabilities('```json\n{"category": "a", "action": "b"}\n```') == []


class TestTaskRunner:
    @pytest.mark.asyncio
    async def test_run_includes_context_and_parses_answer(
        self, sample_workspace: Path, index: WorkspaceIndex, retriever: ContextRetriever, registry: CapabilityRegistry
    ):
        await index.scan_workspace()
        client = _mock_client(ANSWER_WITH_CAPABILITY)
        runner = TaskRunner(retriever, registry, client, model="test-model")

        result = await runner.run("refactor", "Where is foo defined?")

        prompt = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert client.messages.create.call_args.kwargs["model"] == "test-model"
        assert "## Relevant workspace context" in prompt
        assert "### a.js" in prompt
        assert "fileOperations.create" in prompt
        assert "gitOperations" not in prompt
        assert result.answer.startswith("Add a helper file.")
        assert [c.key for c in result.capabilities] == ["fileOperations.create"]

    @pytest.mark.asyncio
    async def test_prompt_omits_irrelevant_context(self, retriever: ContextRetriever, registry: CapabilityRegistry):
        client = _mock_client("Nothing to do.")
        runner = TaskRunner(retriever, registry, client)

        result = await runner.run("chat", "hello there")

        prompt = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert "Relevant workspace context" not in prompt
        assert result.capabilities == []

    @pytest.mark.asyncio
    async def test_retries_on_rate_limit(self, retriever: ContextRetriever, registry: CapabilityRegistry):
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=[_rate_limit_error(), _response("done")])
        runner = TaskRunner(retriever, registry, client)

        with patch("noxkit.agent.engine.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await runner.run("chat", "hi")

        assert result.answer == "done"
        assert client.messages.create.await_count == 2
        sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self, retriever: ContextRetriever, registry: CapabilityRegistry):
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=[_rate_limit_error() for _ in range(3)])
        runner = TaskRunner(retriever, registry, client)

        with patch("noxkit.agent.engine.asyncio.sleep", new=AsyncMock()):
            result = await runner.run("chat", "hi")

        assert "rate limit" in result.answer
        assert client.messages.create.await_count == 3

    @pytest.mark.asyncio
    async def test_api_error_becomes_answer(self, retriever: ContextRetriever, registry: CapabilityRegistry):
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=anthropic.APIError(
            message="Server error",
            request=MagicMock(),
            body=None,
        ))
        runner = TaskRunner(retriever, registry, client)

        result = await runner.run("chat", "hi")
        assert "API error" in result.answer
        assert result.capabilities == []


class TestExecuteSuggestions:
    @pytest.mark.asyncio
    async def test_executes_in_order_with_task_metadata(
        self, retriever: ContextRetriever, registry: CapabilityRegistry, executor: CapabilityExecutor, workspace: Path
    ):
        client = _mock_client(ANSWER_WITH_CAPABILITY)
        runner = TaskRunner(retriever, registry, client)
        result = await runner.run("refactor", "add util")

        outcomes = await runner.execute(result, executor)
        assert [o.success for o in outcomes] == [True]
        assert (workspace / "util.js").read_text() == "export {}\n"
        assert executor.history[-1].context["task_type"] == "refactor"

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, executor: CapabilityExecutor):
        result = TaskResult("refactor", "x", "", ContextResult(query="x"), parse_capabilities(ANSWER_WITH_CAPABILITY))
        cancel = asyncio.Event()
        cancel.set()

        runner = TaskRunner.__new__(TaskRunner)
        assert await runner.execute(result, executor, cancel) == []
        assert executor.history == []

    def test_to_dict(self):
        result = TaskResult("chat", "hi", "hello", ContextResult(query="hi"))
        data = result.to_dict()
        assert data["answer"] == "hello"
        assert data["context_files"] == []
        assert data["executions"] == []
