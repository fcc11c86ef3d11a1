"""Task loop: request → workspace context → model answer → suggested capabilities.

Builds a prompt from the retrieved context and the capabilities the task may
use, asks Claude, and pulls any ```capability blocks out of the answer. The
suggestions are only parsed here. Running them is the executor's job, under
its policy and approval gate.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field

import anthropic

from noxkit.capabilities.executor import CapabilityExecutor
from noxkit.capabilities.models import Capability, CapabilityResult
from noxkit.capabilities.registry import TASK_CATEGORIES, CapabilityRegistry
from noxkit.config import DEFAULT_MODEL
from noxkit.retrieval.engine import ContextResult, ContextRetriever

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_BASE_DELAY = 2.0  # seconds
MAX_TOKENS = 2048
MIN_CONTEXT_RELEVANCE = 0.05

TASK_TYPES = tuple(TASK_CATEGORIES)

CAPABILITY_BLOCK_RE = re.compile(r"```capability[ \t]*\n(.*?)```", re.DOTALL)

TASK_PROMPT = """\
You are a coding assistant working inside the user's workspace. \
The current task type is: {task_type}.

## Request
{request}
{context_section}
## What you can do
You may propose actions from this list. Actions marked "(requires approval)" \
are shown to the user before they run; restricted terminal commands are always refused.

{capabilities}

To propose an action, add a fenced block tagged `capability` containing JSON:

```capability
{{"category": "fileOperations", "action": "create", "description": "Add a helper",
  "payload": {{"path": "src/util.js", "content": "..."}}}}
```

Use one block per action (or a JSON list in one block). Only propose actions \
the request needs. Answer the request directly and concisely.
"""

CONTEXT_SECTION = """
## Relevant workspace context
{context}
"""


@dataclass
class TaskResult:
    task_type: str
    request: str
    answer: str
    context: ContextResult
    capabilities: list[Capability] = field(default_factory=list)
    executions: list[CapabilityResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "task_type": self.task_type,
            "request": self.request,
            "answer": self.answer,
            "relevance_score": self.context.relevance_score,
            "context_files": [f.path for f in self.context.files],
            "capabilities": [c.to_dict() for c in self.capabilities],
            "executions": [r.to_dict() for r in self.executions],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)


def parse_capabilities(text: str) -> list[Capability]:
    """Pull suggested capabilities out of a model response.

    Malformed blocks are skipped with a warning; the rest still count.
    """
    capabilities: list[Capability] = []
    for block in CAPABILITY_BLOCK_RE.findall(text):
        try:
            data = json.loads(block)
        except json.JSONDecodeError:
            logger.warning(f"Skipping unparseable capability block: {block[:200]}")
            continue

        items = data if isinstance(data, list) else [data]
        for item in items:
            if not isinstance(item, dict):
                logger.warning(f"Skipping non-object capability: {item!r}")
                continue
            try:
                capabilities.append(Capability.from_dict(item))
            except ValueError as e:
                logger.warning(f"Skipping invalid capability: {e}")
    return capabilities


class TaskRunner:
    """Runs one task against the workspace and the language model."""

    def __init__(
        self,
        retriever: ContextRetriever,
        registry: CapabilityRegistry,
        client: anthropic.AsyncAnthropic,
        model: str = DEFAULT_MODEL,
    ) -> None:
        self._retriever = retriever
        self._registry = registry
        self._client = client
        self._model = model

    async def run(self, task_type: str, request: str) -> TaskResult:
        if task_type not in TASK_TYPES:
            logger.warning(f"Unknown task type {task_type!r}, offering all capabilities")

        context = self._retriever.get_context(request)
        prompt = self._build_prompt(task_type, request, context)
        answer = await self._ask(prompt)

        return TaskResult(
            task_type=task_type,
            request=request,
            answer=answer,
            context=context,
            capabilities=parse_capabilities(answer),
        )

    async def execute(
        self,
        result: TaskResult,
        executor: CapabilityExecutor,
        cancel_event: asyncio.Event | None = None,
    ) -> list[CapabilityResult]:
        """Hand each suggested capability to the executor, in order."""
        metadata = {"task_type": result.task_type, "request": result.request}
        for capability in result.capabilities:
            if cancel_event is not None and cancel_event.is_set():
                break
            outcome = await executor.execute_capability(capability, metadata, cancel_event)
            result.executions.append(outcome)
        return result.executions

    def _build_prompt(self, task_type: str, request: str, context: ContextResult) -> str:
        context_section = ""
        if context.relevance_score > MIN_CONTEXT_RELEVANCE:
            context_section = CONTEXT_SECTION.format(context=context.to_prompt())

        categories = list(self._registry.get_task_capabilities(task_type))
        return TASK_PROMPT.format(
            task_type=task_type,
            request=request,
            context_section=context_section,
            capabilities=self._registry.get_capability_summary(categories),
        )

    async def _ask(self, prompt: str) -> str:
        """Call Claude with retry on rate limits. API errors become the answer text."""
        response = None
        for attempt in range(MAX_RETRIES):
            try:
                response = await self._client.messages.create(
                    model=self._model,
                    max_tokens=MAX_TOKENS,
                    messages=[{"role": "user", "content": prompt}],
                )
                break
            except anthropic.RateLimitError:
                if attempt < MAX_RETRIES - 1:
                    delay = RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(f"Rate limited on task, retrying in {delay}s...")
                    await asyncio.sleep(delay)
                else:
                    return "Unable to complete the task: API rate limit exceeded. Try again later."
            except anthropic.APIError as e:
                logger.error(f"API error during task: {e}")
                return f"Unable to complete the task due to an API error: {e}"

        if response is None or not response.content:
            return "No response from API."

        return response.content[0].text.strip()
