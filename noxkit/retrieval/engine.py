"""Context retrieval: free-text query → relevant file excerpts and symbols.

Scores every indexed file by keyword overlap with its name, content and
symbols, then cuts each selected file down to the lines around the matches.
Retrieval is a pure read over the index; it never mutates it.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import asdict, dataclass, field
from pathlib import PurePosixPath

from noxkit.indexing.index import WorkspaceIndex
from noxkit.indexing.models import FileRecord

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILES = 10
DEFAULT_MAX_LINES = 100
MAX_SYMBOL_RESULTS = 20
CONTEXT_RADIUS = 2  # lines shown either side of a match

FILENAME_WEIGHT = 10
SYMBOL_WEIGHT = 5
SYMBOL_PRESENCE_BONUS = 0.8

STOP_WORDS = {
    "why", "did", "we", "the", "a", "an", "is", "are", "was", "were",
    "do", "does", "how", "what", "when", "where", "which", "who",
    "our", "their", "this", "that", "for", "with", "from", "about",
    "should", "would", "could", "have", "has", "had", "not", "and", "or",
    "but", "in", "on", "to", "of", "it", "its", "be", "been", "being",
    "me", "my", "i", "you", "your", "can", "please", "show", "find",
}

WORD_RE = re.compile(r"[A-Za-z0-9_]+")


def extract_keywords(query: str) -> list[str]:
    """Lower-cased query words with stop words and one-letter words removed."""
    keywords: list[str] = []
    for word in WORD_RE.findall(query.lower()):
        if len(word) < 2 or word in STOP_WORDS or word in keywords:
            continue
        keywords.append(word)
    return keywords


@dataclass
class ContextLine:
    number: int  # 1-based
    content: str
    is_match: bool


@dataclass
class SymbolMatch:
    name: str
    file: str
    line: int
    type: str


@dataclass
class ContextFile:
    path: str
    lines: list[ContextLine] = field(default_factory=list)
    relevance_score: float = 0
    symbols: list[SymbolMatch] = field(default_factory=list)


@dataclass
class ContextResult:
    query: str
    files: list[ContextFile] = field(default_factory=list)
    symbols: list[SymbolMatch] = field(default_factory=list)
    relevance_score: float = 0.0
    total_files: int = 0
    search_time_ms: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.files and not self.symbols

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=2)

    def to_text(self) -> str:
        if self.is_empty:
            return f"No relevant context found for: {self.query}"

        lines = [
            f"Context for: {self.query} "
            f"(relevance {self.relevance_score:.2f}, {len(self.files)} of {self.total_files} files)",
            "",
        ]
        for f in self.files:
            lines.append(f"{f.path}  [score {f.relevance_score:g}]")
            for line in f.lines:
                marker = ">" if line.is_match else " "
                lines.append(f"  {marker}{line.number:5d}  {line.content}")
            lines.append("")
        if self.symbols:
            lines.append("Symbols:")
            for s in self.symbols:
                lines.append(f"  - {s.name} ({s.type}) {s.file}:{s.line}")
        return "\n".join(lines).rstrip()

    def to_prompt(self) -> str:
        """Render the context as a prompt section for the language model."""
        if self.is_empty:
            return ""

        parts: list[str] = []
        for f in self.files:
            parts.append(f"### {f.path}")
            parts.append("```")
            parts.extend(f"{line.number}: {line.content}" for line in f.lines)
            parts.append("```")
            parts.append("")
        if self.symbols:
            parts.append("### Related symbols")
            for s in self.symbols:
                parts.append(f"- `{s.name}` ({s.type}) at {s.file}:{s.line}")
        return "\n".join(parts).rstrip()


class ContextRetriever:
    """Finds the parts of the workspace relevant to a query."""

    def __init__(
        self,
        index: WorkspaceIndex,
        max_files: int = DEFAULT_MAX_FILES,
        max_lines: int = DEFAULT_MAX_LINES,
    ) -> None:
        self._index = index
        self._max_files = max_files
        self._max_lines = max_lines

    def get_context(
        self,
        query: str,
        max_files: int | None = None,
        max_lines: int | None = None,
    ) -> ContextResult:
        """Build the context for a query.

        A blank query, or one with no matches anywhere, gives an empty result
        with relevance 0. Callers fall back to prompting without context.
        """
        started = time.monotonic()
        if max_files is None:
            max_files = self._max_files
        if max_lines is None:
            max_lines = self._max_lines
        total_files = len(self._index.files)

        keywords = extract_keywords(query)
        if not keywords:
            return ContextResult(query=query, total_files=total_files)

        context_files: list[ContextFile] = []
        for path, score in self.search_files(query, max_files):
            record = self._index.get_file(path)
            if record is None:
                continue
            context_files.append(
                ContextFile(
                    path=path,
                    lines=self.get_relevant_lines(record.content, query, max_lines),
                    relevance_score=score,
                    symbols=[
                        SymbolMatch(s.name, path, s.line, s.type)
                        for s in record.symbols
                        if _contains_any(s.name, keywords)
                    ],
                )
            )
        symbols = self.search_symbols(query)

        result = ContextResult(
            query=query,
            files=context_files,
            symbols=symbols,
            relevance_score=self.calculate_overall_relevance(context_files, symbols),
            total_files=total_files,
            search_time_ms=(time.monotonic() - started) * 1000,
        )
        logger.info(f"Context retrieved: {len(context_files)} files, {len(symbols)} symbols")
        return result

    def search_files(self, query: str, max_files: int = DEFAULT_MAX_FILES) -> list[tuple[str, float]]:
        """Top files by score, as (path, score); ties go to the shorter path."""
        keywords = extract_keywords(query)
        if not keywords:
            return []

        scored: list[tuple[str, float]] = []
        for path, record in self._index.files.items():
            score = score_file(record, keywords)
            if score > 0:
                scored.append((path, score))
        scored.sort(key=lambda item: (-item[1], len(item[0]), item[0]))
        return scored[:max_files]

    def search_symbols(self, query: str, max_symbols: int = MAX_SYMBOL_RESULTS) -> list[SymbolMatch]:
        keywords = extract_keywords(query)
        if not keywords:
            return []

        results: list[SymbolMatch] = []
        for name, locations in self._index.symbols.items():
            if not _contains_any(name, keywords):
                continue
            for loc in locations:
                results.append(SymbolMatch(name=name, file=loc.file, line=loc.line, type=loc.type))
                if len(results) >= max_symbols:
                    return results
        return results

    def get_relevant_lines(self, content: str, query: str, max_lines: int) -> list[ContextLine]:
        """Matching lines plus a little surrounding context, in line order.

        When nothing matches, the head of the file stands in.
        """
        keywords = extract_keywords(query)
        lines = content.split("\n")
        matches = [i for i, line in enumerate(lines) if keywords and _contains_any(line, keywords)]

        if not matches:
            return [ContextLine(i + 1, lines[i], False) for i in range(min(max_lines // 2, len(lines)))]

        # Matches claim the budget first; context fills what is left, nearest lines first.
        selected = {i: ContextLine(i + 1, lines[i], True) for i in matches[:max_lines]}
        for distance in range(1, CONTEXT_RADIUS + 1):
            for i in matches[:max_lines]:
                for j in (i - distance, i + distance):
                    if len(selected) >= max_lines:
                        break
                    if 0 <= j < len(lines) and j not in selected:
                        selected[j] = ContextLine(j + 1, lines[j], False)

        return [selected[n] for n in sorted(selected)]

    @staticmethod
    def calculate_overall_relevance(files: list[ContextFile], symbols: list[SymbolMatch]) -> float:
        """Collapse per-file scores and symbol hits into a 0..1 scalar."""
        if not files and not symbols:
            return 0.0
        file_score = sum(f.relevance_score for f in files) / len(files) if files else 0.0
        symbol_score = SYMBOL_PRESENCE_BONUS if symbols else 0.0
        return min(1.0, (file_score + symbol_score) / 10)


def score_file(record: FileRecord, keywords: list[str]) -> float:
    file_name = PurePosixPath(record.path).name.lower()
    content = record.content.lower()
    symbol_names = [s.name.lower() for s in record.symbols]

    score = 0
    for keyword in keywords:
        if keyword in file_name:
            score += FILENAME_WEIGHT
        score += content.count(keyword)
        score += SYMBOL_WEIGHT * sum(1 for name in symbol_names if keyword in name)
    return score


def _contains_any(text: str, keywords: list[str]) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in keywords)
