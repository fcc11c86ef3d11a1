"""Tests for noxkit.retrieval.engine — keyword scoring and context assembly."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from noxkit.indexing.index import WorkspaceIndex
from noxkit.retrieval.engine import (
    ContextFile,
    ContextResult,
    ContextRetriever,
    SymbolMatch,
    extract_keywords,
)


class TestExtractKeywords:
    def test_strips_stop_words_and_punctuation(self):
        assert extract_keywords("Where is the parseConfig function?") == ["parseconfig", "function"]

    def test_deduplicates_in_order(self):
        assert extract_keywords("foo bar foo") == ["foo", "bar"]

    def test_blank_and_stop_word_only_queries(self):
        assert extract_keywords("   ") == []
        assert extract_keywords("what is it?") == []


class TestSearchScenario:
    @pytest.mark.asyncio
    async def test_foo_query(self, sample_workspace: Path, index: WorkspaceIndex, retriever: ContextRetriever):
        await index.scan_workspace()

        symbols = retriever.search_symbols("foo")
        assert ("foo", "a.js") in [(s.name, s.file) for s in symbols]

        ranked = retriever.search_files("foo")
        assert [path for path, _ in ranked] == ["a.js", "README.md"]
        # function foo: 1 occurrence + 5 for the symbol; README: 1 occurrence + 5 for the TODO marker
        assert [score for _, score in ranked] == [6, 6]

    @pytest.mark.asyncio
    async def test_get_context(self, sample_workspace: Path, index: WorkspaceIndex, retriever: ContextRetriever):
        await index.scan_workspace()
        result = retriever.get_context("foo")

        assert [f.path for f in result.files] == ["a.js", "README.md"]
        assert result.total_files == 3
        assert 0 < result.relevance_score <= 1
        assert result.files[0].lines[0].is_match
        assert [s.name for s in result.files[0].symbols] == ["foo"]

    @pytest.mark.asyncio
    async def test_explicit_zero_limits(self, sample_workspace: Path, index: WorkspaceIndex, retriever: ContextRetriever):
        await index.scan_workspace()
        assert retriever.get_context("foo", max_files=0).files == []
        assert all(f.lines == [] for f in retriever.get_context("foo", max_lines=0).files)


class TestEmptyResults:
    def test_blank_query(self, index: WorkspaceIndex, retriever: ContextRetriever):
        index.update_file_index("a.js", "function foo() {}\n")
        result = retriever.get_context("   ")
        assert result.is_empty
        assert result.relevance_score == 0

    def test_no_matches(self, index: WorkspaceIndex, retriever: ContextRetriever):
        index.update_file_index("a.js", "function foo() {}\n")
        result = retriever.get_context("database migration")
        assert result.files == []
        assert result.symbols == []
        assert result.relevance_score == 0
        assert result.to_prompt() == ""

    def test_retrieval_does_not_mutate_index(self, index: WorkspaceIndex, retriever: ContextRetriever):
        index.update_file_index("a.js", "function foo() {}\n")
        before = dict(index.files)
        retriever.get_context("foo")
        assert dict(index.files) == before


class TestScoring:
    def test_more_occurrences_never_lower_the_score(self, index: WorkspaceIndex, retriever: ContextRetriever):
        index.update_file_index("x.txt", "cache\n")
        base = dict(retriever.search_files("cache"))["x.txt"]
        for extra in range(1, 5):
            index.update_file_index("x.txt", "cache\n" + "cache cache\n" * extra)
            score = dict(retriever.search_files("cache"))["x.txt"]
            assert score >= base
            base = score

    def test_filename_match_outranks_content(self, index: WorkspaceIndex, retriever: ContextRetriever):
        index.update_file_index("cache.txt", "nothing here\n")
        index.update_file_index("notes.txt", "cache cache\n")
        assert retriever.search_files("cache")[0][0] == "cache.txt"

    def test_tie_goes_to_shorter_path(self, index: WorkspaceIndex, retriever: ContextRetriever):
        index.update_file_index("deep/nested/z.txt", "token\n")
        index.update_file_index("y.txt", "token\n")
        assert [p for p, _ in retriever.search_files("token")] == ["y.txt", "deep/nested/z.txt"]

    def test_max_files_limit(self, index: WorkspaceIndex, retriever: ContextRetriever):
        for i in range(5):
            index.update_file_index(f"f{i}.txt", "token\n")
        assert len(retriever.search_files("token", max_files=2)) == 2

    def test_symbol_results_are_capped(self, index: WorkspaceIndex, retriever: ContextRetriever):
        content = "".join(f"def handler_{i}():\n    pass\n" for i in range(30))
        index.update_file_index("h.py", content)
        assert len(retriever.search_symbols("handler")) == 20


class TestRelevantLines:
    def _retriever(self) -> ContextRetriever:
        return ContextRetriever.__new__(ContextRetriever)

    def test_includes_context_around_matches(self):
        content = "\n".join(f"line {i}" for i in range(1, 11)).replace("line 5", "the foo line")
        lines = self._retriever().get_relevant_lines(content, "foo", 100)
        assert [l.number for l in lines] == [3, 4, 5, 6, 7]
        assert [l.number for l in lines if l.is_match] == [5]

    def test_overlapping_windows_flag_every_match(self):
        content = "foo\nbar\nfoo\n"
        lines = self._retriever().get_relevant_lines(content, "foo", 100)
        assert [l.number for l in lines if l.is_match] == [1, 3]

    def test_no_match_returns_head_of_file(self):
        content = "\n".join(f"line {i}" for i in range(1, 21))
        lines = self._retriever().get_relevant_lines(content, "absent", 10)
        assert [l.number for l in lines] == [1, 2, 3, 4, 5]
        assert not any(l.is_match for l in lines)

    def test_max_lines(self):
        content = "\n".join("foo" for _ in range(50))
        assert len(self._retriever().get_relevant_lines(content, "foo", 7)) == 7

    def test_single_line_budget_keeps_the_match(self):
        lines = self._retriever().get_relevant_lines("a\nb\nfoo\nd\ne", "foo", 1)
        assert [(l.number, l.content, l.is_match) for l in lines] == [(3, "foo", True)]

    def test_matches_win_over_context(self):
        content = "x\nfoo\ny\nz\nfoo\nw"
        lines = self._retriever().get_relevant_lines(content, "foo", 3)
        assert [l.number for l in lines if l.is_match] == [2, 5]
        assert len(lines) == 3


class TestOverallRelevance:
    def test_empty(self):
        assert ContextRetriever.calculate_overall_relevance([], []) == 0

    def test_combines_file_mean_and_symbol_bonus(self):
        files = [ContextFile("a", relevance_score=4), ContextFile("b", relevance_score=2)]
        symbols = [SymbolMatch("foo", "a", 1, "function")]
        assert ContextRetriever.calculate_overall_relevance(files, symbols) == pytest.approx(0.38)

    def test_capped_at_one(self):
        files = [ContextFile("a", relevance_score=50)]
        assert ContextRetriever.calculate_overall_relevance(files, []) == 1.0

    def test_symbols_only(self):
        symbols = [SymbolMatch("foo", "a", 1, "function")]
        assert ContextRetriever.calculate_overall_relevance([], symbols) == pytest.approx(0.08)


class TestContextResultFormatting:
    def _result(self) -> ContextResult:
        return ContextResult(
            query="foo",
            files=[ContextFile("a.js", relevance_score=6)],
            symbols=[SymbolMatch("foo", "a.js", 1, "function")],
            relevance_score=0.68,
            total_files=3,
        )

    def test_to_json(self):
        parsed = json.loads(self._result().to_json())
        assert parsed["query"] == "foo"
        assert parsed["files"][0]["path"] == "a.js"

    def test_to_text(self):
        text = self._result().to_text()
        assert "a.js" in text
        assert "foo (function) a.js:1" in text

    def test_to_text_empty(self):
        assert "No relevant context" in ContextResult(query="x").to_text()

    def test_to_prompt(self):
        prompt = self._result().to_prompt()
        assert "### a.js" in prompt
        assert "`foo` (function) at a.js:1" in prompt
