"""Line-based symbol extraction.

Each language heuristic is a pure function of one line and its line number.
Patterns are loose. A missed declaration only narrows the context and an
extra symbol only widens it.
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import PurePosixPath
from typing import Callable

from noxkit.indexing.models import Symbol

MARKER_RE = re.compile(
    r"(?://|#|/\*|<!--|--|;)\s*(TODO|FIXME|HACK|NOTE):\s*(.+)", re.IGNORECASE
)

JS_FUNCTION_RE = re.compile(r"\bfunction\b\s*\*?\s*(\w+)\s*\(")
JS_BINDING_RE = re.compile(r"^\s*(?:export\s+)?(?:const|let|var)\s+(\w+)\s*=\s*(.*)")
JS_ARROW_RE = re.compile(r"^(?:async\s+)?(?:\([^)]*\)|\w+)\s*=>")
JS_CLASS_RE = re.compile(r"\bclass\s+(\w+)")
JS_METHOD_RE = re.compile(
    r"^\s*(?:async\s+)?(?:static\s+)?(?:get\s+|set\s+)?(\w+)\s*\([^)]*\)\s*\{"
)
JS_IMPORT_RE = re.compile(r"\bimport\s+.*\bfrom\s+['\"]([^'\"]+)['\"]")
JS_KEYWORDS = {"if", "for", "while", "switch", "catch", "with", "return", "function"}

PY_DEF_RE = re.compile(r"^(\s*)(?:async\s+)?def\s+(\w+)\s*\(")
PY_CLASS_RE = re.compile(r"^\s*class\s+(\w+)")
PY_IMPORT_RE = re.compile(r"^\s*(?:from\s+([\w.]+)\s+)?import\s+([\w.]+)")

JAVA_METHOD_RE = re.compile(
    r"^\s*(?:public|private|protected|internal)\s+"
    r"(?:(?:static|final|abstract|synchronized|async|override|virtual|sealed)\s+)*"
    r"[\w<>\[\],.?]+\s+(\w+)\s*\("
)
JAVA_CLASS_RE = re.compile(r"\b(?:class|interface|enum)\s+(\w+)")


def _markers(line: str, line_number: int) -> list[Symbol]:
    match = MARKER_RE.search(line)
    if not match:
        return []
    text = match.group(2).strip()
    for closer in ("*/", "-->"):
        if text.endswith(closer):
            text = text[: -len(closer)].rstrip()
    return [Symbol(name=f"{match.group(1).upper()}: {text}", type="todo", line=line_number)]


def _javascript(line: str, line_number: int) -> list[Symbol]:
    symbols: list[Symbol] = []

    function_match = JS_FUNCTION_RE.search(line)
    if function_match:
        symbols.append(Symbol(function_match.group(1), "function", line_number))
    else:
        binding = JS_BINDING_RE.match(line)
        if binding:
            value = binding.group(2).strip()
            is_function = value.startswith(("function", "async function")) or JS_ARROW_RE.match(value)
            symbols.append(
                Symbol(binding.group(1), "function" if is_function else "variable", line_number)
            )

    class_match = JS_CLASS_RE.search(line)
    if class_match:
        symbols.append(Symbol(class_match.group(1), "class", line_number))

    method_match = JS_METHOD_RE.match(line)
    if (
        method_match
        and "function" not in line
        and "=" not in line
        and method_match.group(1) not in JS_KEYWORDS
    ):
        symbols.append(Symbol(method_match.group(1), "method", line_number))

    import_match = JS_IMPORT_RE.search(line)
    if import_match:
        symbols.append(Symbol(import_match.group(1), "import", line_number))

    return symbols + _markers(line, line_number)


def _python(line: str, line_number: int) -> list[Symbol]:
    symbols: list[Symbol] = []

    def_match = PY_DEF_RE.match(line)
    if def_match:
        kind = "method" if def_match.group(1) else "function"
        symbols.append(Symbol(def_match.group(2), kind, line_number))

    class_match = PY_CLASS_RE.match(line)
    if class_match:
        symbols.append(Symbol(class_match.group(1), "class", line_number))

    import_match = PY_IMPORT_RE.match(line)
    if import_match:
        symbols.append(Symbol(import_match.group(2), "import", line_number))

    return symbols + _markers(line, line_number)


def _java(line: str, line_number: int) -> list[Symbol]:
    symbols: list[Symbol] = []

    method_match = JAVA_METHOD_RE.match(line)
    if method_match:
        symbols.append(Symbol(method_match.group(1), "method", line_number))

    class_match = JAVA_CLASS_RE.search(line)
    if class_match:
        symbols.append(Symbol(class_match.group(1), "class", line_number))

    return symbols + _markers(line, line_number)


class Language(Enum):
    JAVASCRIPT = "javascript"
    PYTHON = "python"
    JAVA = "java"
    GENERIC = "generic"

    @classmethod
    def for_path(cls, path: str) -> Language:
        return EXTENSION_LANGUAGES.get(PurePosixPath(path).suffix.lower(), cls.GENERIC)

    def extract(self, line: str, line_number: int) -> list[Symbol]:
        return _EXTRACTORS[self](line, line_number)


_EXTRACTORS: dict[Language, Callable[[str, int], list[Symbol]]] = {
    Language.JAVASCRIPT: _javascript,
    Language.PYTHON: _python,
    Language.JAVA: _java,
    Language.GENERIC: _markers,
}

EXTENSION_LANGUAGES = {
    ".js": Language.JAVASCRIPT,
    ".jsx": Language.JAVASCRIPT,
    ".mjs": Language.JAVASCRIPT,
    ".cjs": Language.JAVASCRIPT,
    ".ts": Language.JAVASCRIPT,
    ".tsx": Language.JAVASCRIPT,
    ".vue": Language.JAVASCRIPT,
    ".svelte": Language.JAVASCRIPT,
    ".py": Language.PYTHON,
    ".java": Language.JAVA,
    ".cs": Language.JAVA,
    ".kt": Language.JAVA,
    ".scala": Language.JAVA,
}


def extract_symbols(content: str, path: str) -> list[Symbol]:
    """Extract symbols from file content, tagging each with its owning path."""
    language = Language.for_path(path)
    symbols: list[Symbol] = []
    for index, line in enumerate(content.splitlines()):
        for symbol in language.extract(line, index + 1):
            symbol.file = path
            symbols.append(symbol)
    return symbols
