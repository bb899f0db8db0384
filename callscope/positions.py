# callscope/positions.py
from __future__ import annotations

import ast
import logging
import re
from bisect import bisect_right
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

__all__ = [
    "Position",
    "CallSite",
    "Located",
    "LineIndex",
    "locate",
    "extract_call_sites",
    "collect_call_sites",
]

logger = logging.getLogger(__name__)

_NEWLINE = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True)
class Position:
    """
    A location inside one source text.

    - `line`      : 1-based line number
    - `character` : 0-based column, counted in characters
    - `pos`/`end` : character offsets into the source text
    """

    line: int
    character: int
    pos: int
    end: int


@dataclass(frozen=True)
class CallSite:
    """
    One textual invocation of a function or method.

    `original_position` is the full span of the callee reference, which may
    start before the name itself (for `obj.<comment>name` it starts right after
    `obj`). `real_position` points at the name token and is what lookups use.
    `container_name` is the dotted name of the enclosing class/function, or
    None for module-level calls.
    """

    file_name: Path
    called_function: str
    original_position: Position
    real_position: Position
    container_name: Optional[str] = None


@dataclass(frozen=True)
class Located:
    called_function: str
    original_position: Position
    real_position: Position


class LineIndex:
    """
    Offset <-> (line, character) conversion for one source text.

    Lines and characters returned by `line_and_character` are 0-based.
    """

    def __init__(self, text: str) -> None:
        self.text = text
        self._line_starts: List[int] = [0]
        for match in _NEWLINE.finditer(text):
            self._line_starts.append(match.end())

    def __len__(self) -> int:
        return len(self._line_starts)

    def line_and_character(self, offset: int) -> Tuple[int, int]:
        offset = max(0, min(offset, len(self.text)))
        line = bisect_right(self._line_starts, offset) - 1
        return line, offset - self._line_starts[line]

    def offset_of(self, lineno: int, col_offset: int) -> int:
        """
        Convert an `ast` location (1-based line, UTF-8 byte column) into a
        character offset.
        """
        index = min(max(lineno, 1), len(self._line_starts)) - 1
        start = self._line_starts[index]
        if index + 1 < len(self._line_starts):
            line_text = self.text[start : self._line_starts[index + 1]]
        else:
            line_text = self.text[start:]
        prefix = line_text.encode("utf-8")[:col_offset].decode("utf-8", errors="ignore")
        return start + len(prefix)

    def position(self, offset: int, end: int) -> Position:
        line, character = self.line_and_character(offset)
        return Position(line=line + 1, character=character, pos=offset, end=end)


def _callee_span(target: ast.expr, index: LineIndex) -> Optional[Tuple[str, int, int]]:
    if isinstance(target, ast.Name):
        start = index.offset_of(target.lineno, target.col_offset)
        end = index.offset_of(target.end_lineno, target.end_col_offset)
        return target.id, start, end

    if isinstance(target, ast.Attribute):
        # Everything between the receiver and the end of the attribute: the
        # dot, line breaks and any comments in between.
        receiver = target.value
        start = index.offset_of(receiver.end_lineno, receiver.end_col_offset)
        end = index.offset_of(target.end_lineno, target.end_col_offset)
        return target.attr, start, end

    # Subscripts, call results, lambdas, ...
    return None


def locate(call: ast.Call, index: LineIndex) -> Optional[Located]:
    """
    Find the name token invoked by `call`.

    Returns None when the call target is not a plain name or a member access.
    The name is searched from the right of the callee span, so a copy of the
    name inside a comment before the token is never picked.
    """
    span = _callee_span(call.func, index)
    if span is None:
        return None

    name, start, end = span
    found = index.text[start:end].rfind(name)
    if found < 0:
        return None

    real = start + found
    return Located(
        called_function=name,
        original_position=index.position(start, end),
        real_position=index.position(real, end),
    )


class _CallSiteVisitor(ast.NodeVisitor):
    """Collects `CallSite`s in source order."""

    def __init__(self, path: Path, index: LineIndex, line: Optional[int]) -> None:
        self.path = path
        self.index = index
        self.line = line
        self.call_sites: List[CallSite] = []
        self._ctx_stack: List[str] = []

    def _nested(self, node: ast.AST, name: str) -> None:
        self._ctx_stack.append(name)
        self.generic_visit(node)
        self._ctx_stack.pop()

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        self._nested(node, node.name)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        self._nested(node, node.name)

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self._nested(node, node.name)

    def visit_Call(self, node: ast.Call) -> None:
        located = locate(node, self.index)
        if located is not None and (self.line is None or located.real_position.line == self.line):
            self.call_sites.append(
                CallSite(
                    file_name=self.path,
                    called_function=located.called_function,
                    original_position=located.original_position,
                    real_position=located.real_position,
                    container_name=".".join(self._ctx_stack) or None,
                )
            )
        self.generic_visit(node)


def extract_call_sites(path: Path, text: str, line: Optional[int] = None) -> List[CallSite]:
    """
    Parse `text` and return every call site whose target can be located.

    When `line` is given only call sites whose real line equals it are kept.
    """
    tree = ast.parse(text, filename=str(path))
    visitor = _CallSiteVisitor(path, LineIndex(text), line)
    visitor.visit(tree)
    return visitor.call_sites


def collect_call_sites(paths: Iterable[Path], line: Optional[int] = None) -> List[CallSite]:
    """Collect call sites from entry files, skipping `.pyi` declaration files."""
    call_sites: List[CallSite] = []
    for path in paths:
        if path.suffix == ".pyi":
            continue
        text = path.read_text(encoding="utf-8")
        found = extract_call_sites(path, text, line=line)
        logger.info("%s: %d call site(s)", path, len(found))
        call_sites.extend(found)
    return call_sites
