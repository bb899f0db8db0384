# callscope/service.py
"""
Symbol resolution boundary used by the call hierarchy builder.

`SymbolResolver` is the small surface the engine needs: resolve a position to
callable declarations, list the calls going out of / coming into a callable,
and give access to source text and line numbers. `ProjectSymbolResolver`
implements it on top of `resolve_project`.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import DefaultDict, Dict, List, Optional, Protocol, Tuple

from .positions import LineIndex
from .resolver import Call, ResolvedProject, ResolverConfig, Symbol, resolve_project

__all__ = [
    "LineAndCharacter",
    "CallableItem",
    "CallRelation",
    "SymbolResolver",
    "ProjectSymbolResolver",
]


@dataclass(frozen=True)
class LineAndCharacter:
    line: int
    character: int


@dataclass(frozen=True)
class CallableItem:
    """
    A callable declaration as reported by the resolver.

    `file` is absolute. `span_start` / `selection_start` are character offsets
    of the declaration and of its name token.
    """

    file: Path
    name: str
    kind: str
    kind_modifiers: str = ""
    container_name: Optional[str] = None
    span_start: int = 0
    selection_start: int = 0


@dataclass(frozen=True)
class CallRelation:
    """A related callable plus the offsets of the calls linking the two."""

    item: CallableItem
    offsets: Tuple[int, ...] = ()


class SymbolResolver(Protocol):
    def prepare(self, file: Path, offset: int) -> List[CallableItem]:
        ...

    def expand_outgoing(self, item: CallableItem) -> List[CallRelation]:
        ...

    def expand_incoming(self, item: CallableItem) -> List[CallRelation]:
        ...

    def source_text_of(self, file: Path) -> str:
        ...

    def line_and_column_of(self, file: Path, offset: int) -> LineAndCharacter:
        ...


class ProjectSymbolResolver:
    """
    `SymbolResolver` backed by a `ResolvedProject`.

    All lookup tables are built up front; afterwards the object is read-only
    and can be shared between threads.
    """

    def __init__(self, project: ResolvedProject) -> None:
        self.project = project
        self._by_selection: Dict[Tuple[Path, int], Symbol] = {
            (sym.file, sym.selection_start): sym for sym in project.symbols.values()
        }

        calls_at: DefaultDict[Tuple[Path, int], List[Call]] = defaultdict(list)
        outgoing: DefaultDict[str, List[Call]] = defaultdict(list)
        incoming: DefaultDict[str, List[Call]] = defaultdict(list)
        for call in project.calls:
            if call.location.offset is not None:
                calls_at[(call.location.file, call.location.offset)].append(call)
            if call.callee_id is not None:
                outgoing[call.caller_id].append(call)
                incoming[call.callee_id].append(call)
        self._calls_at = dict(calls_at)
        self._outgoing = dict(outgoing)
        self._incoming = dict(incoming)

        self._line_indexes: Dict[Path, LineIndex] = {
            rel: LineIndex(text) for rel, text in project.sources.items()
        }

    @classmethod
    def from_root(cls, root: Path, config: Optional[ResolverConfig] = None) -> "ProjectSymbolResolver":
        return cls(resolve_project(root, config))

    # --- helpers ---------------------------------------------------------

    def _relative(self, file: Path) -> Path:
        file = Path(file)
        if not file.is_absolute():
            return file
        try:
            return file.resolve().relative_to(self.project.root)
        except ValueError:
            raise FileNotFoundError(f"{file} is outside of {self.project.root}") from None

    def _to_item(self, sym: Symbol) -> CallableItem:
        return CallableItem(
            file=self.project.root / sym.file,
            name=sym.name,
            kind=sym.kind,
            kind_modifiers=sym.modifiers,
            container_name=sym.container,
            span_start=sym.span_start,
            selection_start=sym.selection_start,
        )

    def _symbol_for(self, item: CallableItem) -> Symbol:
        key = (self._relative(item.file), item.selection_start)
        sym = self._by_selection.get(key)
        if sym is None:
            raise LookupError(f"no symbol declared at {item.file}:{item.selection_start}")
        return sym

    def _group(self, calls: List[Call], key_of) -> List[CallRelation]:
        order: List[str] = []
        offsets: Dict[str, List[int]] = {}
        for call in calls:
            key = key_of(call)
            if key not in offsets:
                order.append(key)
                offsets[key] = []
            if call.location.offset is not None:
                offsets[key].append(call.location.offset)

        relations: List[CallRelation] = []
        for key in order:
            sym = self.project.symbols.get(key)
            if sym is None:
                continue
            relations.append(CallRelation(item=self._to_item(sym), offsets=tuple(offsets[key])))
        return relations

    # --- SymbolResolver ----------------------------------------------------

    def prepare(self, file: Path, offset: int) -> List[CallableItem]:
        """
        Resolve the token at `offset` to callable declarations.

        A call-site token yields every candidate the callee may refer to
        (best first); a declaration name token yields that declaration.
        """
        rel = self._relative(file)
        calls = self._calls_at.get((rel, offset))
        if calls:
            return [
                self._to_item(self.project.symbols[sym_id])
                for sym_id in calls[0].candidates
                if sym_id in self.project.symbols
            ]
        sym = self._by_selection.get((rel, offset))
        if sym is not None:
            return [self._to_item(sym)]
        return []

    def expand_outgoing(self, item: CallableItem) -> List[CallRelation]:
        sym = self._symbol_for(item)
        return self._group(self._outgoing.get(sym.id, []), lambda c: c.callee_id)

    def expand_incoming(self, item: CallableItem) -> List[CallRelation]:
        sym = self._symbol_for(item)
        return self._group(self._incoming.get(sym.id, []), lambda c: c.caller_id)

    def source_text_of(self, file: Path) -> str:
        rel = self._relative(file)
        try:
            return self.project.sources[rel]
        except KeyError:
            raise FileNotFoundError(f"{file} was not indexed") from None

    def line_and_column_of(self, file: Path, offset: int) -> LineAndCharacter:
        rel = self._relative(file)
        index = self._line_indexes.get(rel)
        if index is None:
            raise FileNotFoundError(f"{file} was not indexed")
        line, character = index.line_and_character(offset)
        return LineAndCharacter(line=line, character=character)
