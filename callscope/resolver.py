from __future__ import annotations

import ast
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Literal, Iterable, Tuple, DefaultDict
import os
from collections import defaultdict

from .positions import LineIndex, locate

__all__ = [
    "SourceLocation",
    "SymbolKind",
    "Symbol",
    "Call",
    "ResolvedProject",
    "ResolverConfig",
    "resolve_project",
    "iter_python_files",
    "CALLABLE_KINDS",
    "AMBIENT_MODIFIER",
]

SymbolKind = Literal["function", "method", "local function", "class", "module"]

CALLABLE_KINDS = ("function", "method", "local function")

# Declaration-only: stub files and `@overload` signatures.
AMBIENT_MODIFIER = "declare"

_DECORATOR_MODIFIERS = {
    "overload": AMBIENT_MODIFIER,
    "staticmethod": "static",
    "abstractmethod": "abstract",
}


@dataclass(frozen=True)
class SourceLocation:
    """
    Represents a concrete location in a source file.

    `file` is stored *relative to the project root* to keep the model portable.
    `offset` is the character offset of the called name, when it could be
    located.
    """

    file: Path
    lineno: int
    col_offset: int = 0
    offset: Optional[int] = None


@dataclass
class Symbol:
    """
    A named thing in the project (function, method, local function, class or module).

    `span_start` is the offset of the `def`/`class` keyword and
    `selection_start` the offset of the name token; both are character
    offsets into the file text.
    """

    id: str
    kind: SymbolKind
    name: str
    qualname: str
    module: str
    file: Path  # path *relative* to project root
    start_line: int
    end_line: int
    container: Optional[str] = None
    modifiers: str = ""
    span_start: int = 0
    selection_start: int = 0

    @property
    def is_stub(self) -> bool:
        return self.file.suffix == ".pyi"


@dataclass
class Call:
    """
    Represents a call site in the code.

    - `caller_id`: ID of the calling symbol (a function / method / class / module).
    - `raw_callee`: textual representation from the source (e.g. `f`, `pkg.mod.g`).
    - `callee_id`: best resolved symbol ID, else None.
    - `candidates`: every symbol ID the callee could refer to, best first.
    """

    caller_id: str
    location: SourceLocation
    raw_callee: str
    callee_id: Optional[str] = None
    candidates: List[str] = field(default_factory=list)


@dataclass
class ResolvedProject:
    """
    The output of the resolver: symbols, call sites and the text of every
    indexed file (keyed by project-relative path).
    """

    root: Path
    symbols: Dict[str, Symbol]
    calls: List[Call]
    sources: Dict[Path, str] = field(default_factory=dict)

    def functions(self) -> List[Symbol]:
        """Convenience helper to get only function-like symbols."""
        return [s for s in self.symbols.values() if s.kind in CALLABLE_KINDS]


@dataclass
class ResolverConfig:
    """
    Configuration for the resolver.

    `include_stubs` also indexes `.pyi` files; their symbols are marked as
    declaration-only.
    """

    follow_symlinks: bool = False
    include_stubs: bool = True
    exclude: Sequence[str] = (
        ".git",
        ".hg",
        ".svn",
        "__pycache__",
        ".mypy_cache",
        ".pytest_cache",
        ".venv",
        "venv",
        "env",
    )


def resolve_project(root: Path, config: Optional[ResolverConfig] = None) -> ResolvedProject:
    """
    Resolve a Python project into a `ResolvedProject`.

    1. Walk the directory tree from ``root`` and find all ``.py`` (and
       optionally ``.pyi``) files.
    2. First pass:
       - Parse every file into an AST.
       - Create a *module symbol* per file.
       - Extract functions/methods/classes as `Symbol`s.
    3. Build an index over all symbols.
    4. Second pass (``.py`` files only):
       - Traverse ASTs again and record call sites.
       - Resolve each call to candidate `Symbol.id`s using simple static analysis.

    Raises
    ------
    ValueError
        If ``root`` is not a directory.
    SyntaxError
        If a file cannot be parsed.
    """
    root = root.resolve()
    if config is None:
        config = ResolverConfig()

    if not root.is_dir():
        raise ValueError(f"Project root does not exist or is not a directory: {root}")

    # ------------------------------------------------------------------
    # First pass: collect ASTs + symbols
    # ------------------------------------------------------------------
    symbols: Dict[str, Symbol] = {}
    sources: Dict[Path, str] = {}
    file_infos: List[Tuple[Path, str, LineIndex, ast.AST]] = []

    for path in iter_python_files(root, config):
        rel = path.relative_to(root)
        module = _module_name_from_path(rel)
        source = path.read_text(encoding="utf-8")
        tree = ast.parse(source, filename=str(rel))
        index = LineIndex(source)
        sources[rel] = source

        module_sym = _make_module_symbol(module, rel, index)
        if module_sym.id not in symbols:
            symbols[module_sym.id] = module_sym

        # Later definitions win, so an implementation replaces its `@overload`s.
        for sym in _iter_symbols_from_ast(tree, module=module, rel_path=rel, index=index):
            symbols[sym.id] = sym

        if rel.suffix == ".py":
            file_infos.append((rel, module, index, tree))

    symbol_index = _build_symbol_index(symbols)

    # ------------------------------------------------------------------
    # Second pass: collect calls
    # ------------------------------------------------------------------
    calls: List[Call] = []
    for rel, module, index, tree in file_infos:
        visitor = _CallVisitor(
            module=module,
            rel_path=rel,
            symbol_index=symbol_index,
            index=index,
        )
        visitor.visit(tree)
        calls.extend(visitor.calls)

    return ResolvedProject(root=root, symbols=symbols, calls=calls, sources=sources)


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------

def iter_python_files(root: Path, config: ResolverConfig) -> Iterable[Path]:
    suffixes = (".py", ".pyi") if config.include_stubs else (".py",)
    for dirpath, dirnames, filenames in os.walk(root, followlinks=config.follow_symlinks):
        # mutate dirnames in-place to respect exclude list; sorted for stable ids
        dirnames[:] = sorted(d for d in dirnames if d not in config.exclude)
        for name in sorted(filenames):
            if not name.endswith(suffixes):
                continue
            path = Path(dirpath) / name
            if not config.follow_symlinks and path.is_symlink():
                continue
            yield path


def _module_name_from_path(rel_path: Path) -> str:
    """
    Convert a project-relative path to a dotted module name.

    Example
    -------
    >>> _module_name_from_path(Path("pkg/sub/mod.py"))
    'pkg.sub.mod'
    """
    parts = list(rel_path.with_suffix("").parts)
    return ".".join(parts)


def _symbol_id(qualname: str, rel_path: Path) -> str:
    if rel_path.suffix == ".pyi":
        return f"stub:{qualname}"
    return qualname


def _make_module_symbol(module: str, rel_path: Path, index: LineIndex) -> Symbol:
    """
    Create a `module`-kind symbol that represents the file as a whole.

    This gives module-level call sites a valid `caller_id`.
    """
    name = module.split(".")[-1] if module else ""
    return Symbol(
        id=_symbol_id(module, rel_path),
        kind="module",
        name=name or module,
        qualname=module,
        module=module,
        file=rel_path,
        start_line=1,
        end_line=max(len(index), 1),
        modifiers=AMBIENT_MODIFIER if rel_path.suffix == ".pyi" else "",
    )


def _decorator_name(expr: ast.expr) -> Optional[str]:
    if isinstance(expr, ast.Call):
        expr = expr.func
    if isinstance(expr, ast.Name):
        return expr.id
    if isinstance(expr, ast.Attribute):
        return expr.attr
    return None


def _selection_offset(text: str, span_start: int, keyword: str, name: str) -> int:
    """Offset of the name token following `def` / `class` at `span_start`."""
    kw = text.find(keyword, span_start)
    if kw < 0:
        return span_start
    found = text.find(name, kw + len(keyword))
    return found if found >= 0 else span_start


# ---------------------------------------------------------------------------
# Symbol discovery
# ---------------------------------------------------------------------------

class _SymbolVisitor(ast.NodeVisitor):
    """
    Traverses an AST and records functions / methods / classes as `Symbol`s.
    """

    def __init__(self, module: str, rel_path: Path, index: LineIndex):
        self.module = module
        self.rel_path = rel_path
        self.index = index
        self.symbols: List[Symbol] = []
        self._stack: List[Tuple[str, SymbolKind]] = []

    # --- helpers ---------------------------------------------------------

    def _current_qualname(self, name: str) -> str:
        return ".".join([self.module, *(n for n, _ in self._stack), name])

    def _function_kind(self) -> SymbolKind:
        if not self._stack:
            return "function"
        if self._stack[-1][1] == "class":
            return "method"
        return "local function"

    def _modifiers(self, node: ast.AST) -> str:
        mods: List[str] = []
        if self.rel_path.suffix == ".pyi":
            mods.append(AMBIENT_MODIFIER)
        if isinstance(node, ast.AsyncFunctionDef):
            mods.append("async")
        for dec in getattr(node, "decorator_list", []):
            mod = _DECORATOR_MODIFIERS.get(_decorator_name(dec) or "")
            if mod and mod not in mods:
                mods.append(mod)
        return ",".join(mods)

    def _add_symbol(self, node: ast.AST, kind: SymbolKind, name: str, keyword: str) -> None:
        qualname = self._current_qualname(name)
        start_line = getattr(node, "lineno", 1)
        end_line = getattr(node, "end_lineno", start_line)
        span_start = self.index.offset_of(start_line, getattr(node, "col_offset", 0))
        container = ".".join(n for n, _ in self._stack) or None
        self.symbols.append(
            Symbol(
                id=_symbol_id(qualname, self.rel_path),
                kind=kind,
                name=name,
                qualname=qualname,
                module=self.module,
                file=self.rel_path,
                start_line=start_line,
                end_line=end_line,
                container=container,
                modifiers=self._modifiers(node),
                span_start=span_start,
                selection_start=_selection_offset(self.index.text, span_start, keyword, name),
            )
        )

    def _visit_function(self, node: ast.AST, name: str) -> None:
        kind = self._function_kind()
        self._add_symbol(node, kind=kind, name=name, keyword="def")
        self._stack.append((name, kind))
        self.generic_visit(node)
        self._stack.pop()

    # --- visitors --------------------------------------------------------

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        self._visit_function(node, node.name)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        self._visit_function(node, node.name)

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self._add_symbol(node, kind="class", name=node.name, keyword="class")
        self._stack.append((node.name, "class"))
        self.generic_visit(node)
        self._stack.pop()


def _iter_symbols_from_ast(
    tree: ast.AST,
    module: str,
    rel_path: Path,
    index: LineIndex,
) -> List[Symbol]:
    visitor = _SymbolVisitor(module=module, rel_path=rel_path, index=index)
    visitor.visit(tree)
    return visitor.symbols


# ---------------------------------------------------------------------------
# Call discovery
# ---------------------------------------------------------------------------

class _CallVisitor(ast.NodeVisitor):
    """
    Traverses an AST and records call sites as `Call`s.

    It uses a simple static scheme to map callees to symbol IDs:
    - local functions/methods/classes in the same module
    - imported names via `import` / `from ... import ...`
    - attributes where the base is an imported module/alias
    """

    def __init__(
        self,
        module: str,
        rel_path: Path,
        symbol_index: Dict[Tuple[str, str], List[Symbol]],
        index: LineIndex,
    ) -> None:
        self.module = module
        self.rel_path = rel_path
        self.symbol_index = symbol_index
        self.index = index

        self.calls: List[Call] = []
        self._ctx_stack: List[str] = []  # nested class / function names
        self._import_aliases: Dict[str, str] = {}  # local_name -> fully qualified target

    def _current_caller_id(self) -> str:
        if self._ctx_stack:
            return ".".join([self.module, *self._ctx_stack])
        return self.module  # module-level calls

    # --- import handling -------------------------------------------------

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            if alias.asname:
                local = alias.asname
                target = alias.name
            else:
                # e.g. `import pkg.sub` binds `pkg`
                first = alias.name.split(".", 1)[0]
                local = first
                target = first
            self._import_aliases[local] = target
        self.generic_visit(node)

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        module = node.module or ""
        for alias in node.names:
            local = alias.asname or alias.name
            target = f"{module}.{alias.name}" if module else alias.name
            self._import_aliases[local] = target
        self.generic_visit(node)

    # --- definition nesting ---------------------------------------------

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        self._ctx_stack.append(node.name)
        self.generic_visit(node)
        self._ctx_stack.pop()

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        self._ctx_stack.append(node.name)
        self.generic_visit(node)
        self._ctx_stack.pop()

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self._ctx_stack.append(node.name)
        self.generic_visit(node)
        self._ctx_stack.pop()

    # --- call sites ------------------------------------------------------

    def visit_Call(self, node: ast.Call) -> None:
        located = locate(node, self.index)
        location = SourceLocation(
            file=self.rel_path,
            lineno=getattr(node, "lineno", 1),
            col_offset=getattr(node, "col_offset", 0),
            offset=located.real_position.pos if located is not None else None,
        )

        raw = _format_callee_expr(node.func, import_aliases=self._import_aliases)
        if raw is None:
            raw = "<unknown>"

        candidates = _resolve_callee_candidates(
            raw_callee=raw,
            current_module=self.module,
            symbol_index=self.symbol_index,
        )

        self.calls.append(
            Call(
                caller_id=self._current_caller_id(),
                location=location,
                raw_callee=raw,
                callee_id=candidates[0] if candidates else None,
                candidates=candidates,
            )
        )

        self.generic_visit(node)


def _build_symbol_index(symbols: Dict[str, Symbol]) -> Dict[Tuple[str, str], List[Symbol]]:
    """
    Build an index for call resolution:
    (module, name) -> [Symbol, ...]
    """
    index: DefaultDict[Tuple[str, str], List[Symbol]] = defaultdict(list)
    for sym in symbols.values():
        if sym.kind not in (*CALLABLE_KINDS, "class"):
            continue
        index[(sym.module, sym.name)].append(sym)
    return dict(index)


def _format_callee_expr(
    expr: ast.AST,
    import_aliases: Dict[str, str],
) -> Optional[str]:
    """
    Turn the `func` part of a Call into a dotted string, using import/alias info.

    Examples:
        f           -> "f"
        foo         -> "pkg.mod.f"  (if `foo` imported as that function)
        m.g         -> "pkg.m.g"    (if `m` is an alias for `pkg.m`)
        pkg.mod.f   -> "pkg.mod.f"

    Returns None if the expression is too dynamic to represent.
    """
    if isinstance(expr, ast.Name):
        return import_aliases.get(expr.id, expr.id)

    if isinstance(expr, ast.Attribute):
        base = _format_callee_expr(expr.value, import_aliases=import_aliases)
        if base is None:
            return None
        return f"{base}.{expr.attr}"

    # More dynamic / complex call target (e.g., indexing, lambda, etc.)
    return None


def _resolve_callee_candidates(
    raw_callee: str,
    current_module: str,
    symbol_index: Dict[Tuple[str, str], List[Symbol]],
) -> List[str]:
    """
    Heuristically resolve a raw callee name to candidate Symbol IDs.

    Strategy:
    1. If it's a dotted path "pkg.mod.f", interpret module="pkg.mod", name="f".
    2. Otherwise, treat it as a bare name and look in the current module.
    3. As a last resort, if every symbol with that name across all modules
       shares one qualified name (a module and its stub), use those.
    """
    if raw_callee == "<unknown>":
        return []

    module: Optional[str] = None
    name: str

    if "." in raw_callee:
        module, name = raw_callee.rsplit(".", 1)
        candidates = symbol_index.get((module, name))
        if candidates:
            return [s.id for s in _rank_symbols(candidates)]
    else:
        name = raw_callee
        candidates = symbol_index.get((current_module, name))
        if candidates:
            return [s.id for s in _rank_symbols(candidates)]

    global_matches: List[Symbol] = []
    for (mod, n), syms in symbol_index.items():
        if n == name:
            global_matches.extend(syms)

    if len({s.qualname for s in global_matches}) == 1:
        return [s.id for s in _rank_symbols(global_matches)]

    return []


def _rank_symbols(candidates: List[Symbol]) -> List[Symbol]:
    """
    Order symbols sharing a (module, name) from best to worst.

    Function-like symbols come before classes and implementations come
    before stubs; otherwise source order is kept.
    """
    return sorted(
        candidates,
        key=lambda s: (s.kind not in CALLABLE_KINDS, s.is_stub),
    )
