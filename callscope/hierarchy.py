# callscope/hierarchy.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterator, List, Literal, Optional

from .positions import CallSite
from .service import CallableItem, CallRelation, LineAndCharacter, SymbolResolver

__all__ = [
    "Direction",
    "HierarchyNode",
    "NodeNotFoundError",
    "CallHierarchyBuilder",
    "build_outgoing",
    "build_incoming",
    "iter_nodes",
    "find_node",
    "copy_tree",
    "count_nodes",
]

logger = logging.getLogger(__name__)

Direction = Literal["outgoing", "incoming"]

ROOT_ID = 0


@dataclass
class HierarchyNode:
    """
    One node of a call hierarchy tree.

    - id                : unique within one tree; 0 is the synthetic call-site root
    - range             : 1-based line of the declaration start
    - selection_range   : 1-based line of the declaration name
    - has_further_calls : the resolver reported calls for this node, whether or
                          not they are currently present in `children`
    - truncated         : expansion stopped early (depth bound or exhausted
                          call stack), so `children` is incomplete
    """

    id: int
    file: Path
    name: str
    kind: str
    range: LineAndCharacter
    selection_range: LineAndCharacter
    kind_modifiers: str = ""
    container_name: Optional[str] = None
    children: List["HierarchyNode"] = field(default_factory=list)
    has_further_calls: bool = False
    truncated: bool = False

    @property
    def line(self) -> int:
        return self.selection_range.line


class NodeNotFoundError(LookupError):
    """Raised when a node id is not part of a tree."""


def iter_nodes(tree: HierarchyNode) -> Iterator[HierarchyNode]:
    """Pre-order walk with an explicit stack; children keep their order."""
    stack = [tree]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def find_node(tree: HierarchyNode, node_id: int, where: str = "tree") -> HierarchyNode:
    for node in iter_nodes(tree):
        if node.id == node_id:
            return node
    raise NodeNotFoundError(f"node id {node_id} was not found in {where}")


def count_nodes(tree: HierarchyNode) -> int:
    return sum(1 for _ in iter_nodes(tree))


def copy_tree(tree: HierarchyNode, depth: Optional[int] = None) -> HierarchyNode:
    """
    Copy `tree` without recursion.

    With `depth`, only that many levels below the root are copied
    (`depth=0` copies the node alone).
    """
    root = replace(tree, children=[])
    stack = [(tree, root, 0)]
    while stack:
        src, dst, level = stack.pop()
        if depth is not None and level >= depth:
            continue
        for child in src.children:
            clone = replace(child, children=[])
            dst.children.append(clone)
            stack.append((child, clone, level + 1))
    return root


def _describe_site(site: CallSite) -> str:
    return f"{site.file_name}:{site.real_position.line}:{site.real_position.character} ({site.called_function})"


def _describe_item(item: Optional[CallableItem]) -> str:
    if item is None:
        return "<none>"
    name = f"{item.container_name}.{item.name}" if item.container_name else item.name
    return f"{name} [{item.kind}] in {item.file}@{item.selection_start}"


class CallHierarchyBuilder:
    """
    Builds the tree of calls reachable from (or reaching) one call site.

    Expansion is depth-first and does no cycle detection: a recursive chain is
    followed until `max_depth` is reached or, without a bound, until the
    interpreter's recursion limit is hit. In the latter case the nodes built
    so far are kept and the cut nodes are marked `truncated`.
    """

    def __init__(
        self,
        resolver: SymbolResolver,
        call_site: CallSite,
        max_depth: Optional[int] = None,
    ) -> None:
        if max_depth is not None and max_depth < 1:
            raise ValueError(f"max_depth must be >= 1, got {max_depth}")
        self.resolver = resolver
        self.call_site = call_site
        self.max_depth = max_depth
        self._next_id = 1
        self._exhausted = False
        self._current: Optional[CallableItem] = None

    def build_outgoing(self) -> Optional[HierarchyNode]:
        return self._build("outgoing")

    def build_incoming(self) -> Optional[HierarchyNode]:
        return self._build("incoming")

    def build(self, direction: Direction) -> Optional[HierarchyNode]:
        return self._build(direction)

    # --- internals ---------------------------------------------------------

    def _prepare(self) -> Optional[CallableItem]:
        site = self.call_site
        try:
            items = self.resolver.prepare(site.file_name, site.real_position.pos)
        except Exception:
            logger.exception("Could not resolve call site %s", _describe_site(site))
            return None

        if not items:
            logger.info("No callable declaration found for %s", _describe_site(site))
            return None
        if len(items) > 1:
            # Typically an implementation plus its stub declaration.
            logger.info(
                "%d candidate declarations for %s, using %s",
                len(items),
                _describe_site(site),
                _describe_item(items[0]),
            )
        return items[0]

    def _build(self, direction: Direction) -> Optional[HierarchyNode]:
        item = self._prepare()
        if item is None:
            return None

        self._next_id = 1
        self._exhausted = False
        self._current = None
        try:
            subtree = self._visit(item, direction, depth=1)
        except RecursionError:
            logger.warning(
                "Call stack exhausted before %s could be expanded",
                _describe_site(self.call_site),
            )
            return None
        except Exception:
            logger.exception(
                "Abandoned %s call hierarchy of %s while expanding %s",
                direction,
                _describe_site(self.call_site),
                _describe_item(self._current),
            )
            return None

        if self._exhausted:
            logger.warning(
                "%s call hierarchy of %s truncated after %d node(s): call stack exhausted",
                direction.capitalize(),
                _describe_site(self.call_site),
                self._next_id - 1,
            )
        return self._wrap(subtree)

    def _expand(self, item: CallableItem, direction: Direction) -> List[CallRelation]:
        if direction == "outgoing":
            return self.resolver.expand_outgoing(item)
        return self.resolver.expand_incoming(item)

    def _to_node(self, item: CallableItem) -> HierarchyNode:
        node_id = self._next_id
        self._next_id += 1
        start = self.resolver.line_and_column_of(item.file, item.span_start)
        selection = self.resolver.line_and_column_of(item.file, item.selection_start)
        return HierarchyNode(
            id=node_id,
            file=item.file,
            name=item.name,
            kind=item.kind,
            kind_modifiers=item.kind_modifiers,
            container_name=item.container_name,
            range=LineAndCharacter(start.line + 1, start.character),
            selection_range=LineAndCharacter(selection.line + 1, selection.character),
        )

    def _visit(self, item: CallableItem, direction: Direction, depth: int) -> HierarchyNode:
        self._current = item
        node = self._to_node(item)
        relations = self._expand(item, direction)
        node.has_further_calls = bool(relations)

        if self.max_depth is not None and depth >= self.max_depth:
            node.truncated = node.has_further_calls
            return node

        for relation in relations:
            if self._exhausted:
                node.truncated = True
                break
            try:
                child = self._visit(relation.item, direction, depth + 1)
            except RecursionError:
                # The interrupted child is dropped; every ancestor stops here too.
                self._exhausted = True
                node.truncated = True
                break
            node.children.append(child)
        return node

    def _wrap(self, subtree: HierarchyNode) -> HierarchyNode:
        site = self.call_site
        position = LineAndCharacter(site.real_position.line, site.real_position.character)
        return HierarchyNode(
            id=ROOT_ID,
            file=site.file_name,
            name=site.called_function,
            kind=subtree.kind,
            kind_modifiers=subtree.kind_modifiers,
            container_name=site.container_name,
            range=position,
            selection_range=position,
            children=[subtree],
            has_further_calls=True,
        )


def build_outgoing(
    resolver: SymbolResolver,
    call_site: CallSite,
    max_depth: Optional[int] = None,
) -> Optional[HierarchyNode]:
    return CallHierarchyBuilder(resolver, call_site, max_depth=max_depth).build_outgoing()


def build_incoming(
    resolver: SymbolResolver,
    call_site: CallSite,
    max_depth: Optional[int] = None,
) -> Optional[HierarchyNode]:
    return CallHierarchyBuilder(resolver, call_site, max_depth=max_depth).build_incoming()
