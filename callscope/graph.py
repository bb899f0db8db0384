from __future__ import annotations

import sysconfig
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Literal, Optional, Tuple

from .hierarchy import ROOT_ID, Direction, HierarchyNode
from .resolver import AMBIENT_MODIFIER, CALLABLE_KINDS


ClusterCategory = Literal["stdlib", "third_party", "project"]
NodeState = Literal["leaf", "expandable", "expanded", "truncated"]

_THIRD_PARTY_DIRS = ("site-packages", "dist-packages")


@dataclass
class GraphNode:
    """
    A node in the rendered graph.

    Several tree nodes that stand for the same declaration (same file, name
    and line) are merged into one `GraphNode`; the first one visited supplies
    `tree_id` and `state`. When the call-site root shares its key with the
    declaration it calls, the declaration supplies the label.

    - id        : DOT identifier, "<relative file>:<name>:<line>"
    - label     : "<container>.<name>:<line>"
    - tree_id   : `HierarchyNode.id` used for interactive links
    - state     : "expandable" (has calls, none shown), "expanded", "leaf", or
                  "truncated" (has calls, none were built)
    - truncated : expansion of the tree node was cut short
    """

    id: str
    label: str
    file: Path
    tree_id: int
    state: NodeState = "leaf"
    truncated: bool = False


@dataclass
class GraphEdge:
    """A directed caller -> callee edge between two `GraphNode` ids."""

    src: str
    dst: str


@dataclass
class Cluster:
    """All drawn nodes that belong to one source file."""

    file: Path
    label: str
    category: ClusterCategory
    node_ids: List[str] = field(default_factory=list)


@dataclass
class CallGraph:
    """
    Graph model derived from one `HierarchyNode` tree.

    The `graph` module does not know about DOT syntax; it focuses on:
    - selecting which tree nodes are drawn
    - merging tree nodes that represent the same declaration
    - grouping nodes into per-file clusters
    """

    nodes: Dict[str, GraphNode]
    edges: Dict[Tuple[str, str], GraphEdge]
    clusters: Dict[Path, Cluster]

    def iter_edges(self) -> List[GraphEdge]:
        return list(self.edges.values())


@dataclass
class GraphConfig:
    """
    Configuration controlling how a tree is turned into a `CallGraph`.

    Parameters
    ----------
    root_dir:
        Files are labelled relative to this directory.
    declaration:
        Also draw declaration-only callables (stubs, `@overload`).
    direction:
        "outgoing" trees point parent -> child; "incoming" trees are drawn
        child -> parent so arrows always go from caller to callee.
    """

    root_dir: Optional[Path] = None
    declaration: bool = False
    direction: Direction = "outgoing"


def is_output_target(node: HierarchyNode, declaration: bool = False) -> bool:
    """Whether `node` is drawn: a function-like callable, stubs only on request."""
    if node.kind not in CALLABLE_KINDS:
        return False
    if not node.kind_modifiers:
        return True
    modifiers = node.kind_modifiers.split(",")
    return declaration or AMBIENT_MODIFIER not in modifiers


def _stdlib_dirs() -> Tuple[Path, ...]:
    paths = sysconfig.get_paths()
    return tuple(Path(paths[key]) for key in ("stdlib", "platstdlib") if key in paths)


def classify_file(file: Path) -> ClusterCategory:
    """
    Standard library, third-party dependency or project file.

    Checked in that order; the first match wins.
    """
    file = Path(file)
    parts = file.parts
    posix = file.as_posix()
    in_packages = any(p in _THIRD_PARTY_DIRS for p in parts)

    if not in_packages:
        if "typeshed/stdlib" in posix:
            return "stdlib"
        for stdlib in _stdlib_dirs():
            if stdlib in file.parents:
                return "stdlib"
    if in_packages or "typeshed/stubs" in posix:
        return "third_party"
    return "project"


def relative_label(file: Path, root_dir: Optional[Path]) -> str:
    file = Path(file)
    if root_dir is not None:
        try:
            return file.relative_to(root_dir).as_posix()
        except ValueError:
            pass
    return file.as_posix()


def node_label(node: HierarchyNode) -> str:
    name = f"{node.container_name}.{node.name}" if node.container_name else node.name
    return f"{name}:{node.line}"


def node_id(node: HierarchyNode, root_dir: Optional[Path]) -> str:
    return f"{relative_label(node.file, root_dir)}:{node.name}:{node.line}"


def node_state(node: HierarchyNode) -> NodeState:
    if node.children:
        return "expanded"
    if node.truncated:
        # calls exist but none were built, so there is nothing to expand
        return "truncated"
    if node.has_further_calls:
        return "expandable"
    return "leaf"


def build_call_graph(tree: HierarchyNode, config: Optional[GraphConfig] = None) -> CallGraph:
    """
    Build a `CallGraph` from a hierarchy tree.

    The walk is an iterative depth-first search with children pushed in
    reverse, so siblings keep their left-to-right order. An edge is added
    whenever the *child* is drawn, whether or not its parent is.

    This function is deterministic and pure: it does not read the filesystem
    and does not mutate the tree.
    """
    if config is None:
        config = GraphConfig()

    nodes: Dict[str, GraphNode] = {}
    edges: Dict[Tuple[str, str], GraphEdge] = {}
    clusters: Dict[Path, Cluster] = {}

    stack: List[HierarchyNode] = [tree]
    while stack:
        parent = stack.pop()
        parent_id = node_id(parent, config.root_dir)

        existing = nodes.get(parent_id)
        if existing is not None and existing.tree_id == ROOT_ID and parent.id != ROOT_ID:
            # a call on its callee's declaration line: name the node after the declaration
            existing.label = node_label(parent)
        elif is_output_target(parent, config.declaration) and existing is None:
            nodes[parent_id] = GraphNode(
                id=parent_id,
                label=node_label(parent),
                file=parent.file,
                tree_id=parent.id,
                state=node_state(parent),
                truncated=parent.truncated,
            )
            cluster = clusters.get(parent.file)
            if cluster is None:
                cluster = Cluster(
                    file=parent.file,
                    label=relative_label(parent.file, config.root_dir),
                    category=classify_file(parent.file),
                )
                clusters[parent.file] = cluster
            cluster.node_ids.append(parent_id)

        for child in parent.children:
            if not is_output_target(child, config.declaration):
                continue
            child_id = node_id(child, config.root_dir)
            if config.direction == "incoming":
                key = (child_id, parent_id)
            else:
                key = (parent_id, child_id)
            if key not in edges:
                edges[key] = GraphEdge(src=key[0], dst=key[1])

        stack.extend(reversed(parent.children))

    return CallGraph(nodes=nodes, edges=edges, clusters=clusters)
