from .positions import (
    Position,
    CallSite,
    LineIndex,
    locate,
    extract_call_sites,
    collect_call_sites,
)

from .resolver import (
    SourceLocation,
    SymbolKind,
    Symbol,
    Call,
    ResolvedProject,
    ResolverConfig,
    resolve_project,
)

from .service import (
    LineAndCharacter,
    CallableItem,
    CallRelation,
    SymbolResolver,
    ProjectSymbolResolver,
)

from .hierarchy import (
    HierarchyNode,
    NodeNotFoundError,
    CallHierarchyBuilder,
    build_outgoing,
    build_incoming,
)

from .graph import (
    GraphConfig,
    GraphNode,
    GraphEdge,
    CallGraph,
    build_call_graph,
)

from .renderer import RendererConfig, build_dot, render, write_graph

__all__ = [
    "Position",
    "CallSite",
    "LineIndex",
    "locate",
    "extract_call_sites",
    "collect_call_sites",
    "SourceLocation",
    "SymbolKind",
    "Symbol",
    "Call",
    "ResolvedProject",
    "ResolverConfig",
    "resolve_project",
    "LineAndCharacter",
    "CallableItem",
    "CallRelation",
    "SymbolResolver",
    "ProjectSymbolResolver",
    "HierarchyNode",
    "NodeNotFoundError",
    "CallHierarchyBuilder",
    "build_outgoing",
    "build_incoming",
    "GraphConfig",
    "GraphNode",
    "GraphEdge",
    "CallGraph",
    "build_call_graph",
    "RendererConfig",
    "build_dot",
    "render",
    "write_graph",
]

__version__ = "0.1.0"
