# callscope/renderer.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

from .hierarchy import HierarchyNode
from .graph import CallGraph, Cluster, GraphConfig, GraphNode, build_call_graph

# Formats accepted for rendered images (a subset of `graphviz.FORMATS`).
OUTPUT_FORMATS = (
    "jpg",
    "jpeg",
    "jpe",
    "jp2",
    "pdf",
    "png",
    "ps",
    "ps2",
    "psd",
    "sgi",
    "svg",
    "svgz",
    "webp",
)

_CLUSTER_COLORS = {
    "stdlib": "#adedad",
    "third_party": "#e6ecfa",
}


@dataclass
class RendererConfig:
    """
    Controls how a `CallGraph` is rendered into a DOT graph.

    interactive:
        If True, nodes are styled by expand/collapse state and carry links
        (`<base_url>?id=<tree id>`) for the HTTP view; cluster links open the
        file through `<base_url>?file=<path>`.
    base_url:
        Path of the interactive view for this tree.
    expandable_fill / expanded_style:
        Node styling for collapsed nodes with calls and for expanded nodes.
        Truncated nodes are dashed in both modes and never link to a toggle
        unless they show children.
    """

    interactive: bool = False
    base_url: str = ""
    expandable_fill: str = "#ffe4b5"
    expanded_style: str = "bold"


def _escape_label(text: str) -> str:
    """
    Escape a label string for use in DOT.

    - backslashes and quotes are escaped
    - newlines become `\\l` (Graphviz left-justified line break)
    """
    text = text.replace("\\", "\\\\").replace('"', '\\"')
    text = text.replace("\n", "\\l")
    return text


def _sanitize_id(s: str) -> str:
    """
    Sanitize an identifier for use in DOT.

    Since we always quote IDs, this only needs to escape quotes.
    """
    return s.replace("\\", "\\\\").replace('"', '\\"')


def _node_attributes(node: GraphNode, cfg: RendererConfig) -> List[str]:
    attrs = ['shape="oval"', f'label="{_escape_label(node.label)}"']
    if cfg.interactive:
        if node.state == "expandable":
            attrs.append(f'style="filled", fillcolor="{cfg.expandable_fill}"')
        elif node.state == "expanded":
            style = f"{cfg.expanded_style},dashed" if node.truncated else cfg.expanded_style
            attrs.append(f'style="{style}"')
        elif node.state == "truncated":
            attrs.append('style="dashed"')
        # only nodes a toggle can change get a link
        if node.state in ("expandable", "expanded"):
            attrs.append(f'href="{_escape_label(cfg.base_url)}?id={node.tree_id}"')
    elif node.truncated:
        attrs.append('style="dashed"')
    return attrs


def _cluster_lines(cluster: Cluster, graph: CallGraph, cfg: RendererConfig) -> List[str]:
    lines = [f'  subgraph "cluster_{_sanitize_id(str(cluster.file))}" {{']
    lines.append(f'    label="{_escape_label(cluster.label)}";')
    if cfg.interactive:
        href = f"{cfg.base_url}?file={quote(str(cluster.file))}"
    else:
        href = str(cluster.file)
    lines.append(f'    href="{_escape_label(href)}";')
    color = _CLUSTER_COLORS.get(cluster.category)
    if color:
        lines.append(f'    bgcolor="{color}";')
    for node_id in cluster.node_ids:
        node = graph.nodes[node_id]
        attrs = ", ".join(_node_attributes(node, cfg))
        lines.append(f'    "{_sanitize_id(node.id)}" [{attrs}];')
    lines.append("  }")
    return lines


def graph_to_dot(graph: CallGraph, renderer_config: Optional[RendererConfig] = None) -> str:
    """Serialize a `CallGraph` as DOT text."""
    cfg = renderer_config or RendererConfig()

    lines: List[str] = []
    lines.append("digraph CallGraph {")
    lines.append('  graph [charset="UTF-8", rankdir=LR, compound=true];')
    lines.append('  node [fontname="Menlo,Consolas,monospace"];')

    for cluster in graph.clusters.values():
        lines.extend(_cluster_lines(cluster, graph, cfg))

    for edge in graph.iter_edges():
        lines.append(f'  "{_sanitize_id(edge.src)}" -> "{_sanitize_id(edge.dst)}";')

    lines.append("}")
    return "\n".join(lines)


def build_dot(
    tree: HierarchyNode,
    graph_config: Optional[GraphConfig] = None,
    renderer_config: Optional[RendererConfig] = None,
) -> str:
    """
    Build a Graphviz DOT string from a hierarchy tree.

    This is a pure function: it does not touch the filesystem or run Graphviz.
    """
    call_graph = build_call_graph(tree, graph_config)
    return graph_to_dot(call_graph, renderer_config)


def render(
    tree: HierarchyNode,
    graph_config: Optional[GraphConfig] = None,
    renderer_config: Optional[RendererConfig] = None,
) -> str:
    """
    Like `build_dot`, but returns "" in batch mode when no edge survives
    filtering, so nothing is written for that call site. The interactive view
    always gets a graph, even an edge-less one.
    """
    cfg = renderer_config or RendererConfig()
    call_graph = build_call_graph(tree, graph_config)
    if not call_graph.edges and not cfg.interactive:
        return ""
    return graph_to_dot(call_graph, cfg)


def write_image(dot: str, output: Path, fmt: str = "svg") -> None:  # pragma: no cover
    """
    Render a DOT string to an image file using the `graphviz` package.

    This requires the Graphviz `dot` binary to be installed on the system.
    """
    from graphviz import Source

    src = Source(dot)
    output.write_bytes(src.pipe(format=fmt))


def write_graph(dot: str, output_base: Path, fmt: str = "svg") -> Path:
    """
    Write `<output_base>.dot` and render `<output_base>.<fmt>` next to it.

    Returns the image path.
    """
    if fmt not in OUTPUT_FORMATS:
        raise ValueError(f"Unsupported output format: {fmt}")
    output_base.parent.mkdir(parents=True, exist_ok=True)
    Path(f"{output_base}.dot").write_text(dot, encoding="utf-8")
    image = Path(f"{output_base}.{fmt}")
    write_image(dot, image, fmt)
    return image
