# callscope/server.py
"""
Interactive call graph viewer.

Every call-site tree is served at its own path. A request with `?id=N`
collapses node N when it shows children, or expands it by exactly one level
(taken from the untouched original tree) when it does not. `?file=PATH`
shows a highlighted copy of a project file.
"""
from __future__ import annotations

import html
import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from string import Template
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import TextLexer, get_lexer_for_filename
from pygments.util import ClassNotFound

from .graph import GraphConfig, relative_label
from .hierarchy import HierarchyNode, NodeNotFoundError, copy_tree, find_node
from .positions import CallSite
from .renderer import RendererConfig, build_dot, render

__all__ = [
    "ViewSession",
    "ViewStore",
    "base_url_path",
    "create_app",
    "serve",
]

logger = logging.getLogger(__name__)


def base_url_path(call_site: CallSite, root_dir: Optional[Path]) -> str:
    """`/<relative file>/<called function>:<line>` (not percent-encoded)."""
    rel = relative_label(call_site.file_name, root_dir)
    return f"/{rel}/{call_site.called_function}:{call_site.real_position.line}"


def _collapsed_copy(node: HierarchyNode) -> HierarchyNode:
    clone = copy_tree(node, depth=0)
    if node.children:
        clone.truncated = False
    return clone


def _parse_node_id(raw: Optional[str]) -> Optional[int]:
    """`?id=` values that are not integers are ignored."""
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.debug("Ignoring non-numeric node id %r", raw)
        return None


@dataclass
class ViewSession:
    """
    The served state of one tree.

    `original` is never modified. `current` is the working copy changed by
    `toggle`; access to it is serialised by the session's own lock.
    """

    key: str
    original: HierarchyNode
    current: Optional[HierarchyNode] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self) -> None:
        if self.current is None:
            self.current = copy_tree(self.original)

    def toggle(self, node_id: int) -> HierarchyNode:
        """
        Collapse `node_id` if it shows children, else restore its immediate
        children from the original tree (their own children cleared).

        A truncated node whose partial children are hidden is shown as
        expandable rather than truncated, so it can be opened again.

        Raises `NodeNotFoundError` if the id belongs to neither tree.
        """
        with self.lock:
            target = find_node(self.current, node_id, "the current tree")
            source = find_node(self.original, node_id, "the original tree")
            if target.children:
                target.children = []
                target.truncated = False
            else:
                target.children = [_collapsed_copy(child) for child in source.children]
                target.truncated = source.truncated
            return self.current

    def dot_views(self, graph_config: GraphConfig, use_original: bool = False) -> Tuple[str, str]:
        """DOT for the browser (styled, with links) and for download (plain)."""
        with self.lock:
            tree = self.original if use_original else self.current
            browser = render(
                tree,
                graph_config,
                RendererConfig(interactive=True, base_url=quote(self.key)),
            )
            download = build_dot(tree, graph_config, RendererConfig())
        return browser, download


class ViewStore:
    """Sessions keyed by URL path; they live as long as the process."""

    def __init__(self) -> None:
        self._sessions: Dict[str, ViewSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def add(self, key: str, tree: HierarchyNode) -> ViewSession:
        existing = self._sessions.get(key)
        if existing is not None:
            logger.info("Duplicate call-site path %s, keeping the first tree", key)
            return existing
        session = ViewSession(key=key, original=tree)
        self._sessions[key] = session
        return session

    def get(self, key: str) -> Optional[ViewSession]:
        return self._sessions.get(key)

    def keys(self) -> List[str]:
        return list(self._sessions)

    @classmethod
    def from_trees(
        cls,
        trees: Iterable[Tuple[CallSite, HierarchyNode]],
        root_dir: Optional[Path],
    ) -> "ViewStore":
        store = cls()
        for call_site, tree in trees:
            store.add(base_url_path(call_site, root_dir), tree)
        return store


_INDEX_PAGE = Template(
    """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <meta name="color-scheme" content="light dark">
  <title>Call Sites</title>
  <style>a { font-size: 1.5rem; }</style>
</head>
<body>
  <ul>
$items
  </ul>
</body>
</html>
"""
)

_GRAPH_PAGE = Template(
    """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Call Graph</title>
  <style>
  .download { display: flex; justify-content: flex-end; }
  .button { font-size: 1.5rem; }
  </style>
</head>
<body>
  <div class="download"><button class="button">Download</button></div>
  <div id="graph"></div>
</body>
<script type="module">
  import { Graphviz } from "https://cdn.jsdelivr.net/npm/@hpcc-js/wasm/dist/graphviz.js";

  const graphviz = await Graphviz.load();
  const dotForBrowser = $dot_browser;
  const dotForDownload = $dot_download;

  const div = document.getElementById("graph");
  if (div) {
    div.innerHTML = graphviz.layout(dotForBrowser, "svg", "dot");
  }

  const button = document.querySelector(".button");
  if (button) {
    button.addEventListener("click", () => {
      const a = document.createElement("a");
      const blob = new Blob([graphviz.layout(dotForDownload, "svg", "dot")], {type: "image/svg+xml"});
      a.download = $download_name;
      a.href = URL.createObjectURL(blob);
      a.click();
      URL.revokeObjectURL(a.href);
    });
  }
</script>
</html>
"""
)


def _js_string(text: str) -> str:
    return json.dumps(text).replace("</", "<\\/")


def index_page(keys: Iterable[str]) -> str:
    items = "\n".join(
        f'    <li><a href="{html.escape(quote(key))}">{html.escape(key)}</a></li>' for key in keys
    )
    return _INDEX_PAGE.substitute(items=items)


def graph_page(key: str, dot_browser: str, dot_download: str) -> str:
    download_name = key.strip("/").replace("/", "_") + ".svg"
    return _GRAPH_PAGE.substitute(
        dot_browser=_js_string(dot_browser),
        dot_download=_js_string(dot_download),
        download_name=_js_string(download_name),
    )


def source_page(file: Path) -> str:
    try:
        lexer = get_lexer_for_filename(file.name, stripnl=False)
    except ClassNotFound:
        lexer = TextLexer(stripnl=False)
    formatter = HtmlFormatter(full=True, linenos="table", title=str(file))
    return highlight(file.read_text(encoding="utf-8"), lexer, formatter)


def create_app(store: ViewStore, graph_config: GraphConfig) -> FastAPI:
    """
    HTTP surface of the viewer.

    - `/`                 : index of every call-site path
    - `/<call site>`      : the original tree
    - `/<call site>?id=N` : toggle node N in the working copy and show it
    - `/<call site>?file=PATH` : highlighted source of a file under the root
    - anything else       : redirect to `/`
    """
    app = FastAPI(title="callscope", description="Interactive call hierarchy graphs.")
    root_dir = graph_config.root_dir.resolve() if graph_config.root_dir else None

    @app.exception_handler(NodeNotFoundError)
    async def node_not_found(request: Request, exc: NodeNotFoundError) -> PlainTextResponse:
        logger.error("%s (request: %s)", exc, request.url)
        return PlainTextResponse(str(exc), status_code=500)

    @app.get("/", response_class=HTMLResponse)
    def index() -> HTMLResponse:
        return HTMLResponse(index_page(store.keys()))

    @app.get("/{path:path}")
    def view(
        path: str,
        raw_id: Optional[str] = Query(None, alias="id"),
        file: Optional[str] = None,
    ):
        session = store.get("/" + path)
        if session is None:
            return RedirectResponse("/", status_code=302)

        node_id = _parse_node_id(raw_id)
        if node_id is not None:
            session.toggle(node_id)
            browser, download = session.dot_views(graph_config)
            return HTMLResponse(graph_page(session.key, browser, download))

        if file:
            target = Path(file).resolve()
            if not target.is_file() or (root_dir is not None and root_dir not in target.parents):
                raise HTTPException(status_code=404, detail=f"{file} not found")
            return HTMLResponse(source_page(target))

        browser, download = session.dot_views(graph_config, use_original=True)
        return HTMLResponse(graph_page(session.key, browser, download))

    @app.api_route("/{path:path}", methods=["POST", "PUT", "PATCH", "DELETE"])
    def other_methods(path: str) -> RedirectResponse:
        return RedirectResponse("/", status_code=302)

    return app


def serve(store: ViewStore, graph_config: GraphConfig, host: str = "127.0.0.1", port: int = 7878) -> None:  # pragma: no cover
    """Run the viewer with uvicorn until interrupted."""
    import uvicorn

    app = create_app(store, graph_config)
    logger.info("Serving %d call graph(s) at http://%s:%d/", len(store), host, port)
    uvicorn.run(app, host=host, port=port)
