# callscope/pipeline.py
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .config import Options
from .graph import GraphConfig, relative_label
from .hierarchy import CallHierarchyBuilder, HierarchyNode
from .positions import CallSite, collect_call_sites
from .renderer import render, write_graph
from .service import ProjectSymbolResolver, SymbolResolver

logger = logging.getLogger(__name__)


def graph_config(options: Options) -> GraphConfig:
    return GraphConfig(
        root_dir=options.root_dir,
        declaration=options.declaration,
        direction=options.direction,
    )


def output_base(call_site: CallSite, options: Options) -> Path:
    """`<out_dir>/<relative file>#<called function>:<line>` (no extension)."""
    rel = relative_label(call_site.file_name, options.root_dir)
    return options.out_dir / f"{rel}#{call_site.called_function}:{call_site.real_position.line}"


def build_tree(
    resolver: SymbolResolver,
    options: Options,
    call_site: CallSite,
) -> Optional[HierarchyNode]:
    builder = CallHierarchyBuilder(resolver, call_site, max_depth=options.max_depth)
    return builder.build(options.direction)


def build_trees(
    resolver: SymbolResolver,
    call_sites: Sequence[CallSite],
    options: Options,
) -> List[Tuple[CallSite, HierarchyNode]]:
    """
    Build one tree per call site concurrently.

    Call sites whose tree could not be built are left out; they never affect
    the others.
    """
    with ThreadPoolExecutor(max_workers=options.jobs) as executor:
        trees = list(executor.map(partial(build_tree, resolver, options), call_sites))
    return [(site, tree) for site, tree in zip(call_sites, trees) if tree is not None]


def _process(resolver: SymbolResolver, options: Options, call_site: CallSite) -> Optional[Path]:
    tree = build_tree(resolver, options, call_site)
    if tree is None:
        return None
    dot = render(tree, graph_config(options))
    if not dot:
        logger.info(
            "No drawable calls for %s:%d (%s), nothing written",
            call_site.file_name,
            call_site.real_position.line,
            call_site.called_function,
        )
        return None
    return write_graph(dot, output_base(call_site, options), options.format)


def load_call_sites(options: Options) -> List[CallSite]:
    return collect_call_sites(options.entry, line=options.line)


def run_batch(options: Options, resolver: Optional[SymbolResolver] = None) -> List[Path]:
    """
    Build, render and write one graph per call site.

    Work for different call sites runs concurrently; results are collected
    before returning. Returns the written image paths.
    """
    if resolver is None:
        resolver = ProjectSymbolResolver.from_root(options.root_dir)

    call_sites = load_call_sites(options)
    if not call_sites:
        logger.warning("No call sites found in %d file(s)", len(options.entry))
        return []

    with ThreadPoolExecutor(max_workers=options.jobs) as executor:
        written = list(executor.map(partial(_process, resolver, options), call_sites))
    return [path for path in written if path is not None]
