# callscope/cli.py
from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict

from .config import ConfigError, Options, load_config_file, make_options
from .pipeline import build_trees, graph_config, load_call_sites, run_batch
from .renderer import OUTPUT_FORMATS
from .service import ProjectSymbolResolver


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="callscope",
        description=(
            "Draw the call hierarchy reachable from every call site of a Python "
            "project, as image files or as an interactive, expandable view."
        ),
    )
    parser.add_argument(
        "entry",
        nargs="?",
        help="Python file or directory whose call sites seed the graphs.",
    )
    parser.add_argument(
        "--root",
        dest="root_dir",
        help="Project root to index (default: the entry directory, or the entry file's directory).",
    )
    parser.add_argument(
        "--config",
        help=(
            "JSON config file (comments allowed), flat or with a nested \"callGraph\" "
            "section. Command-line flags override its values."
        ),
    )

    # Output options
    parser.add_argument(
        "-o",
        "--out-dir",
        dest="out_dir",
        help="Directory for .dot files and images (default: ./output/call-graph).",
    )
    parser.add_argument(
        "-T",
        "--format",
        choices=OUTPUT_FORMATS,
        help="Image format rendered by Graphviz (default: svg).",
    )

    # Graph options
    parser.add_argument(
        "--declaration",
        action="store_true",
        default=None,
        help="Include declaration-only callables (.pyi stubs, @overload).",
    )
    parser.add_argument(
        "--line",
        type=int,
        help="Only use call sites on this line as entry points.",
    )
    parser.add_argument(
        "--incoming",
        action="store_const",
        const="incoming",
        dest="direction",
        help="Follow callers instead of callees.",
    )
    parser.add_argument(
        "--max-depth",
        dest="max_depth",
        type=int,
        help="Stop expanding below this depth (default: no bound besides the interpreter's recursion limit).",
    )

    # Mode options
    parser.add_argument(
        "--serve",
        action="store_true",
        default=None,
        help="Serve interactive graphs over HTTP instead of writing files.",
    )
    parser.add_argument("--host", help="Host for --serve (default: 127.0.0.1).")
    parser.add_argument("--port", type=int, help="Port for --serve (default: 7878).")
    parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        help="Worker threads used to build graphs (default: chosen by Python).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=None,
        help="Log resolution details (ambiguous or unresolved call sites).",
    )
    return parser


def _settings(args: argparse.Namespace) -> Dict[str, Any]:
    settings: Dict[str, Any] = {}
    if args.config:
        settings.update(load_config_file(args.config))
    for key, value in vars(args).items():
        if key == "config" or value is None:
            continue
        settings[key] = value
    return settings


def _print_summary(options: Options, count: int, noun: str) -> None:
    print(f"Project root: {options.root_dir}")
    print(f"  Entry files : {len(options.entry)}")
    print(f"  Direction   : {options.direction}")
    print(f"  {noun:<12}: {count}")


def main(argv: Any | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        options = make_options(_settings(args))
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=logging.INFO if options.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        resolver = ProjectSymbolResolver.from_root(options.root_dir)
    except SyntaxError as exc:
        print(f"error: cannot parse project: {exc}", file=sys.stderr)
        return 2

    if options.serve:
        from .server import ViewStore, serve

        trees = build_trees(resolver, load_call_sites(options), options)
        if not trees:
            print("No call sites found")
            return 0
        store = ViewStore.from_trees(trees, options.root_dir)
        _print_summary(options, len(store), "Graphs")
        print(f"Serving on http://{options.host}:{options.port}/")
        serve(store, graph_config(options), host=options.host, port=options.port)
        return 0

    written = run_batch(options, resolver=resolver)
    _print_summary(options, len(written), "Images")
    for path in written:
        print(f"    - {path}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
