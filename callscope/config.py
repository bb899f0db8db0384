# callscope/config.py
from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .hierarchy import Direction
from .renderer import OUTPUT_FORMATS
from .resolver import ResolverConfig, iter_python_files

__all__ = [
    "ConfigError",
    "Options",
    "DEFAULT_PORT",
    "strip_json_comments",
    "load_config_file",
    "flatten_settings",
    "collect_entry_files",
    "make_options",
]

DEFAULT_PORT = 7878


class ConfigError(ValueError):
    """Invalid or missing configuration; raised before any processing starts."""


@dataclass
class Options:
    """
    Validated run options.

    entry:
        Python files whose call sites seed the trees.
    root_dir:
        Project root; it is indexed by the resolver and used for labels.
    out_dir / format:
        Where batch mode writes `<file>#<name>:<line>.dot` and the rendered image.
    declaration:
        Also draw declaration-only callables.
    line:
        Only call sites on this (1-based) line seed trees.
    direction:
        "outgoing" (callees) or "incoming" (callers).
    max_depth:
        Optional bound on expansion depth.
    serve / host / port:
        Interactive mode instead of batch file output.
    jobs:
        Worker threads for batch mode (None lets the executor decide).
    """

    entry: List[Path]
    root_dir: Path
    out_dir: Path = field(default_factory=lambda: Path.cwd() / "output" / "call-graph")
    format: str = "svg"
    declaration: bool = False
    verbose: bool = False
    line: Optional[int] = None
    direction: Direction = "outgoing"
    max_depth: Optional[int] = None
    serve: bool = False
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    jobs: Optional[int] = None


_SETTING_NAMES = {f.name for f in fields(Options)}


def strip_json_comments(text: str) -> str:
    """
    Remove `// line` and `/* block */` comments from JSON text.

    Comment markers inside strings are kept. A line comment stops before its
    newline, so line numbers of the remaining text are preserved.
    """
    out: List[str] = []
    i, n = 0, len(text)
    while i < n:
        if text[i] == '"':
            j = i + 1
            while j < n and text[j] != '"':
                j += 2 if text[j] == "\\" else 1
            out.append(text[i : j + 1])
            i = j + 1
            continue
        if text.startswith("//", i):
            newline = text.find("\n", i)
            i = n if newline < 0 else newline
            continue
        if text.startswith("/*", i):
            close = text.find("*/", i + 2)
            if close < 0:
                raise ConfigError("unclosed block comment")
            i = close + 2
            continue
        out.append(text[i])
        i += 1
    return "".join(out)


# Settings of the nested `callGraph` section and camelCase spellings used by
# existing config files.
_NESTED_SECTION = "callGraph"
_CAMEL_CASE_NAMES = {"rootDir": "root_dir", "outDir": "out_dir", "maxDepth": "max_depth"}


def flatten_settings(data: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Lift the options of a `callGraph` section to the top level and rename
    camelCase keys, so both config layouts reach `make_options` alike.
    """
    nested = data.get(_NESTED_SECTION, {})
    if not isinstance(nested, dict):
        raise ConfigError(f"{_NESTED_SECTION} must be a JSON object")

    settings: Dict[str, Any] = {}
    items = [(k, v) for k, v in data.items() if k != _NESTED_SECTION]
    for key, value in items + list(nested.items()):
        name = _CAMEL_CASE_NAMES.get(key, key)
        if name in settings:
            raise ConfigError(f"setting {name} is given more than once")
        settings[name] = value
    return settings


def load_config_file(path: Path) -> Dict[str, Any]:
    """Read a JSON config file that may contain comments."""
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"config file not found: {path}")
    if path.suffix != ".json":
        raise ConfigError(f"unsupported config file extension (must be .json): {path}")
    try:
        data = json.loads(strip_json_comments(path.read_text(encoding="utf-8")))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"malformed config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"config file must contain a JSON object: {path}")
    return flatten_settings(data)


def collect_entry_files(entry: Path) -> List[Path]:
    """All `.py` files under a directory entry, or the entry file itself."""
    if entry.is_dir():
        return list(iter_python_files(entry, ResolverConfig(include_stubs=False)))
    return [entry]


def _optional_int(name: str, value: Any, minimum: int) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _flag(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{name} must be true or false, got {value!r}")
    return value


def make_options(settings: Mapping[str, Any]) -> Options:
    """
    Validate raw settings (config file merged with command-line flags) and
    turn them into `Options`.

    Raises `ConfigError` for anything invalid.
    """
    unknown = sorted(set(settings) - _SETTING_NAMES)
    if unknown:
        raise ConfigError(f"unknown setting(s): {', '.join(unknown)}")

    raw_entry = settings.get("entry")
    if not raw_entry:
        raise ConfigError("an entry path is required")
    entry = Path(raw_entry).resolve()
    if not entry.exists():
        raise ConfigError(f"entry path does not exist: {raw_entry}")
    if entry.is_file() and entry.suffix != ".py":
        raise ConfigError(f"entry file must be a .py file: {raw_entry}")

    raw_root = settings.get("root_dir")
    if raw_root is None:
        root_dir = entry if entry.is_dir() else entry.parent
    else:
        root_dir = Path(raw_root).resolve()
    if not root_dir.is_dir():
        raise ConfigError(f"root directory does not exist: {root_dir}")
    if entry != root_dir and root_dir not in entry.parents:
        raise ConfigError(f"entry {entry} is not inside root directory {root_dir}")

    fmt = settings.get("format") or "svg"
    if fmt not in OUTPUT_FORMATS:
        raise ConfigError(
            f"unsupported output format {fmt!r}; choose one of {', '.join(OUTPUT_FORMATS)}"
        )

    direction = settings.get("direction") or "outgoing"
    if direction not in ("outgoing", "incoming"):
        raise ConfigError(f"direction must be 'outgoing' or 'incoming', got {direction!r}")

    port = _optional_int("port", settings.get("port", DEFAULT_PORT), 0)
    if port is None or port > 65535:
        raise ConfigError(f"port must be between 0 and 65535, got {port!r}")

    options = Options(
        entry=collect_entry_files(entry),
        root_dir=root_dir,
        format=fmt,
        declaration=_flag("declaration", settings.get("declaration", False)),
        verbose=_flag("verbose", settings.get("verbose", False)),
        line=_optional_int("line", settings.get("line"), 1),
        direction=direction,
        max_depth=_optional_int("max_depth", settings.get("max_depth"), 1),
        serve=_flag("serve", settings.get("serve", False)),
        host=str(settings.get("host") or "127.0.0.1"),
        port=port,
        jobs=_optional_int("jobs", settings.get("jobs"), 1),
    )
    if settings.get("out_dir"):
        options.out_dir = Path(settings["out_dir"]).resolve()
    return options
