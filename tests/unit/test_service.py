from pathlib import Path

import pytest

from callscope.positions import extract_call_sites
from callscope.service import CallableItem, LineAndCharacter, ProjectSymbolResolver

SOURCE = "def inner():\n    return 1\n\ndef outer():\n    return inner()\n\nouter()\n"


def _project(tmp_path: Path):
    root = tmp_path.resolve()
    mod = root / "mod.py"
    mod.write_text(SOURCE, encoding="utf-8")
    resolver = ProjectSymbolResolver.from_root(root)
    sites = {s.called_function: s for s in extract_call_sites(mod, SOURCE)}
    return root, mod, resolver, sites


def test_prepare_call_site_returns_callee(tmp_path: Path) -> None:
    root, mod, resolver, sites = _project(tmp_path)

    (item,) = resolver.prepare(mod, sites["outer"].real_position.pos)

    assert item.name == "outer"
    assert item.kind == "function"
    assert item.file == mod
    assert SOURCE[item.span_start :].startswith("def outer")
    assert SOURCE[item.selection_start :].startswith("outer():")


def test_prepare_declaration_token_returns_declaration(tmp_path: Path) -> None:
    root, mod, resolver, sites = _project(tmp_path)

    (item,) = resolver.prepare(mod, SOURCE.index("inner"))

    assert item.name == "inner"


def test_prepare_elsewhere_returns_nothing(tmp_path: Path) -> None:
    root, mod, resolver, sites = _project(tmp_path)

    assert resolver.prepare(mod, SOURCE.index("return 1")) == []


def test_expand_outgoing_and_incoming(tmp_path: Path) -> None:
    root, mod, resolver, sites = _project(tmp_path)
    (outer,) = resolver.prepare(mod, sites["outer"].real_position.pos)
    (inner,) = resolver.prepare(mod, sites["inner"].real_position.pos)

    (callee,) = resolver.expand_outgoing(outer)
    assert callee.item == inner
    assert callee.offsets == (sites["inner"].real_position.pos,)
    assert resolver.expand_outgoing(inner) == []

    (caller,) = resolver.expand_incoming(inner)
    assert caller.item == outer

    # the module-level call makes the module the caller of `outer`
    (module_caller,) = resolver.expand_incoming(outer)
    assert module_caller.item.kind == "module"
    assert module_caller.item.name == "mod"


def test_relations_are_grouped_per_callee(tmp_path: Path) -> None:
    root = tmp_path.resolve()
    source = "def leaf():\n    pass\n\ndef twice():\n    leaf()\n    leaf()\n"
    (root / "m.py").write_text(source, encoding="utf-8")
    resolver = ProjectSymbolResolver.from_root(root)
    (twice,) = resolver.prepare(root / "m.py", source.index("twice"))

    (relation,) = resolver.expand_outgoing(twice)

    assert relation.item.name == "leaf"
    assert len(relation.offsets) == 2


def test_source_text_and_line_and_column(tmp_path: Path) -> None:
    root, mod, resolver, sites = _project(tmp_path)

    assert resolver.source_text_of(mod) == SOURCE
    assert resolver.line_and_column_of(mod, SOURCE.rindex("outer()")) == LineAndCharacter(6, 0)
    assert resolver.line_and_column_of(mod, SOURCE.index("inner()\n")) == LineAndCharacter(4, 11)
    assert resolver.line_and_column_of(Path("mod.py"), 0) == LineAndCharacter(0, 0)


def test_unknown_files_and_items_raise(tmp_path: Path) -> None:
    root, mod, resolver, sites = _project(tmp_path)
    outside = tmp_path.parent / "elsewhere.py"

    with pytest.raises(FileNotFoundError):
        resolver.prepare(outside, 0)
    with pytest.raises(FileNotFoundError):
        resolver.source_text_of(root / "missing.py")
    with pytest.raises(LookupError):
        resolver.expand_outgoing(CallableItem(file=mod, name="ghost", kind="function", selection_start=3))
