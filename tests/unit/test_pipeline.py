from pathlib import Path

from callscope.config import make_options
from callscope.pipeline import build_trees, load_call_sites, output_base, run_batch
from callscope.service import ProjectSymbolResolver

SOURCE = "def inner():\n    return 1\n\ndef outer():\n    return inner()\n\nouter()\nprint('done')\n"


def _options(tmp_path: Path, **extra):
    root = tmp_path.resolve() / "proj"
    root.mkdir()
    (root / "mod.py").write_text(SOURCE, encoding="utf-8")
    settings = {"entry": str(root / "mod.py"), "out_dir": str(tmp_path / "out")}
    settings.update(extra)
    return make_options(settings)


def _fake_images(monkeypatch):
    written = []

    def fake_write_image(dot: str, output: Path, fmt: str = "svg") -> None:
        written.append(output)
        output.write_text(dot, encoding="utf-8")

    monkeypatch.setattr("callscope.renderer.write_image", fake_write_image)
    return written


def test_output_base_names_file_function_and_line(tmp_path: Path) -> None:
    options = _options(tmp_path)
    site = load_call_sites(options)[1]

    assert output_base(site, options) == options.out_dir / "mod.py#outer:7"


def test_build_trees_skips_unresolved_call_sites(tmp_path: Path) -> None:
    options = _options(tmp_path)
    resolver = ProjectSymbolResolver.from_root(options.root_dir)
    sites = load_call_sites(options)

    trees = build_trees(resolver, sites, options)

    # `print` is not declared in the project
    assert [site.called_function for site, _ in trees] == ["inner", "outer"]
    assert all(tree.id == 0 for _, tree in trees)


def test_run_batch_writes_one_graph_per_call_site(tmp_path: Path, monkeypatch) -> None:
    images = _fake_images(monkeypatch)
    options = _options(tmp_path, jobs=2)

    written = run_batch(options)

    out = options.out_dir
    assert sorted(written) == [out / "mod.py#inner:5.svg", out / "mod.py#outer:7.svg"]
    assert sorted(images) == sorted(written)
    dot = (out / "mod.py#outer:7.dot").read_text(encoding="utf-8")
    assert '"mod.py:outer:4" -> "mod.py:inner:1";' in dot


def test_run_batch_line_filter_and_format(tmp_path: Path, monkeypatch) -> None:
    _fake_images(monkeypatch)
    options = _options(tmp_path, line=5, format="png")

    written = run_batch(options)

    assert written == [options.out_dir / "mod.py#inner:5.png"]


def test_run_batch_incoming(tmp_path: Path, monkeypatch) -> None:
    _fake_images(monkeypatch)
    options = _options(tmp_path, line=5, direction="incoming")

    (image,) = run_batch(options)

    dot = image.with_suffix(".dot").read_text(encoding="utf-8")
    assert '"mod.py:outer:4" -> "mod.py:inner:1";' in dot
    assert '"mod.py:inner:1" -> "mod.py:inner:5";' in dot


def test_run_batch_without_call_sites(tmp_path: Path, monkeypatch) -> None:
    images = _fake_images(monkeypatch)
    options = _options(tmp_path, line=2)

    assert run_batch(options) == []
    assert images == []


def test_run_batch_skips_graphs_without_edges(tmp_path: Path, monkeypatch) -> None:
    images = _fake_images(monkeypatch)
    root = tmp_path.resolve() / "proj"
    root.mkdir()
    (root / "ext.pyi").write_text("def api() -> int: ...\n", encoding="utf-8")
    (root / "main.py").write_text("from ext import api\napi()\n", encoding="utf-8")
    settings = {"entry": str(root / "main.py"), "out_dir": str(tmp_path / "out")}

    assert run_batch(make_options(settings)) == []
    assert images == []

    settings["declaration"] = True
    (image,) = run_batch(make_options(settings))
    assert image.name == "main.py#api:2.svg"
