from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from callscope.graph import GraphConfig
from callscope.hierarchy import CallHierarchyBuilder, HierarchyNode, count_nodes, find_node, iter_nodes
from callscope.positions import CallSite, Position
from callscope.server import ViewStore, base_url_path, create_app
from callscope.service import CallableItem, CallRelation, LineAndCharacter

KEY = "/a.py/main:30"


def _node(node_id, name, line, children=(), file=None):
    pos = LineAndCharacter(line, 0)
    return HierarchyNode(
        id=node_id,
        file=file,
        name=name,
        kind="function",
        range=pos,
        selection_range=pos,
        children=list(children),
        has_further_calls=bool(children),
    )


class TestViewer:
    @pytest.fixture(autouse=True)
    def viewer(self, tmp_path: Path):
        self.root = tmp_path / "proj"
        self.root.mkdir()
        self.file = self.root / "a.py"
        self.file.write_text("def main():\n    return helper()\n", encoding="utf-8")
        f = self.file
        # main -> helper -> leaf
        leaf = _node(3, "leaf", 9, file=f)
        helper = _node(2, "helper", 5, [leaf], file=f)
        tree = _node(0, "main", 30, [_node(1, "main", 1, [helper], file=f)], file=f)
        self.store = ViewStore()
        self.session = self.store.add(KEY, tree)
        self.client = TestClient(create_app(self.store, GraphConfig(root_dir=self.root)))

    def test_index_lists_call_sites(self):
        response = self.client.get("/")
        assert response.status_code == 200
        assert KEY in response.text

    def test_view_shows_original_tree(self):
        response = self.client.get(KEY)
        assert response.status_code == 200
        assert "digraph CallGraph" in response.text
        assert "?id=2" in response.text
        assert "@hpcc-js/wasm" in response.text

    def test_toggle_collapses_then_restores_one_level(self):
        assert self.client.get(KEY, params={"id": 1}).status_code == 200
        assert find_node(self.session.current, 1).children == []

        response = self.client.get(KEY, params={"id": 1})
        assert response.status_code == 200
        (helper,) = find_node(self.session.current, 1).children
        assert helper.id == 2
        # only one level comes back
        assert helper.children == []
        # the original tree is never modified
        assert count_nodes(self.session.original) == 4

        self.client.get(KEY, params={"id": 2})
        assert [c.id for c in find_node(self.session.current, 2).children] == [3]

    def test_collapsed_node_is_drawn_expandable(self):
        response = self.client.get(KEY, params={"id": 2})
        assert "#ffe4b5" in response.text

    def test_non_numeric_node_id_shows_the_original_tree(self):
        self.client.get(KEY, params={"id": 1})

        response = self.client.get(KEY, params={"id": "abc"})

        assert response.status_code == 200
        assert "digraph CallGraph" in response.text
        # the working copy is left alone
        assert find_node(self.session.current, 1).children == []

    def test_repeated_views_of_an_unchanged_tree_are_identical(self):
        config = GraphConfig(root_dir=self.root)
        ids = [n.id for n in iter_nodes(self.session.current)]

        assert self.session.dot_views(config) == self.session.dot_views(config)
        assert [n.id for n in iter_nodes(self.session.current)] == ids
        assert self.client.get(KEY).text == self.client.get(KEY).text

    def test_unknown_node_id_is_a_server_error(self):
        response = self.client.get(KEY, params={"id": 99})
        assert response.status_code == 500
        assert "99" in response.text

    def test_hidden_node_id_is_a_server_error(self):
        self.client.get(KEY, params={"id": 1})
        assert self.client.get(KEY, params={"id": 3}).status_code == 500

    def test_file_view_highlights_source(self):
        response = self.client.get(KEY, params={"file": str(self.file)})
        assert response.status_code == 200
        assert "helper" in response.text
        assert "<table" in response.text

    def test_file_view_rejects_missing_or_outside_files(self, tmp_path: Path):
        outside = tmp_path / "secret.py"
        outside.write_text("x = 1\n", encoding="utf-8")

        assert self.client.get(KEY, params={"file": str(outside)}).status_code == 404
        assert self.client.get(KEY, params={"file": str(self.root / "nope.py")}).status_code == 404

    def test_unknown_paths_redirect_to_index(self):
        response = self.client.get("/no/such:1", follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "/"

    def test_other_methods_redirect_to_index(self):
        response = self.client.post(KEY, follow_redirects=False)
        assert response.status_code == 302


def test_base_url_path(tmp_path: Path) -> None:
    pos = Position(line=12, character=4, pos=80, end=83)
    site = CallSite(tmp_path / "pkg" / "a.py", "run", pos, pos)

    assert base_url_path(site, tmp_path) == "/pkg/a.py/run:12"


def test_store_keeps_first_tree_for_duplicate_paths(tmp_path: Path) -> None:
    pos = Position(line=3, character=0, pos=10, end=13)
    site = CallSite(tmp_path / "a.py", "run", pos, pos)
    first = _node(0, "run", 3, [_node(1, "run", 1)], file=tmp_path / "a.py")
    second = _node(0, "run", 3, file=tmp_path / "a.py")

    store = ViewStore.from_trees([(site, first), (site, second)], tmp_path)

    assert len(store) == 1
    assert store.get("/a.py/run:3").original is first


def test_dot_views_differ_only_by_interactivity(tmp_path: Path) -> None:
    f = tmp_path / "a.py"
    store = ViewStore()
    tree = _node(0, "run", 3, [_node(1, "run", 1, [_node(2, "g", 5, file=f)], file=f)], file=f)
    session = store.add("/a.py/run:3", tree)

    browser, download = session.dot_views(GraphConfig(root_dir=tmp_path))

    assert "?id=" in browser
    assert "/a.py/run%3A3?id=1" in browser
    assert "?id=" not in download
    assert "digraph CallGraph" in download


class ChainResolver:
    """`f0` calls `f1`, which calls `f2`, and so on without end."""

    def __init__(self, file: Path):
        self.file = file

    def item(self, index: int) -> CallableItem:
        return CallableItem(
            file=self.file,
            name=f"f{index}",
            kind="function",
            span_start=index * 10,
            selection_start=index * 10,
        )

    def prepare(self, file, offset):
        return [self.item(0)]

    def expand_outgoing(self, item):
        return [CallRelation(self.item(int(item.name[1:]) + 1))]

    def expand_incoming(self, item):
        return []

    def source_text_of(self, file):
        return ""

    def line_and_column_of(self, file, offset):
        return LineAndCharacter(offset, 0)


def _dot_line(dot: str, node_id: str) -> str:
    return next(line for line in dot.splitlines() if line.strip().startswith(f'"{node_id}"'))


def test_depth_bound_cut_is_dashed_and_not_a_link(tmp_path: Path) -> None:
    file = tmp_path / "chain.py"
    pos = Position(line=50, character=4, pos=400, end=402)
    site = CallSite(file, "f0", pos, pos)
    tree = CallHierarchyBuilder(ChainResolver(file), site, max_depth=2).build_outgoing()
    config = GraphConfig(root_dir=tmp_path)
    store = ViewStore.from_trees([(site, tree)], tmp_path)
    session = store.get("/chain.py/f0:50")
    client = TestClient(create_app(store, config))

    browser, _ = session.dot_views(config, use_original=True)
    cut = _dot_line(browser, "chain.py:f1:11")
    assert 'style="dashed"' in cut
    assert "fillcolor" not in cut
    assert "?id=2" not in browser
    assert "?id=1" in _dot_line(browser, "chain.py:f0:1")

    # a direct request for the cut node is harmless and changes nothing
    for _ in range(2):
        assert client.get("/chain.py/f0:50", params={"id": 2}).status_code == 200
        assert find_node(session.current, 2).children == []
    browser, _ = session.dot_views(config)
    assert 'style="dashed"' in _dot_line(browser, "chain.py:f1:11")
    assert "?id=2" not in browser


def test_partially_built_node_can_be_collapsed_and_reopened(tmp_path: Path) -> None:
    f = tmp_path / "a.py"
    helper = _node(2, "helper", 5, [_node(3, "leaf", 9, file=f)], file=f)
    helper.truncated = True
    tree = _node(0, "main", 30, [_node(1, "main", 1, [helper], file=f)], file=f)
    store = ViewStore()
    session = store.add("/a.py/main:30", tree)
    config = GraphConfig(root_dir=tmp_path)

    shown = _dot_line(session.dot_views(config)[0], "a.py:helper:5")
    assert 'style="bold,dashed"' in shown
    assert "?id=2" in shown

    session.toggle(2)
    hidden = _dot_line(session.dot_views(config)[0], "a.py:helper:5")
    assert 'fillcolor="#ffe4b5"' in hidden
    assert "?id=2" in hidden

    session.toggle(2)
    reopened = _dot_line(session.dot_views(config)[0], "a.py:helper:5")
    assert 'style="bold,dashed"' in reopened
    assert [c.id for c in find_node(session.current, 2).children] == [3]
    assert find_node(session.original, 2).truncated
