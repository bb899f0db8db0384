import tempfile
from pathlib import Path
import string
import keyword

from hypothesis import given, settings, strategies as st

from callscope import resolve_project, ResolverConfig


@st.composite
def simple_module_source(draw):
    """
    Generate a tiny module of top-level functions and methods that call each
    other, either directly or through `self`.

    Returns (source_text, function_names).
    """
    identifier = st.text(alphabet=string.ascii_lowercase, min_size=1, max_size=8).filter(
        lambda s: not keyword.iskeyword(s)
    )
    func_names = draw(st.lists(identifier, min_size=1, max_size=5, unique=True))

    lines = []
    for fname in func_names:
        callees = draw(st.lists(st.sampled_from(func_names), max_size=4))
        lines.append(f"def {fname}():")
        lines.extend(f"    {c}()" for c in callees)
        lines.append("    pass")
        lines.append("")

    lines.append("class Box:")
    for fname in func_names:
        callees = draw(st.lists(st.sampled_from(func_names), max_size=2))
        lines.append(f"    def {fname}(self):")
        lines.extend(f"        self.{c}()" for c in callees)
        lines.append("        pass")
    lines.append("")
    return "\n".join(lines), set(func_names)


@given(data=simple_module_source())
@settings(max_examples=100, deadline=None)
def test_offsets_point_at_names(data):
    src, func_names = data
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        (root / "mod.py").write_text(src, encoding="utf-8")

        project = resolve_project(root, ResolverConfig())
        text = project.sources[Path("mod.py")]

        assert {s.name for s in project.functions() if s.kind == "function"} == func_names
        assert {s.name for s in project.functions() if s.kind == "method"} == func_names

        for sym in project.functions():
            assert text[sym.selection_start :].startswith(sym.name)
            assert text[sym.span_start :].startswith("def ")
            assert sym.span_start < sym.selection_start

        for call in project.calls:
            assert call.caller_id in project.symbols
            offset = call.location.offset
            assert offset is not None
            name = call.raw_callee.rsplit(".", 1)[-1]
            assert text[offset : offset + len(name)] == name
            if call.callee_id is not None:
                assert call.callee_id in project.symbols
                assert call.callee_id == call.candidates[0]
