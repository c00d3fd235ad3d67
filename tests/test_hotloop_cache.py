import io
import logging
import sys
from textwrap import dedent

import pytest

from hotloop import (
    CompilationError, DynamicCode, HotloopConfig, InstantiationError,
    ResourceNotFoundError, watch,
)
from hotloop.hotloop_console import Console

C1 = dedent("""
    class A:
        def f(self):
            return 1
""")

C2 = dedent("""
    class A:
        def f(self):
            return 2
""")


@pytest.fixture
def resource(tmp_path):
    p = tmp_path / "dynamic_unit.py"
    p.write_text(C1, encoding="utf-8")
    return p


async def open_unit(path, **kwargs):
    reloads = []
    dc = await DynamicCode.open(str(path), on_reload=reloads.append, **kwargs)
    return dc, reloads


@pytest.mark.asyncio
async def test_open_missing_resource_fails_fast(tmp_path):
    with pytest.raises(ResourceNotFoundError) as excinfo:
        await DynamicCode.open(str(tmp_path / "absent.py"))
    assert excinfo.value.resource_id.endswith("absent.py")
    # Also a LookupError for callers that catch broadly
    assert isinstance(excinfo.value, LookupError)


@pytest.mark.asyncio
async def test_open_does_not_compile(resource):
    dc, reloads = await open_unit(resource)
    assert dc.instance is None
    assert dc.last_loaded_text is None
    assert reloads == []


@pytest.mark.asyncio
async def test_content_change_reloads_exactly_once(resource, caplog):
    caplog.set_level(logging.INFO, logger="hotloop.hotloop_cache")
    dc, reloads = await open_unit(resource)

    first = await dc.get_instance()
    assert first.f() == 1
    assert reloads == [first]

    resource.write_text(C2, encoding="utf-8")
    second = await dc.get_instance()
    assert second is not first
    assert second.f() == 2
    assert reloads == [first, second]
    assert dc.reload_count == 2

    again = await dc.get_instance()
    assert again is second
    assert dc.reload_count == 2
    loads = [r for r in caplog.records if "Loading class due to new content" in r.getMessage()]
    assert len(loads) == 2


@pytest.mark.asyncio
async def test_unchanged_content_returns_same_instance(resource):
    dc, reloads = await open_unit(resource)
    a = await dc.get_instance()
    artifact = dc.compiled_artifact
    b = await dc.get_instance()
    assert a is b
    assert dc.compiled_artifact is artifact
    assert len(reloads) == 1


@pytest.mark.asyncio
async def test_touch_without_edit_does_not_reload(resource):
    dc, reloads = await open_unit(resource)
    await dc.get_instance()
    resource.write_text(C1, encoding="utf-8")
    await dc.get_instance()
    assert len(reloads) == 1


@pytest.mark.asyncio
async def test_whitespace_only_edit_reloads(resource):
    dc, reloads = await open_unit(resource)
    await dc.get_instance()
    resource.write_text(C1 + "\n", encoding="utf-8")
    await dc.get_instance()
    assert len(reloads) == 2


@pytest.mark.asyncio
async def test_broken_edit_keeps_last_good_load(resource):
    dc, reloads = await open_unit(resource)
    good = await dc.get_instance()
    artifact = dc.compiled_artifact

    resource.write_text("class A:\n    def f(self) return 3\n", encoding="utf-8")
    with pytest.raises(CompilationError) as excinfo:
        await dc.get_instance()
    assert isinstance(excinfo.value.__cause__, SyntaxError)

    assert dc.instance is good
    assert dc.instance.f() == 1
    assert dc.compiled_artifact is artifact
    assert dc.last_loaded_text == C1

    # Restoring the old text is "unchanged", not a reload
    resource.write_text(C1, encoding="utf-8")
    assert await dc.get_instance() is good
    assert len(reloads) == 1


@pytest.mark.asyncio
async def test_broken_edit_is_not_logged_as_a_load(resource, caplog):
    caplog.set_level(logging.INFO, logger="hotloop.hotloop_cache")
    dc, _ = await open_unit(resource)
    await dc.get_instance()
    resource.write_text("class A(:\n", encoding="utf-8")
    with pytest.raises(CompilationError):
        await dc.get_instance()
    loads = [r for r in caplog.records if "Loading class due to new content" in r.getMessage()]
    assert len(loads) == 1


@pytest.mark.asyncio
async def test_dataclass_with_postponed_annotations(tmp_path):
    p = tmp_path / "record.py"
    p.write_text(dedent("""
        from __future__ import annotations

        from dataclasses import dataclass, field

        @dataclass
        class Point:
            x: int = 1
            tags: list[str] = field(default_factory=list)
    """), encoding="utf-8")
    dc = await DynamicCode.open(str(p))
    point = await dc.get_instance()
    assert (point.x, point.tags) == (1, [])
    # The synthetic module is not left behind in sys.modules
    assert dc.compiled_artifact.__name__ not in sys.modules


@pytest.mark.asyncio
async def test_module_body_error_is_compilation_error(resource):
    dc, _ = await open_unit(resource)
    await dc.get_instance()
    resource.write_text("import no_such_module_hopefully_xyz\nclass A: pass\n", encoding="utf-8")
    with pytest.raises(CompilationError, match="ModuleNotFoundError"):
        await dc.get_instance()
    assert dc.instance.f() == 1


@pytest.mark.asyncio
async def test_constructor_failure_is_instantiation_error(resource):
    dc, reloads = await open_unit(resource)
    good = await dc.get_instance()
    resource.write_text(dedent("""
        class A:
            def __init__(self):
                raise ValueError("nope")
    """), encoding="utf-8")
    with pytest.raises(InstantiationError, match="nope"):
        await dc.get_instance()
    assert dc.instance is good
    assert len(reloads) == 1


@pytest.mark.asyncio
async def test_source_without_class_is_instantiation_error(tmp_path):
    p = tmp_path / "noclass.py"
    p.write_text("from collections import OrderedDict\nx = 1\n", encoding="utf-8")
    dc = await DynamicCode.open(str(p))
    with pytest.raises(InstantiationError, match="no class"):
        await dc.get_instance()
    assert dc.instance is None
    assert dc.last_loaded_text is None


@pytest.mark.asyncio
async def test_first_class_defined_in_source_wins(tmp_path):
    p = tmp_path / "two.py"
    p.write_text(dedent("""
        from collections import OrderedDict

        class First:
            name = "first"

        class Second:
            name = "second"
    """), encoding="utf-8")
    dc = await DynamicCode.open(str(p))
    assert (await dc.get_instance()).name == "first"

    named = await DynamicCode.open(str(p), class_name="Second")
    assert (await named.get_instance()).name == "second"

    missing = await DynamicCode.open(str(p), class_name="Third")
    with pytest.raises(CompilationError, match="Third"):
        await missing.get_instance()


@pytest.mark.asyncio
async def test_artifact_is_named_after_resource(resource):
    dc, _ = await open_unit(resource)
    inst = await dc.get_instance()
    assert dc.compiled_artifact.__file__ == str(resource)
    assert type(inst).__module__ == dc.compiled_artifact.__name__
    assert dc.compiled_artifact.__name__.startswith("hotloop_dynamic.")


@pytest.mark.asyncio
async def test_resource_removed_after_open_is_not_cached(resource):
    dc, _ = await open_unit(resource)
    good = await dc.get_instance()
    resource.unlink()
    with pytest.raises(ResourceNotFoundError):
        await dc.get_instance()
    assert dc.instance is good
    resource.write_text(C2, encoding="utf-8")
    assert (await dc.get_instance()).f() == 2


@pytest.mark.asyncio
async def test_set_on_reload_replaces_hook(resource):
    dc = await DynamicCode.open(str(resource))
    await dc.get_instance()
    seen = []
    dc.set_on_reload(lambda inst: seen.append(type(inst).__name__))
    resource.write_text(C2, encoding="utf-8")
    await dc.get_instance()
    assert seen == ["A"]


@pytest.mark.asyncio
async def test_watch_polls_and_survives_broken_edit(resource):
    out, err = io.StringIO(), io.StringIO()
    console = Console(HotloopConfig(), out=out, err=err)
    dc = await DynamicCode.open(str(resource))

    state = {"n": 0}

    def f_then_break(inst):
        state["n"] += 1
        # Break the source right after the first successful load
        resource.write_text("class A(:\n", encoding="utf-8")

    dc.set_on_reload(f_then_break)
    polls = await watch(dc, "f", interval=0, iterations=3, console=console)

    assert polls == 3
    assert out.getvalue().splitlines() == ["1", "1", "1"]
    assert err.getvalue().count("CompilationError") == 2
    assert state["n"] == 1


@pytest.mark.asyncio
async def test_watch_skips_until_first_good_load(tmp_path):
    p = tmp_path / "later.py"
    p.write_text("class A(:\n", encoding="utf-8")
    out, err = io.StringIO(), io.StringIO()
    dc = await DynamicCode.open(str(p))
    polls = await watch(dc, "f", interval=0, iterations=2, console=Console(out=out, err=err))
    assert polls == 2
    assert out.getvalue() == ""
    assert "CompilationError" in err.getvalue()


@pytest.mark.asyncio
async def test_watch_awaits_async_methods(tmp_path):
    p = tmp_path / "coro.py"
    p.write_text("class A:\n    async def f(self):\n        return 'async'\n", encoding="utf-8")
    out = io.StringIO()
    dc = await DynamicCode.open(str(p))
    await watch(dc, "f", interval=0, iterations=1, console=Console(out=out, err=io.StringIO()))
    assert out.getvalue() == "async\n"


@pytest.mark.asyncio
async def test_watch_survives_deleted_resource(resource):
    out, err = io.StringIO(), io.StringIO()
    dc = await DynamicCode.open(str(resource), on_reload=lambda inst: resource.unlink())
    polls = await watch(dc, "f", interval=0, iterations=2, console=Console(out=out, err=err))
    assert polls == 2
    assert out.getvalue().splitlines() == ["1", "1"]
    assert "ResourceNotFoundError" in err.getvalue()


@pytest.mark.asyncio
async def test_watch_survives_method_errors(tmp_path):
    p = tmp_path / "flaky.py"
    p.write_text(dedent("""
        class A:
            calls = 0

            def f(self):
                self.calls += 1
                if self.calls == 1:
                    raise ValueError("first call")
                return self.calls
    """), encoding="utf-8")
    out, err = io.StringIO(), io.StringIO()
    dc = await DynamicCode.open(str(p))
    polls = await watch(dc, "f", interval=0, iterations=2, console=Console(out=out, err=err))
    assert polls == 2
    assert out.getvalue() == "2\n"
    assert "f() raised ValueError: first call" in err.getvalue()
