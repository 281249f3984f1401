#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

import threading
from collections import Counter

import pytest

from mp_context import BundleContext
from mp_driver import GraphBuilder
from mp_paths import ResolutionError
from mp_transform import ParseError, parse_and_transform


class CountingTransform:
    """Wraps parse_and_transform and counts how often each module is parsed."""

    def __init__(self):
        self.calls = Counter()
        self._lock = threading.Lock()

    def __call__(self, source_text, module_id, filename=None):
        with self._lock:
            self.calls[module_id] += 1
        return parse_and_transform(source_text, module_id, filename)


def _write_diamond(write_module):
    write_module("a.py", "from .b import b\nfrom .c import c\n")
    write_module("b.py", "from .d import d\nb = 'b' + d\n")
    write_module("c.py", "from .d import d\nc = 'c' + d\n")
    write_module("d.py", "d = 'd'\n")


def test_collects_transitive_imports(write_module, module_id, temp_project):
    write_module("app/main.py", "from .util import helper\n")
    write_module("app/util.py", "from .lib.strings import shout\ndef helper():\n    return shout('x')\n")
    write_module("app/lib/strings.py", "def shout(s):\n    return s.upper()\n")
    write_module("app/unused.py", "x = 1\n")

    graph = GraphBuilder().build(temp_project / "app" / "main.py")

    assert graph.entry_id == module_id("app/main.py")
    assert list(graph) == [
        module_id("app/main.py"),
        module_id("app/util.py"),
        module_id("app/lib/strings.py"),
    ]
    assert dict(graph.modules[module_id("app/util.py")].import_map) == {
        "./lib/strings": module_id("app/lib/strings.py"),
    }
    graph.check_closure()


def test_diamond_parses_shared_module_once(write_module, module_id, temp_project):
    _write_diamond(write_module)
    transform = CountingTransform()

    graph = GraphBuilder(transform=transform).build(temp_project / "a.py")

    assert len(graph) == 4
    assert set(transform.calls.values()) == {1}
    assert graph.modules[module_id("b.py")].import_map["./d"] == module_id("d.py")
    assert graph.modules[module_id("c.py")].import_map["./d"] == module_id("d.py")


def test_discovery_order_is_breadth_first(write_module, module_id, temp_project):
    _write_diamond(write_module)

    graph = GraphBuilder().build(temp_project / "a.py")

    assert list(graph) == [module_id(name) for name in ("a.py", "b.py", "c.py", "d.py")]


def test_import_cycle_terminates(write_module, module_id, temp_project):
    write_module("x.py", "from . import y\n")
    write_module("y.py", "from . import x\n")
    transform = CountingTransform()

    graph = GraphBuilder(transform=transform).build(temp_project / "x.py")

    assert list(graph) == [module_id("x.py"), module_id("y.py")]
    assert graph.modules[module_id("x.py")].import_map["./y"] == module_id("y.py")
    assert graph.modules[module_id("y.py")].import_map["./x"] == module_id("x.py")
    assert transform.calls == {module_id("x.py"): 1, module_id("y.py"): 1}


def test_self_import_terminates(write_module, module_id, temp_project):
    write_module("me.py", "from . import me\n")

    graph = GraphBuilder().build(temp_project / "me.py")

    assert list(graph) == [module_id("me.py")]
    assert graph.entry_module.import_map["./me"] == module_id("me.py")


def test_different_specifiers_for_same_module_share_one_node(write_module, module_id, temp_project):
    write_module("pkg/main.py", "from .util import a\nfrom ..pkg.util import b\nc = require('./util.py')\n")
    write_module("pkg/util.py", "a = b = 1\n")

    graph = GraphBuilder().build(temp_project / "pkg" / "main.py")

    assert len(graph) == 2
    assert set(graph.entry_module.import_map.values()) == {module_id("pkg/util.py")}
    assert graph.entry_module.dependencies == (module_id("pkg/util.py"),)


def test_package_imports_resolve_against_package_directory(write_module, module_id, temp_project):
    write_module("main.py", "from .pkg import thing\n")
    write_module("pkg/__init__.py", "from .inner import thing\n")
    write_module("pkg/inner.py", "thing = 1\n")

    graph = GraphBuilder().build(temp_project / "main.py")

    assert list(graph) == [
        module_id("main.py"),
        module_id("pkg/__init__.py"),
        module_id("pkg/inner.py"),
    ]


def test_unresolvable_import_raises(write_module, module_id, temp_project):
    write_module("main.py", "from .util import helper\n")
    write_module("util.py", "from .missing import helper\n")

    with pytest.raises(ResolutionError) as exc:
        GraphBuilder().build(temp_project / "main.py")

    assert exc.value.importer_id == module_id("util.py")
    assert exc.value.specifier == "./missing"


def test_parse_error_in_dependency_raises(write_module, module_id, temp_project):
    write_module("main.py", "from .broken import x\n")
    write_module("broken.py", "x = = 1\n")

    with pytest.raises(ParseError) as exc:
        GraphBuilder().build(temp_project / "main.py")

    assert exc.value.module_id == module_id("broken.py")
    assert exc.value.line == 1


def test_non_utf8_source_raises_parse_error(write_module, module_id, temp_project):
    write_module("main.py", "from .latin import x\n")
    (temp_project / "latin.py").write_bytes(b"x = '\xe9'\n")

    with pytest.raises(ParseError) as exc:
        GraphBuilder().build(temp_project / "main.py")

    assert exc.value.message.startswith("[PAR-0010]")
    assert exc.value.module_id == module_id("latin.py")


def test_missing_entry_raises(temp_project):
    with pytest.raises(ResolutionError):
        GraphBuilder().build(temp_project / "main.py")


@pytest.mark.parametrize("jobs", [2, 4])
def test_parallel_build_matches_serial_build(write_module, temp_project, jobs):
    write_module("main.py", "".join(f"from .m{i} import v{i}\n" for i in range(8)))
    for i in range(8):
        write_module(f"m{i}.py", f"from .shared import base\nv{i} = base + {i}\n")
    write_module("shared.py", "from . import main\nbase = 10\n")

    serial = GraphBuilder().build(temp_project / "main.py")
    transform = CountingTransform()
    parallel = GraphBuilder(context=BundleContext(jobs=jobs), transform=transform).build(temp_project / "main.py")

    assert list(parallel) == list(serial)
    assert parallel.modules == serial.modules
    assert set(transform.calls.values()) == {1}


def test_build_is_deterministic(write_module, temp_project):
    _write_diamond(write_module)

    first = GraphBuilder().build(temp_project / "a.py")
    second = GraphBuilder().build(temp_project / "a.py")

    assert list(first) == list(second)
    assert first.modules == second.modules


def test_from_package_import_bundles_existing_submodule(write_module, module_id, temp_project):
    write_module("main.py", "from .pkg import sub, attr\n")
    write_module("pkg/__init__.py", "attr = 1\n")
    write_module("pkg/sub.py", "value = 7\n")

    graph = GraphBuilder().build(temp_project / "main.py")

    assert dict(graph.entry_module.import_map) == {
        "./pkg": module_id("pkg/__init__.py"),
        "./pkg/sub": module_id("pkg/sub.py"),
    }


def test_from_module_import_never_bundles_submodule(write_module, module_id, temp_project):
    write_module("main.py", "from .util import helper\n")
    write_module("util.py", "def helper():\n    pass\n")
    write_module("util/helper.py", "x = 1\n")

    graph = GraphBuilder().build(temp_project / "main.py")

    assert list(graph) == [module_id("main.py"), module_id("util.py")]


def test_enclosing_packages_are_bundled_before_target(write_module, module_id, temp_project):
    write_module("main.py", "from .pkg.inner.mod import x\n")
    write_module("pkg/__init__.py", "")
    write_module("pkg/inner/mod.py", "x = 1\n")

    graph = GraphBuilder().build(temp_project / "main.py")

    # pkg/inner has no __init__.py: nothing to initialize for it.
    assert list(graph.entry_module.import_map.items()) == [
        ("./pkg", module_id("pkg/__init__.py")),
        ("./pkg/inner/mod", module_id("pkg/inner/mod.py")),
    ]


def test_from_dot_import_outside_package_requires_module(write_module, temp_project):
    write_module("main.py", "from . import missing\n")

    with pytest.raises(ResolutionError) as exc:
        GraphBuilder().build(temp_project / "main.py")

    assert exc.value.specifier == "./missing"


def test_from_dot_import_inside_package_may_name_attribute(write_module, module_id, temp_project):
    write_module("pkg/__init__.py", "VERSION = '1.0'\n")
    write_module("pkg/main.py", "from . import VERSION\n")

    graph = GraphBuilder().build(temp_project / "pkg" / "main.py")

    assert dict(graph.entry_module.import_map) == {"./": module_id("pkg/__init__.py")}
