#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

from __future__ import annotations

import os
import sys
from pathlib import Path
from textwrap import dedent

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from mp_driver import MinipackDriver
from mp_emitter import EXPORTS_GLOBAL, BundleEmitter
from mp_runtime import Loader, ModuleRegistry


@pytest.fixture
def temp_project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def write_module(temp_project: Path):
    """Write a module below the temp project.

    Usage:
        def test_something(write_module):
            path = write_module("app/main.py", '''
                from .util import helper
            ''')
    """

    def _write(rel_path: str, content: str) -> Path:
        file_path = temp_project / rel_path
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(dedent(content), encoding="utf-8")
        return file_path

    return _write


@pytest.fixture
def module_id(temp_project: Path):
    """Canonical id of a module below the temp project ('app/util.py' -> '/.../app/util')."""

    def _id(rel_path: str) -> str:
        path = Path(os.path.abspath(temp_project / rel_path)).as_posix()
        return path[: -len(".py")] if path.endswith(".py") else path

    return _id


@pytest.fixture
def bundle_text(temp_project: Path):
    """Bundle an entry module below the temp project and return the bundle source."""

    def _bundle(entry: str) -> str:
        result = MinipackDriver().bundle(temp_project / entry)
        assert not result.has_errors(), [d.format() for d in result.diagnostics]
        return result.artifact.text

    return _bundle


def exec_bundle(text: str):
    """Execute bundle source in-process and return the entry module's exports."""
    namespace = {"__name__": "__minipack_test__"}
    exec(compile(text, "bundle.py", "exec", dont_inherit=True), namespace)
    return namespace[EXPORTS_GLOBAL]


def make_loader(modules: dict, main_id: str | None = None) -> Loader:
    """Build a Loader from a registry literal written by hand."""
    return Loader(ModuleRegistry(modules), main_id=main_id)


def emit_graph(graph) -> str:
    return BundleEmitter().emit(graph, graph.entry_id).text


def has_error_code(diagnostics, code: str) -> bool:
    """Check if any diagnostic contains the given error code ('RES-0010' or '[RES-0010]')."""
    if not code.startswith("["):
        code = f"[{code}]"
    return any(code in d.message for d in diagnostics)
