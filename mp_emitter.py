"""
Bundle emitter.

Serializes a closed ModuleGraph into a single Python script: the runtime from
mp_runtime (copied verbatim), the registry literal, and a bootstrap that
requires the entry module exactly once. Emission is a pure function of the
graph: no parsing, no resolution, no I/O.
"""

#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2025-2026 gwz

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import mp_runtime
from mp_compilation import ModuleGraph
from mp_context import BundleContext
from mp_logger import log_debug, log_stage

BOOTSTRAP_NAME = "__minipack_bootstrap__"
EXPORTS_GLOBAL = "__minipack_exports__"


@dataclass
class PyCodeBuilder:
    """
    Helper for building Python source with indentation tracking.
    """
    lines: List[str] = field(default_factory=list)
    indent_level: int = 0
    indent_str: str = "    "  # 4 spaces

    def indent(self) -> None:
        self.indent_level += 1

    def dedent(self) -> None:
        assert self.indent_level > 0, "dedent below zero"
        self.indent_level -= 1

    def emit(self, line: str = "") -> None:
        """Emit a line with current indentation."""
        if line:
            self.lines.append(self.indent_str * self.indent_level + line)
        else:
            self.lines.append("")

    def emit_raw(self, text: str) -> None:
        """Emit text without indentation."""
        self.lines.extend(text.splitlines())

    def to_string(self) -> str:
        return "\n".join(self.lines) + "\n"


@dataclass(frozen=True)
class BundleArtifact:
    """
    The serialized bundle. Created once by BundleEmitter; never mutated.

    - entry_id: module required by the bootstrap
    - module_ids: registry keys, in graph order
    - text: complete bundle source
    """
    entry_id: str
    module_ids: Tuple[str, ...]
    text: str

    def write(self, path: str | Path) -> Path:
        """Write the bundle to `path`, creating parent directories as needed."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.text, encoding="utf-8")
        return path


def runtime_source() -> str:
    """Source text of the runtime embedded in every bundle."""
    return Path(mp_runtime.__file__).read_text(encoding="utf-8")


class BundleEmitter:
    """
    Python bundle emitter.

    Responsibilities:
    - Emit the bundle header and the embedded runtime
    - Emit the registry literal (graph order, so output is deterministic)
    - Emit the bootstrap that requires the entry module

    Does NOT:
    - Parse or resolve modules (the graph is final)
    - Write files (see BundleArtifact.write)
    """

    def __init__(self, context: Optional[BundleContext] = None, runtime_text: Optional[str] = None):
        self.context = context or BundleContext.default()
        self.runtime_text = runtime_text if runtime_text is not None else runtime_source()
        self.out = PyCodeBuilder()

    def emit(self, graph: ModuleGraph, entry_id: Optional[str] = None) -> BundleArtifact:
        entry_id = entry_id or graph.entry_id
        if entry_id not in graph:
            raise ValueError(f"entry module '{entry_id}' is not part of the module graph")

        log_stage(self.context, "Emitting bundle", entry_id)
        self.out = PyCodeBuilder()
        self.emit_header(entry_id)
        self.emit_runtime()
        self.emit_bootstrap(entry_id)
        self.emit_registry(graph)
        log_debug(self.context, f"Bundle contains {len(graph)} module(s), {len(self.out.lines)} line(s)")

        return BundleArtifact(
            entry_id=entry_id,
            module_ids=tuple(graph.modules.keys()),
            text=self.out.to_string(),
        )

    # ============================================================================
    # Sections
    # ============================================================================

    def emit_section_comment(self, text: str) -> None:
        self.out.emit(f"# --- {text} ---")

    def emit_header(self, entry_id: str) -> None:
        self.out.emit("#!/usr/bin/env python3")
        self.out.emit("# Generated by minipack. Do not edit.")
        self.out.emit(f"# Entry: {entry_id}")
        self.out.emit()

    def emit_runtime(self) -> None:
        self.emit_section_comment("Runtime")
        self.out.emit_raw(self.runtime_text.rstrip("\n"))
        self.out.emit()
        self.out.emit()

    def emit_bootstrap(self, entry_id: str) -> None:
        self.emit_section_comment("Bootstrap")
        self.out.emit(f"def {BOOTSTRAP_NAME}(registry):")
        self.out.indent()
        self.out.emit(f"loader = Loader(ModuleRegistry(registry), main_id={entry_id!r})")
        self.out.emit(f"return loader.require({entry_id!r})")
        self.out.dedent()
        self.out.emit()
        self.out.emit()

    def emit_registry(self, graph: ModuleGraph) -> None:
        """
        Emit the bootstrap call with the registry literal as its only argument;
        the entry module's exports are kept in EXPORTS_GLOBAL.
        """
        self.emit_section_comment("Modules")
        self.out.emit(f"{EXPORTS_GLOBAL} = {BOOTSTRAP_NAME}({{")
        self.out.indent()
        for module in graph.modules.values():
            self.out.emit(f"{module.id!r}: {{")
            self.out.indent()
            self.out.emit('"dependencies": {')
            self.out.indent()
            for specifier, target in module.import_map.items():
                self.out.emit(f"{specifier!r}: {target!r},")
            self.out.dedent()
            self.out.emit("},")
            self.out.emit(f'"code": {module.code!r},')
            self.out.dedent()
            self.out.emit("},")
        self.out.dedent()
        self.out.emit("})")
