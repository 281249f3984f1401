#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2025-2026 gwz

from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional, Set, Tuple

from mp_compilation import Module, ModuleGraph
from mp_config import BundleConfig
from mp_context import BundleContext
from mp_diagnostics import Diagnostic, diag_from_parse_error
from mp_emitter import BundleArtifact, BundleEmitter
from mp_logger import log_debug, log_info, log_stage
from mp_paths import ModuleResolver, ResolutionError
from mp_transform import ImportKind, ImportRequest, ParseError, TransformResult, parse_and_transform

Transform = Callable[[str, str, Optional[str]], TransformResult]


class GraphBuilder:
    """
    Discovers every module reachable from an entry module, exactly once.

    Worklist traversal, breadth-first in import order:
      - a module is marked visited before it is parsed, so a module that
        (directly or transitively) imports itself is never queued again;
      - each specifier is resolved to a canonical id; ids not yet visited are
        queued;
      - the resulting Module is inserted into the graph under its id.

    With context.jobs > 1 the modules of one breadth-first wave are read and
    parsed on a thread pool. Only build() itself touches `visited`, the
    worklist and the graph, and waves are merged in worklist order, so the
    graph is the same as with a serial build.

    Any failure (OSError, ParseError, ResolutionError) propagates.
    """

    def __init__(
        self,
        resolver: ModuleResolver | None = None,
        context: BundleContext | None = None,
        transform: Transform = parse_and_transform,
    ):
        self.resolver = resolver or ModuleResolver()
        self.context = context or BundleContext.default()
        self.transform = transform

    def build(self, entry_specifier: str | Path) -> ModuleGraph:
        entry_id = self.resolver.resolve_entry(entry_specifier)
        log_debug(self.context, f"Resolved entry '{entry_specifier}' to '{entry_id}'")

        graph = ModuleGraph(entry_id=entry_id)
        visited: Set[str] = set()
        worklist: Deque[str] = deque([entry_id])

        jobs = max(1, self.context.jobs)
        executor = ThreadPoolExecutor(max_workers=jobs, thread_name_prefix="minipack") if jobs > 1 else None
        try:
            while worklist:
                wave: List[str] = []
                while worklist:
                    module_id = worklist.popleft()
                    if module_id in visited:
                        continue
                    # Must happen before parsing: cycles rely on it.
                    visited.add(module_id)
                    wave.append(module_id)

                if executor is not None:
                    parsed = executor.map(self._parse_module, wave)
                else:
                    parsed = map(self._parse_module, wave)

                for module_id, (filename, result) in zip(wave, parsed):
                    import_map: Dict[str, str] = {}
                    for request in result.imports:
                        if request.specifier in import_map:
                            continue
                        target = self._resolve_request(module_id, request, import_map)
                        if target is None:
                            log_debug(self.context, f"Skipped {request.kind.value} '{request.specifier}' from '{module_id}'")
                            continue
                        log_debug(self.context, f"Resolved '{request.specifier}' from '{module_id}' to '{target}'")
                        import_map[request.specifier] = target
                        if target not in visited:
                            worklist.append(target)
                        else:
                            log_debug(self.context, f"Module '{target}' already visited")
                    graph.add(Module(id=module_id, import_map=import_map, code=result.code, filename=filename))
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        graph.check_closure()
        return graph

    def _resolve_request(self, module_id: str, request: ImportRequest, import_map: Dict[str, str]) -> Optional[str]:
        """
        Map one import request to a canonical id, or None if it is not bundled.

        - REQUIRED: must resolve (ResolutionError otherwise).
        - PACKAGE: bundled only if the directory has an '__init__.py'.
        - SUBMODULE: if the `from` target is a package, the submodule is
          bundled when it exists (the name may just as well be an attribute);
          if the target is a plain module, the name is an attribute; if the
          target is no module at all (`from . import x` outside a package),
          the submodule must exist.
        """
        if request.kind is ImportKind.REQUIRED:
            return self.resolver.resolve(module_id, request.specifier)
        if request.kind is ImportKind.PACKAGE:
            return self.resolver.resolve_package(module_id, request.specifier)

        parent = import_map.get(request.parent)
        if parent is None:
            return self.resolver.resolve(module_id, request.specifier)
        if not self.resolver.is_package(parent):
            return None
        try:
            return self.resolver.resolve(module_id, request.specifier)
        except ResolutionError:
            return None

    def _parse_module(self, module_id: str) -> Tuple[str, TransformResult]:
        path = self.resolver.source_path(module_id)
        if not path.is_file():
            raise FileNotFoundError(f"source file not found: {path}")

        log_debug(self.context, f"Reading {path}")
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(
                f"[PAR-0010] source is not valid UTF-8 ({e.reason} at byte {e.start})",
                module_id=module_id,
                filename=str(path),
            ) from e

        log_debug(self.context, f"Parsing '{module_id}'")
        result = self.transform(text, module_id, str(path))
        log_debug(self.context, f"Parsed '{module_id}': {len(result.import_specifiers)} import(s)")
        return str(path), result


@dataclass
class BundleResult:
    """
    Outcome of a bundling run.

    On fatal errors, graph and/or artifact are None and diagnostics contain
    the error.
    """
    graph: Optional[ModuleGraph] = None
    artifact: Optional[BundleArtifact] = None
    output_path: Optional[Path] = None
    context: BundleContext = field(default_factory=BundleContext.default)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    def has_errors(self) -> bool:
        return any(d.kind == "error" for d in self.diagnostics)


class MinipackDriver:
    """
    Bundling pipeline:

      1. Build the ModuleGraph for the entry (GraphBuilder).
      2. Emit the BundleArtifact (BundleEmitter).
      3. Optionally write it to the configured output file.

    This is the one place where build failures become diagnostics.
    """

    def __init__(self, resolver: ModuleResolver | None = None, context: BundleContext | None = None):
        self.resolver = resolver or ModuleResolver()
        self.context = context or BundleContext.default()

    def build_graph(self, entry: str | Path) -> ModuleGraph:
        log_stage(self.context, "Building module graph", str(entry))
        graph = GraphBuilder(resolver=self.resolver, context=self.context).build(entry)
        log_info(self.context, f"Module graph contains {len(graph)} module(s)")
        return graph

    def bundle(self, entry: str | Path) -> BundleResult:
        result = BundleResult(context=self.context)

        try:
            graph = self.build_graph(entry)
        except ParseError as e:
            result.diagnostics.append(diag_from_parse_error("error", e))
            return result
        except ResolutionError as e:
            filename = e.importer_id + self.resolver.source_suffix if e.importer_id else None
            result.diagnostics.append(
                Diagnostic(kind="error", message=f"import: {e.message}", module_id=e.importer_id, filename=filename)
            )
            return result
        except OSError as e:
            result.diagnostics.append(Diagnostic(kind="error", message=f"file: [DRV-0010] {e}"))
            return result

        result.graph = graph
        result.artifact = BundleEmitter(context=self.context).emit(graph, graph.entry_id)
        return result

    def run(self, config: BundleConfig) -> BundleResult:
        """Bundle config.entry and write the artifact to config.output."""
        result = self.bundle(config.entry)
        if result.artifact is None:
            return result

        target = config.output.target
        try:
            result.output_path = result.artifact.write(target)
        except OSError as e:
            result.diagnostics.append(Diagnostic(kind="error", message=f"output: [EMT-0010] cannot write {target}: {e}"))
            return result

        log_info(self.context, f"Wrote bundle: {result.output_path}")
        return result
