"""
Bundle runtime.

The source of this module is copied verbatim into every bundle, so it must
only depend on the standard library.

A bundle carries a registry literal:

    {module_id: {"dependencies": {specifier: module_id}, "code": source_text}}

and a Loader that initializes modules lazily:

  - the first require(id) runs the module's code once, with two injected
    bindings: `require` (resolves specifiers through the module's own
    dependency map) and `exports` (the container the code publishes into);
  - later calls for the same id return the cached exports;
  - a require(id) issued while that module is still running (an import
    cycle) returns the exports published so far.

Module lifecycle: UNLOADED -> LOADING -> LOADED. The exports container is
cached when loading starts; the module is marked LOADED when its code ends.
"""

#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2025-2026 gwz

import sys
from dataclasses import dataclass
from enum import Enum
from types import CodeType, MappingProxyType, ModuleType, SimpleNamespace
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Tuple

MAIN_NAME = "__main__"


class MissingModuleError(ImportError):
    """Raised when require() is asked for a module the bundle does not contain."""


class ModuleStatus(Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"


@dataclass(frozen=True)
class RegistryEntry:
    dependencies: Mapping[str, str]
    code: str


class ModuleRegistry:
    """
    Read-only mapping: module id -> RegistryEntry.

    Built from the registry literal embedded in a bundle.
    """

    def __init__(self, entries: Mapping[str, Mapping[str, Any]]):
        self._entries = MappingProxyType({
            module_id: RegistryEntry(
                dependencies=MappingProxyType(dict(entry["dependencies"])),
                code=entry["code"],
            )
            for module_id, entry in entries.items()
        })

    def entry(self, module_id: str) -> RegistryEntry:
        try:
            return self._entries[module_id]
        except KeyError:
            raise MissingModuleError(f"module '{module_id}' is not part of this bundle", name=module_id) from None

    def __contains__(self, module_id: object) -> bool:
        return module_id in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class ModuleRecord:
    status: ModuleStatus = ModuleStatus.UNLOADED
    exports: Optional[SimpleNamespace] = None


class LoaderState:
    """Lifecycle and cached exports of every module a Loader has touched."""

    def __init__(self):
        self._records: Dict[str, ModuleRecord] = {}

    def status(self, module_id: str) -> ModuleStatus:
        record = self._records.get(module_id)
        return record.status if record is not None else ModuleStatus.UNLOADED

    def exports(self, module_id: str) -> Optional[SimpleNamespace]:
        record = self._records.get(module_id)
        return record.exports if record is not None else None

    def begin(self, module_id: str, exports: SimpleNamespace) -> None:
        """UNLOADED -> LOADING; `exports` becomes the cached value from now on."""
        if self.status(module_id) is not ModuleStatus.UNLOADED:
            raise RuntimeError(f"module '{module_id}' is already {self.status(module_id).value}")
        self._records[module_id] = ModuleRecord(ModuleStatus.LOADING, exports)

    def finish(self, module_id: str) -> None:
        """LOADING -> LOADED."""
        record = self._records.get(module_id)
        if record is None or record.status is not ModuleStatus.LOADING:
            raise RuntimeError(f"module '{module_id}' is not loading")
        record.status = ModuleStatus.LOADED

    def abort(self, module_id: str) -> None:
        """LOADING -> UNLOADED, after the module's code raised."""
        self._records.pop(module_id, None)

    def loaded(self) -> Dict[str, SimpleNamespace]:
        return {
            module_id: record.exports
            for module_id, record in self._records.items()
            if record.status is ModuleStatus.LOADED
        }


class ModuleRequire:
    """
    The `require` binding of one module.

    Calling it resolves a specifier through the module's own dependency map.
    `from_import` backs lowered `from <relative> import <name>` statements.
    """

    def __init__(self, loader: "Loader", module_id: str, dependencies: Mapping[str, str]):
        self.loader = loader
        self.module_id = module_id
        self.dependencies = dependencies

    def __call__(self, specifier: str) -> SimpleNamespace:
        target = self.dependencies.get(specifier)
        if target is None:
            raise MissingModuleError(f"cannot find module '{specifier}' from '{self.module_id}'", name=specifier)
        return self.loader.require(target)

    def from_import(self, specifier: str, name: str, submodule: Optional[str] = None, packages: Tuple[str, ...] = ()) -> Any:
        """
        Initialize the enclosing packages, then return `name` from the target
        module, or the submodule of that name when the target lacks it.

        Packages, target and submodule missing from the dependency map were
        not bundled (no '__init__.py', or no such file) and are skipped.
        """
        for package in packages:
            if package in self.dependencies:
                self(package)

        parent = self(specifier) if specifier in self.dependencies else None
        if parent is not None and hasattr(parent, name):
            return getattr(parent, name)
        if submodule is not None and submodule in self.dependencies:
            return self(submodule)
        if parent is None:
            raise MissingModuleError(f"cannot find module '{specifier}' from '{self.module_id}'", name=specifier)
        raise ImportError(f"cannot import name '{name}' from '{specifier}' (imported by '{self.module_id}')", name=name)


ModuleFunction = Callable[[ModuleRequire, SimpleNamespace], None]


def _restore_module(name: str, previous: Optional[ModuleType]) -> None:
    if previous is None:
        sys.modules.pop(name, None)
    else:
        sys.modules[name] = previous


class Loader:
    """
    Synchronous, memoizing module loader over a ModuleRegistry.

    `main_id` names the module that runs with __name__ == '__main__'.

    Every module body runs in the namespace of its own module object, which
    is registered in sys.modules under its __name__ while the body runs, so
    lookups through `cls.__module__` (dataclasses, pickle, typing) work.
    Other modules stay registered once loaded; the main module's entry is
    restored when its body ends.
    """

    def __init__(self, registry: ModuleRegistry, state: Optional[LoaderState] = None, main_id: Optional[str] = None):
        self.registry = registry
        self.state = state if state is not None else LoaderState()
        self.main_id = main_id
        self._functions: Dict[str, ModuleFunction] = {}

    def require(self, module_id: str) -> SimpleNamespace:
        if self.state.status(module_id) is not ModuleStatus.UNLOADED:
            return self.state.exports(module_id)

        entry = self.registry.entry(module_id)
        function = self.module_function(module_id)
        exports = SimpleNamespace()
        self.state.begin(module_id, exports)
        try:
            function(ModuleRequire(self, module_id, entry.dependencies), exports)
        except BaseException:
            self.state.abort(module_id)
            raise
        self.state.finish(module_id)
        return exports

    def module_function(self, module_id: str) -> ModuleFunction:
        """Compile the module's code once and wrap it as f(require, exports)."""
        function = self._functions.get(module_id)
        if function is None:
            code = compile(self.registry.entry(module_id).code, module_id + ".py", "exec", dont_inherit=True)
            function = self._make_function(module_id, code)
            self._functions[module_id] = function
        return function

    def _make_function(self, module_id: str, code: CodeType) -> ModuleFunction:
        name = MAIN_NAME if module_id == self.main_id else module_id

        def run(require: ModuleRequire, exports: SimpleNamespace) -> None:
            module = ModuleType(name)
            namespace = vars(module)
            namespace["require"] = require
            namespace["exports"] = exports
            previous = sys.modules.get(name)
            sys.modules[name] = module
            try:
                exec(code, namespace)
            except BaseException:
                _restore_module(name, previous)
                raise
            if name == MAIN_NAME:
                _restore_module(name, previous)

        return run
