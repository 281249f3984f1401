#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2025-2026 gwz

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional, Tuple

from mp_paths import ResolutionError


@dataclass(frozen=True)
class Module:
    """
    One source module after transformation.

    - id: canonical module id (e.g. '/work/app/util')
    - import_map: raw import specifier -> canonical id of the imported module
    - code: transformed, loader-compatible source text
    - filename: source file the module was read from
    """
    id: str
    import_map: Mapping[str, str]
    code: str
    filename: Optional[str] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "import_map", MappingProxyType(dict(self.import_map)))

    @property
    def dependencies(self) -> Tuple[str, ...]:
        """Distinct target ids, in import order."""
        return tuple(dict.fromkeys(self.import_map.values()))


@dataclass
class ModuleGraph:
    """
    A closed set of modules starting from an entry module.

    - entry_id: canonical id of the entry module
    - modules: canonical id -> Module for the entry and everything it
      transitively imports, in discovery order
    """
    entry_id: str
    modules: Dict[str, Module] = field(default_factory=dict)

    @property
    def entry_module(self) -> Module:
        return self.modules[self.entry_id]

    def add(self, module: Module) -> None:
        if module.id in self.modules:
            raise ValueError(f"module '{module.id}' is already in the graph")
        self.modules[module.id] = module

    def check_closure(self) -> None:
        """
        Every import target must itself be a module of the graph.

        Raises ResolutionError on the first dangling edge.
        """
        if self.entry_id not in self.modules:
            raise ResolutionError(f"[RES-0020] entry module '{self.entry_id}' missing from graph")
        for module in self.modules.values():
            for specifier, target in module.import_map.items():
                if target not in self.modules:
                    raise ResolutionError(
                        f"[RES-0020] '{specifier}' in '{module.id}' points to '{target}', "
                        f"which is not part of the module graph",
                        module.id,
                        specifier,
                    )

    def __contains__(self, module_id: str) -> bool:
        return module_id in self.modules

    def __len__(self) -> int:
        return len(self.modules)

    def __iter__(self) -> Iterator[str]:
        return iter(self.modules)
