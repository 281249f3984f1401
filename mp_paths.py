#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2025-2026 gwz

import os
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

SOURCE_SUFFIX = ".py"
PACKAGE_INIT = "__init__"


class ResolutionError(Exception):
    """Raised when an import specifier cannot be mapped to an existing module."""

    def __init__(self, message: str, importer_id: Optional[str] = None, specifier: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.importer_id = importer_id
        self.specifier = specifier


@dataclass(frozen=True)
class ModuleResolver:
    """
    Maps (importer id, raw specifier) pairs to canonical module ids.

    A canonical module id is the absolute POSIX path of the module source with
    the '.py' suffix removed, e.g. '/work/app/util'. Packages are identified by
    their '__init__' module ('/work/app/pkg/__init__'), so relative imports made
    from inside a package are resolved against the package directory.

    Resolution rule: '<id>.py' is tried first, then '<id>/__init__.py'.
    """
    source_suffix: str = SOURCE_SUFFIX

    def normalize(self, importer_id: str, specifier: str) -> str:
        """
        Join `specifier` against the importer's directory and canonicalize it.

        Pure path arithmetic: no filesystem access. The result never contains
        '.' or '..' segments.

            normalize('/a/b/index', './c')   == '/a/b/c'
            normalize('/a/b/index', '../d')  == '/a/d'
        """
        if not specifier:
            raise ResolutionError("[RES-0010] empty import specifier", importer_id, specifier)
        spec = specifier.replace("\\", "/")
        if spec.endswith(self.source_suffix):
            spec = spec[: -len(self.source_suffix)]
        if spec.startswith("/"):
            joined = spec
        else:
            joined = posixpath.join(posixpath.dirname(importer_id), spec)
        normalized = posixpath.normpath(joined)
        # normpath keeps a leading '//' (POSIX allows it to be special)
        if normalized.startswith("//"):
            normalized = "/" + normalized.lstrip("/")
        return normalized

    def candidates(self, normalized: str) -> Tuple[Tuple[str, Path], ...]:
        """Return the (module id, source file) pairs tried for a normalized path, in order."""
        return (
            (normalized, Path(normalized + self.source_suffix)),
            (posixpath.join(normalized, PACKAGE_INIT), Path(normalized, PACKAGE_INIT + self.source_suffix)),
        )

    def resolve(self, importer_id: str, specifier: str) -> str:
        """
        Resolve `specifier` as imported from `importer_id` to a canonical id.

        Raises ResolutionError if no module source exists for the target.
        """
        normalized = self.normalize(importer_id, specifier)
        for module_id, path in self.candidates(normalized):
            if path.is_file():
                return module_id
        raise ResolutionError(
            f"[RES-0010] cannot resolve '{specifier}' imported from '{importer_id}' "
            f"(tried '{normalized}{self.source_suffix}' and "
            f"'{posixpath.join(normalized, PACKAGE_INIT)}{self.source_suffix}')",
            importer_id,
            specifier,
        )

    def resolve_package(self, importer_id: str, specifier: str) -> Optional[str]:
        """
        Resolve `specifier` to a package ('<id>/__init__'), or None if the
        target directory holds no '__init__.py'.
        """
        module_id, path = self.candidates(self.normalize(importer_id, specifier))[1]
        return module_id if path.is_file() else None

    @staticmethod
    def is_package(module_id: str) -> bool:
        return posixpath.basename(module_id) == PACKAGE_INIT

    def resolve_entry(self, entry: str | Path) -> str:
        """
        Resolve a user-supplied entry path (relative to the current directory,
        with or without '.py') to a canonical id.
        """
        absolute = Path(os.path.abspath(entry)).as_posix()
        normalized = self.normalize("/", absolute)
        for module_id, path in self.candidates(normalized):
            if path.is_file():
                return module_id
        raise ResolutionError(f"[RES-0011] entry module '{entry}' not found", None, str(entry))

    def source_path(self, module_id: str) -> Path:
        """Return the source file backing a canonical module id."""
        return Path(module_id + self.source_suffix)
