"""
Module source transformer.

Parses a Python module and lowers it to the loader form used inside a bundle:

  - relative imports become calls to the injected `require` binding:

        from .util import helper, VERSION as version
            ->  helper = require.from_import('./util', 'helper', submodule='./util/helper')
                version = require.from_import('./util', 'VERSION', submodule='./util/VERSION')

        from .pkg.mod import x
            ->  x = require.from_import('./pkg/mod', 'x', submodule='./pkg/mod/x', packages=('./pkg',))

        from .. import config
            ->  config = require.from_import('../', 'config', submodule='../config')

    `from_import` first initializes the enclosing packages, then looks the
    name up on the target module, then falls back to a submodule of that
    name, and raises ImportError when neither exists.

  - every public name bound at module level is published on the injected
    `exports` container right after the statement that binds it.

Absolute imports (`import os`, `from json import dumps`) are left alone: they
are served by the interpreter that runs the bundle.
"""

#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2025-2026 gwz

import ast
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

REQUIRE_NAME = "require"
EXPORTS_NAME = "exports"
FROM_IMPORT_NAME = "from_import"
RESERVED_BINDINGS = frozenset({REQUIRE_NAME, EXPORTS_NAME})

# Top-level statements that bind their target names whenever they complete.
_DEFINITE_BINDERS = (
    ast.Assign, ast.AugAssign, ast.AnnAssign,
    ast.Import, ast.ImportFrom,
    ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef,
)


class ImportKind(Enum):
    REQUIRED = "required"    # must resolve to a module
    PACKAGE = "package"      # bundled only if it names a package ('__init__.py')
    SUBMODULE = "submodule"  # `from <parent> import <name>` where <name> may be a module


@dataclass(frozen=True)
class ImportRequest:
    """
    One specifier a module may require at run time.

    - specifier: raw specifier as it appears in the lowered code
    - kind: how the graph builder treats a specifier it cannot resolve
    - parent: for SUBMODULE requests, the specifier of the `from` target
    """
    specifier: str
    kind: ImportKind = ImportKind.REQUIRED
    parent: Optional[str] = None


@dataclass
class ParseError(Exception):
    message: str
    module_id: Optional[str] = None
    filename: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None

    def __str__(self) -> str:
        return self.message


@dataclass
class TransformResult:
    """
    Output of parse_and_transform().

    - tree: the lowered AST
    - imports: import requests in source order; a specifier may occur more
      than once with different kinds
    - code: the lowered source text
    """
    tree: ast.Module
    imports: List[ImportRequest] = field(default_factory=list)
    code: str = ""

    @property
    def import_specifiers(self) -> List[str]:
        """Every specifier the module may require, in source order, without duplicates."""
        return list(dict.fromkeys(request.specifier for request in self.imports))


def relative_specifier(level: int, module: Optional[str]) -> str:
    """
    Convert a relative import (dot count + dotted module) to a path specifier.

        relative_specifier(1, 'util')      == './util'
        relative_specifier(2, 'pkg.mod')   == '../pkg/mod'
        relative_specifier(3, None)        == '../../'
    """
    prefix = "./" if level == 1 else "../" * (level - 1)
    if module:
        return prefix + module.replace(".", "/")
    return prefix


def _submodule_specifier(parent: str, name: str) -> str:
    return parent + name if parent.endswith("/") else f"{parent}/{name}"


def _package_specifiers(level: int, module: str) -> List[str]:
    """Specifiers of the packages enclosing `module`, outermost first."""
    parts = module.split(".")
    return [relative_specifier(level, ".".join(parts[:i])) for i in range(1, len(parts))]


def _from_import_call(target: str, name: str, submodule: str, packages: List[str]) -> ast.Call:
    keywords = [ast.keyword(arg="submodule", value=ast.Constant(value=submodule))]
    if packages:
        keywords.append(ast.keyword(
            arg="packages",
            value=ast.Tuple(elts=[ast.Constant(value=p) for p in packages], ctx=ast.Load()),
        ))
    return ast.Call(
        func=ast.Attribute(value=ast.Name(id=REQUIRE_NAME, ctx=ast.Load()), attr=FROM_IMPORT_NAME, ctx=ast.Load()),
        args=[ast.Constant(value=target), ast.Constant(value=name)],
        keywords=keywords,
    )


class ImportLowering(ast.NodeTransformer):
    """Rewrites relative imports into `require` calls and records every import request."""

    def __init__(self, module_id: str, filename: Optional[str]):
        self.module_id = module_id
        self.filename = filename
        self.imports: List[ImportRequest] = []

    def _record(self, specifier: str, kind: ImportKind = ImportKind.REQUIRED, parent: Optional[str] = None) -> None:
        request = ImportRequest(specifier, kind, parent)
        if request not in self.imports:
            self.imports.append(request)

    def visit_ImportFrom(self, node: ast.ImportFrom):
        if node.level == 0:
            return node

        if any(alias.name == "*" for alias in node.names):
            raise ParseError(
                f"[PAR-0020] wildcard import from '{'.' * node.level}{node.module or ''}' cannot be bundled",
                module_id=self.module_id,
                filename=self.filename,
                line=node.lineno,
                column=node.col_offset + 1,
            )

        target = relative_specifier(node.level, node.module)
        packages = _package_specifiers(node.level, node.module) if node.module else []
        for package in packages:
            self._record(package, ImportKind.PACKAGE)
        # `from . import x` names a directory, which may or may not be a package.
        self._record(target, ImportKind.REQUIRED if node.module else ImportKind.PACKAGE)

        lowered: List[ast.stmt] = []
        for alias in node.names:
            submodule = _submodule_specifier(target, alias.name)
            self._record(submodule, ImportKind.SUBMODULE, target)
            assign = ast.Assign(
                targets=[ast.Name(id=alias.asname or alias.name, ctx=ast.Store())],
                value=_from_import_call(target, alias.name, submodule, packages),
            )
            lowered.append(ast.copy_location(assign, node))
        return lowered

    def visit_Call(self, node: ast.Call):
        if (
            isinstance(node.func, ast.Name)
            and node.func.id == REQUIRE_NAME
            and len(node.args) == 1
            and not node.keywords
            and isinstance(node.args[0], ast.Constant)
            and isinstance(node.args[0].value, str)
        ):
            self._record(node.args[0].value)
        self.generic_visit(node)
        return node


class _BindingCollector(ast.NodeVisitor):
    """Collects names a statement binds in the scope it runs in (nested scopes excluded)."""

    def __init__(self):
        self.names: Dict[str, None] = {}

    @classmethod
    def collect(cls, node: ast.AST) -> List[str]:
        collector = cls()
        collector.visit(node)
        return list(collector.names)

    def _add(self, name: Optional[str]) -> None:
        if name:
            self.names.setdefault(name, None)

    def visit_Name(self, node: ast.Name):
        if isinstance(node.ctx, ast.Store):
            self._add(node.id)

    def visit_FunctionDef(self, node):
        for decorator in node.decorator_list:
            self.visit(decorator)
        self._add(node.name)

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef):
        for decorator in node.decorator_list:
            self.visit(decorator)
        for base in node.bases:
            self.visit(base)
        self._add(node.name)

    def visit_Lambda(self, node):
        pass

    def visit_ListComp(self, node):
        pass

    visit_SetComp = visit_DictComp = visit_GeneratorExp = visit_ListComp

    def visit_Import(self, node: ast.Import):
        for alias in node.names:
            self._add(alias.asname or alias.name.split(".")[0])

    def visit_ImportFrom(self, node: ast.ImportFrom):
        if node.module == "__future__":
            return
        for alias in node.names:
            if alias.name != "*":
                self._add(alias.asname or alias.name)

    def visit_ExceptHandler(self, node: ast.ExceptHandler):
        self._add(node.name)
        self.generic_visit(node)

    def visit_MatchAs(self, node):
        self._add(node.name)
        self.generic_visit(node)

    def visit_MatchStar(self, node):
        self._add(node.name)

    def visit_MatchMapping(self, node):
        self._add(node.rest)
        self.generic_visit(node)


def _definite_names(stmt: ast.stmt) -> List[str]:
    """Names bound unconditionally once `stmt` completes."""
    if not isinstance(stmt, _DEFINITE_BINDERS):
        return []
    if isinstance(stmt, ast.AnnAssign) and stmt.value is None:
        return []
    if isinstance(stmt, ast.Assign):
        targets: List[ast.AST] = list(stmt.targets)
    elif isinstance(stmt, (ast.AugAssign, ast.AnnAssign)):
        targets = [stmt.target]
    else:
        return _BindingCollector.collect(stmt)
    names: Dict[str, None] = {}
    for target in targets:
        for name in _BindingCollector.collect(target):
            names.setdefault(name, None)
    return list(names)


def _is_public(name: str) -> bool:
    return not name.startswith("_") and name not in RESERVED_BINDINGS


def _publish(name: str, guarded: bool) -> ast.stmt:
    if guarded:
        return ast.parse(f"if {name!r} in globals():\n    {EXPORTS_NAME}.{name} = {name}").body[0]
    return ast.parse(f"{EXPORTS_NAME}.{name} = {name}").body[0]


def _unpublish(name: str) -> ast.stmt:
    return ast.parse(f"vars({EXPORTS_NAME}).pop({name!r}, None)").body[0]


def publish_exports(tree: ast.Module, module_id: str, filename: Optional[str] = None) -> ast.Module:
    """
    Append `exports.<name> = <name>` after each top-level statement binding
    public names. Names that a statement may or may not bind (branches, loops,
    walrus expressions) are published only if present in the module namespace.
    """
    body: List[ast.stmt] = []
    for stmt in tree.body:
        bound = _BindingCollector.collect(stmt)
        reserved = [name for name in bound if name in RESERVED_BINDINGS]
        if reserved:
            raise ParseError(
                f"[PAR-0030] module-level code rebinds reserved name '{reserved[0]}'",
                module_id=module_id,
                filename=filename,
                line=stmt.lineno,
                column=stmt.col_offset + 1,
            )

        body.append(stmt)
        definite = set(_definite_names(stmt))
        for name in bound:
            if _is_public(name):
                body.append(ast.copy_location(_publish(name, guarded=name not in definite), stmt))

        if isinstance(stmt, ast.Delete):
            for target in stmt.targets:
                if isinstance(target, ast.Name) and _is_public(target.id):
                    body.append(ast.copy_location(_unpublish(target.id), stmt))

    tree.body = body
    return tree


def parse_and_transform(source_text: str, module_id: str, filename: Optional[str] = None) -> TransformResult:
    """
    Parse `source_text` as module `module_id` and lower it to loader form.

    Raises ParseError on malformed input.
    """
    filename = filename or module_id + ".py"
    try:
        tree = ast.parse(source_text, filename=filename)
    except SyntaxError as e:
        raise ParseError(
            f"[PAR-0010] {e.msg}",
            module_id=module_id,
            filename=filename,
            line=e.lineno,
            column=e.offset,
        ) from e

    lowering = ImportLowering(module_id, filename)
    tree = lowering.visit(tree)
    tree = publish_exports(tree, module_id, filename)
    ast.fix_missing_locations(tree)

    return TransformResult(
        tree=tree,
        imports=lowering.imports,
        code=ast.unparse(tree) + "\n",
    )
