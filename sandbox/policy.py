"""
Sandbox policy definitions: restricted builtins, import guard and source checks.
"""

from __future__ import annotations

import ast
import builtins
from collections.abc import Callable, Iterable, Sequence
from types import ModuleType, SimpleNamespace
from typing import cast

BLOCKED_BUILTINS = [
    "__import__",
    "eval",
    "exec",
    "compile",
    "open",
    "input",
    "print",
    "breakpoint",
    "globals",
    "locals",
    "vars",
    "dir",
    "getattr",
    "setattr",
    "delattr",
    "help",
    "exit",
    "quit",
    "memoryview",
    "BaseException",
    "GeneratorExit",
    "KeyboardInterrupt",
    "SystemExit",
]

BLOCKED_MODULES = [
    "os",
    "sys",
    "subprocess",
    "socket",
    "urllib",
    "http",
    "ctypes",
    "importlib",
    "builtins",
    "threading",
    "signal",
    "gc",
    "inspect",
]

ALLOWED_MODULES = [
    "math",
    "random",
    "itertools",
    "functools",
    "collections",
    "string",
    "json",
    "re",
]

# Attributes that lead from ordinary objects back to interpreter frames or
# that resolve attribute paths held in strings.
BLOCKED_ATTRIBUTES = {
    "gi_frame",
    "gi_code",
    "gi_yieldfrom",
    "cr_frame",
    "cr_code",
    "cr_await",
    "ag_frame",
    "ag_code",
    "f_globals",
    "f_locals",
    "f_builtins",
    "f_back",
    "f_code",
    "tb_frame",
    "tb_next",
    "mro",
    "format",
    "format_map",
    "get_field",
    "vformat",
    "parse",
    "convert_field",
    "format_field",
}

# Module members left out of the sandbox view. Formatter resolves attribute
# paths written inside strings, out of reach of the source check.
HIDDEN_MODULE_MEMBERS = {
    "string": {"Formatter", "Template"},
}

# Dunder methods a sandboxed class may define. Anything the host could
# trigger outside an evaluation (finalizers, context managers) stays out.
ALLOWED_DUNDER_METHODS = {
    "__init__",
    "__len__",
    "__iter__",
    "__next__",
    "__contains__",
    "__getitem__",
    "__setitem__",
    "__eq__",
    "__lt__",
    "__le__",
    "__gt__",
    "__ge__",
    "__hash__",
    "__add__",
    "__sub__",
    "__mul__",
    "__call__",
}

SANDBOX_FILENAME = "<sandbox>"


class PolicyViolation(Exception):
    """Source rejected before evaluation."""


def _normalize_modules(modules: Iterable[str] | None) -> set[str]:
    return {name for name in (modules or [])}


def _public_view(module: ModuleType) -> SimpleNamespace:
    """Expose a module's public, non-module attributes only."""
    hidden = HIDDEN_MODULE_MEMBERS.get(module.__name__, set())
    return SimpleNamespace(
        **{
            name: value
            for name, value in vars(module).items()
            if not name.startswith("_") and not isinstance(value, ModuleType) and name not in hidden
        }
    )


def build_import_guard(
    allowed_modules: Iterable[str] | None = None,
    blocked_modules: Iterable[str] | None = None,
) -> Callable[[str, dict[str, object] | None, dict[str, object] | None, Sequence[str], int], object]:
    """
    Build a restricted __import__ hook that only allows allowlisted modules
    and explicitly blocks denied modules. Allowed modules are handed to the
    sandbox as public views, never as the host's module objects.
    """
    allowed = _normalize_modules(allowed_modules or ALLOWED_MODULES)
    blocked = _normalize_modules(blocked_modules or BLOCKED_MODULES)
    original_import: Callable[
        [str, dict[str, object] | None, dict[str, object] | None, Sequence[str], int],
        ModuleType,
    ] = cast(
        Callable[[str, dict[str, object] | None, dict[str, object] | None, Sequence[str], int], ModuleType],
        builtins.__import__,
    )

    def guarded_import(
        name: str,
        globals: dict[str, object] | None = None,
        locals: dict[str, object] | None = None,
        fromlist: Sequence[str] = (),
        level: int = 0,
    ) -> object:
        root = name.split(".")[0]
        if level != 0:
            raise ImportError("Relative imports are blocked by sandbox policy")
        if root in blocked or name in blocked:
            raise ImportError(f"Import of '{root}' blocked by sandbox policy")
        if root not in allowed or name != root:
            raise ImportError(f"Import of '{name}' is not allowlisted")
        return _public_view(original_import(name, None, None, (), 0))

    return guarded_import


def build_builtins(
    allowed_modules: Iterable[str] | None = None,
    blocked_names: Iterable[str] | None = None,
) -> dict[str, object]:
    """Return a fresh builtins mapping for one sandbox scope.

    The host's builtins module is never patched; each scope gets its own
    dict with blocked names removed and __import__ replaced by the guard.
    """
    blocked = _normalize_modules(blocked_names or BLOCKED_BUILTINS)
    scope_builtins: dict[str, object] = {
        name: value
        for name, value in vars(builtins).items()
        if not name.startswith("_") and name not in blocked
    }
    scope_builtins["__import__"] = build_import_guard(allowed_modules=allowed_modules)
    scope_builtins["__build_class__"] = builtins.__build_class__
    return scope_builtins


class _SourceChecker(ast.NodeVisitor):
    def __init__(self, allowed_modules: set[str]) -> None:
        self.allowed_modules = allowed_modules

    def _reject(self, node: ast.AST, reason: str) -> None:
        line = getattr(node, "lineno", "?")
        raise PolicyViolation(f"line {line}: {reason}")

    def visit_Try(self, node: ast.AST) -> None:
        self._reject(node, "try statements are not allowed")

    visit_TryStar = visit_Try

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("__") or node.attr in BLOCKED_ATTRIBUTES:
            self._reject(node, f"access to attribute '{node.attr}' is not allowed")
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("__"):
            self._reject(node, f"use of name '{node.id}' is not allowed")

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        if node.name.startswith("__") and node.name not in ALLOWED_DUNDER_METHODS:
            self._reject(node, f"defining '{node.name}' is not allowed")
        self.generic_visit(node)

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            self._check_module(node, alias.name)

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        if node.level:
            self._reject(node, "relative imports are not allowed")
        self._check_module(node, node.module or "")
        for alias in node.names:
            if alias.name.startswith("_") or alias.name == "*":
                self._reject(node, f"importing '{alias.name}' is not allowed")

    def _check_module(self, node: ast.AST, name: str) -> None:
        if name not in self.allowed_modules:
            self._reject(node, f"import of '{name}' is not allowlisted")


def validate_source(source: str, allowed_modules: Iterable[str] | None = None) -> ast.Module:
    """Parse and check sandbox source.

    `try` is rejected because an interrupt is delivered as an exception
    raised inside the sandboxed frame; nothing in the sandbox may catch it.
    Dunder access is rejected because it is the usual route from a plain
    object back to the host's modules.
    """
    tree = ast.parse(source, filename=SANDBOX_FILENAME, mode="exec")
    _SourceChecker(_normalize_modules(allowed_modules or ALLOWED_MODULES)).visit(tree)
    return tree
