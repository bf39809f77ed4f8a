"""
Sandbox policy definitions and import/builtin guards.

The guards only apply to code compiled against the realm namespace. Library
code imported by a capability keeps the interpreter's real builtins.
"""

from __future__ import annotations

import builtins
import importlib
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from types import ModuleType
from typing import Any, cast

BLOCKED_BUILTINS = [
    "open",
    "eval",
    "exec",
    "compile",
    "input",
    "breakpoint",
    "exit",
    "quit",
    "help",
]

ALLOWED_MODULES = [
    "asyncio",
    "collections",
    "csv",
    "dataclasses",
    "datetime",
    "decimal",
    "functools",
    "itertools",
    "json",
    "math",
    "random",
    "re",
    "statistics",
    "string",
    "time",
    "typing",
]

ImportHook = Callable[[str, dict[str, object] | None, dict[str, object] | None, Sequence[str], int], ModuleType]


def _normalize_modules(modules: Iterable[str] | None) -> set[str]:
    return {name.split(".")[0] for name in (modules or [])}


def build_import_guard(
    allowed_modules: Iterable[str] | None = None,
    capability_modules: Iterable[str] | None = None,
) -> ImportHook:
    """
    Build a restricted __import__ hook that only allows allowlisted modules
    and the modules backing loaded capabilities.
    """
    allowed = _normalize_modules(allowed_modules or ALLOWED_MODULES) | _normalize_modules(capability_modules)
    original_import = cast(ImportHook, builtins.__import__)

    def guarded_import(
        name: str,
        globals: dict[str, object] | None = None,
        locals: dict[str, object] | None = None,
        fromlist: Sequence[str] = (),
        level: int = 0,
    ) -> ModuleType:
        if level != 0:
            raise ImportError("Relative imports are blocked by sandbox policy")
        root = name.split(".")[0]
        if root not in allowed:
            raise ImportError(f"Import of '{root}' is not allowlisted")
        return original_import(name, globals, locals, fromlist, level)

    return guarded_import


def build_restricted_builtins(
    import_guard: ImportHook,
    print_fn: Callable[..., None] | None = None,
    blocked_names: Iterable[str] | None = None,
) -> dict[str, object]:
    """Copy of builtins with dangerous names disabled and import guarded."""
    table: dict[str, object] = dict(vars(builtins))

    def _blocked(*_args: object, **_kwargs: object) -> None:
        raise RuntimeError("Blocked by sandbox policy")

    for name in blocked_names or BLOCKED_BUILTINS:
        if name in table:
            table[name] = _blocked
    table["__import__"] = import_guard
    if print_fn is not None:
        table["print"] = print_fn
    return table


def build_require(
    bindings: Mapping[str, Any],
    allowed_modules: Iterable[str] | None = None,
) -> Callable[[str], Any]:
    """Module accessor: capability aliases first, then allowlisted modules."""
    allowed = _normalize_modules(allowed_modules or ALLOWED_MODULES)

    def require(name: str) -> Any:
        if name in bindings:
            return bindings[name]
        if name.split(".")[0] in allowed:
            return importlib.import_module(name)
        raise ImportError(f"Module '{name}' is not available in the sandbox")

    return require


def ambient_globals() -> dict[str, object]:
    """Globals every realm receives besides the context bindings."""
    return {
        "sleep": time.sleep,
        "monotonic": time.monotonic,
        "perf_counter": time.perf_counter,
    }
