"""
Child process protocol for sandbox execution.

The parent writes one JSON payload to stdin; the child rebuilds the context,
runs the target inside a fresh namespace and writes one JSON response to
stdout. Everything the target prints is captured separately so it can never
corrupt the response.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import io
import json
import logging
import sys
import time
import traceback
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, cast

from harness.context import ContextBuilder, ContextView
from sandbox import policy
from sandbox.rewrite import CONTEXT_BINDING, ENTRY_POINT, rewrite_entry_point

CHILD_TEMPLATE = """
from sandbox.protocol import child_main
child_main()
""".strip()


def _load_payload() -> dict[str, object]:
    raw = sys.stdin.read()
    if not raw:
        return {}
    try:
        return cast(dict[str, object], json.loads(raw))
    except json.JSONDecodeError:
        return {}


def _format_error(exc: BaseException) -> str:
    return f"{exc.__class__.__name__}: {exc}"


def _json_default(value: object) -> object:
    dump = getattr(value, "model_dump", None)
    if callable(dump):
        return dump(mode="json")
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if isinstance(value, Mapping):
        return dict(value)
    return str(value)


def _dumps(response: dict[str, object]) -> str:
    try:
        return json.dumps(response, default=_json_default)
    except (TypeError, ValueError):
        response["result"] = repr(response.get("result"))
        return json.dumps(response, default=_json_default)


def _join(args: Iterable[object]) -> str:
    parts = []
    for arg in args:
        if isinstance(arg, (dict, list)):
            parts.append(json.dumps(arg, indent=2, default=str))
        else:
            parts.append(str(arg))
    return " ".join(parts)


class ConsoleShim:
    """Stand-in for the standard streams; everything goes to the target logger."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def log(self, *args: object, **_kwargs: object) -> None:
        self._logger.info(f"[TARGET] {_join(args)}")

    def info(self, *args: object) -> None:
        self._logger.info(f"[TARGET INFO] {_join(args)}")

    def warn(self, *args: object) -> None:
        self._logger.warning(f"[TARGET WARN] {_join(args)}")

    warning = warn

    def error(self, *args: object) -> None:
        self._logger.error(f"[TARGET ERROR] {_join(args)}")

    def debug(self, *args: object) -> None:
        self._logger.debug(f"[TARGET DEBUG] {_join(args)}")


class CapturingHandler(logging.Handler):
    def __init__(self, records: list[dict[str, object]]) -> None:
        super().__init__(logging.DEBUG)
        self.records = records

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(
            {"name": record.name, "level": record.levelno, "message": record.getMessage()}
        )


@dataclass
class RealmOutcome:
    result: Any = None
    warnings: list[str] = field(default_factory=list)


def prepare_realm(
    bindings: Mapping[str, Any],
    filename: str,
    console: ConsoleShim,
    allowed_modules: Iterable[str] | None = None,
    capability_modules: Iterable[str] | None = None,
) -> dict[str, Any]:
    """Namespace holding exactly the context bindings plus the ambient allow-list."""
    visible = {**bindings, "console": console}
    guard = policy.build_import_guard(allowed_modules, capability_modules)
    namespace: dict[str, Any] = {}
    namespace.update(policy.ambient_globals())
    namespace.update(visible)
    namespace["exports"] = {}
    namespace["require"] = policy.build_require(visible, allowed_modules)
    namespace[CONTEXT_BINDING] = ContextView(visible)
    namespace["__builtins__"] = policy.build_restricted_builtins(guard, print_fn=console.log)
    namespace["__name__"] = "__sandbox__"
    namespace["__file__"] = filename
    return namespace


def settle(value: Any) -> Any:
    """Wait for awaitables returned by the entry point."""
    if not inspect.isawaitable(value):
        return value

    async def _await() -> Any:
        return await value

    return asyncio.run(_await())


def run_in_realm(source: str, filename: str, namespace: dict[str, Any]) -> RealmOutcome:
    rewritten = rewrite_entry_point(source, filename)
    outcome = RealmOutcome()
    if rewritten.removed_params:
        outcome.warnings.append(
            f"Entry point parameters {rewritten.removed_params} removed and bound to the context"
        )

    exec(rewritten.code, namespace)

    entry = namespace.get(ENTRY_POINT)
    if callable(entry):
        outcome.result = settle(entry())
    else:
        outcome.result = namespace.get("exports", {})
    return outcome


def _install_capture(records: list[dict[str, object]], verbose: bool) -> None:
    root = logging.getLogger()
    root.handlers = [CapturingHandler(records)]
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    # The parent already reported capability load results.
    logging.getLogger("harness.loader").setLevel(logging.CRITICAL)


def child_main() -> None:
    """Entry point for the sandbox child process."""
    start = time.perf_counter()
    real_stdout = sys.stdout
    payload = _load_payload()
    source = str(payload.get("source", ""))
    filename = str(payload.get("filename", "<target>"))
    allowed_modules = cast(list[str], payload.get("allowed_modules") or list(policy.ALLOWED_MODULES))
    records: list[dict[str, object]] = []
    _install_capture(records, bool(payload.get("verbose")))
    output = io.StringIO()

    response: dict[str, object]
    try:
        with contextlib.redirect_stdout(output):
            context = ContextBuilder.restore(cast(dict[str, Any], payload.get("context") or {}))
            console = ConsoleShim(context.logger)
            namespace = prepare_realm(
                context.bindings(),
                filename,
                console,
                allowed_modules=allowed_modules,
                capability_modules=context.capability_modules(),
            )
            outcome = run_in_realm(source, filename, namespace)
        response = {
            "success": True,
            "result": outcome.result,
            "error": None,
            "warnings": outcome.warnings,
        }
    except BaseException as exc:  # noqa: BLE001 - capture all child errors
        records.append({"name": "sandbox", "level": logging.DEBUG, "message": traceback.format_exc()})
        response = {
            "success": False,
            "result": None,
            "error": _format_error(exc),
            "warnings": [],
        }

    response["runtime_ms"] = (time.perf_counter() - start) * 1000
    response["logs"] = records
    response["output"] = output.getvalue()
    _ = real_stdout.write(_dumps(response))
    real_stdout.flush()


if __name__ == "__main__":
    child_main()
