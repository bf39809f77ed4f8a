"""
Subprocess-based sandbox runner for target scripts.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
import time
from enum import Enum
from pathlib import Path
from typing import cast

from harness.context import TARGET_LOGGER, ExecutionContext
from harness.errors import SandboxExecutionError
from harness.schemas import ExecutionResult
from sandbox import policy
from sandbox import protocol

logger = logging.getLogger(__name__)


class RunnerState(str, Enum):
    IDLE = "idle"
    READING = "reading"
    PREPARING = "preparing"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class SandboxRunner:
    """
    Execute a target script in a child interpreter with best-effort limits.

    The wall-clock timeout is enforced by killing the child. On Unix platforms
    CPU and memory limits are also applied via resource.setrlimit; on Windows
    only the timeout applies. ``execute_file`` never raises.
    """

    DEFAULT_MEMORY_LIMIT_MB: int = 1024
    DEFAULT_TIMEOUT_SECONDS: float = 30.0

    def __init__(
        self,
        memory_limit_mb: int | None = None,
        allowed_modules: list[str] | None = None,
        verbose: bool = False,
    ) -> None:
        self.memory_limit_mb: int = memory_limit_mb or self.DEFAULT_MEMORY_LIMIT_MB
        self.allowed_modules = list(allowed_modules or policy.ALLOWED_MODULES)
        self.verbose = verbose
        self.state = RunnerState.IDLE
        self.history: list[RunnerState] = [RunnerState.IDLE]
        self.last_result: ExecutionResult | None = None
        self._started: float | None = None
        self._finished: float | None = None

    def _enter(self, state: RunnerState) -> None:
        self.state = state
        self.history.append(state)

    def reset(self) -> None:
        self.state = RunnerState.IDLE
        self.history = [RunnerState.IDLE]
        self.last_result = None
        self._started = None
        self._finished = None

    def elapsed_ms(self) -> float:
        if self._started is None or self._finished is None:
            return 0.0
        return max(0.0, (self._finished - self._started) * 1000)

    def execute_file(
        self,
        file_path: str | os.PathLike[str],
        context: ExecutionContext,
        timeout_seconds: float | None = None,
    ) -> ExecutionResult:
        self.reset()
        path = Path(file_path)
        timeout = self.DEFAULT_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        logger.info(f"🚀 Starting execution of {path.name}...")
        self._started = time.perf_counter()

        try:
            if timeout <= 0:
                raise ValueError(f"Timeout must be positive, got {timeout:g}s")
            self._enter(RunnerState.READING)
            if not context.file_info.exists:
                raise FileNotFoundError(f"Target file not found: {context.file_info.original_path}")
            source = self.read_target_file(path)

            self._enter(RunnerState.PREPARING)
            payload = self.prepare_payload(source, path, context)
            logger.debug("🛡️  Sandbox environment prepared")

            self._enter(RunnerState.EXECUTING)
            result = self._run_child(payload, path, timeout)
        except Exception as exc:  # noqa: BLE001
            result = self._failure(path, f"{exc.__class__.__name__}: {exc}")

        self._finished = time.perf_counter()
        result.elapsed_ms = self.elapsed_ms()
        self._enter(RunnerState.COMPLETED if result.success else RunnerState.FAILED)
        self.last_result = result

        if result.success:
            logger.info(f"✅ Execution completed successfully in {result.elapsed_ms:.0f}ms", extra={"color": "GW"})
        else:
            logger.error(f"❌ Execution failed: {result.error}")
        return result

    def read_target_file(self, path: Path) -> str:
        content = path.read_text(encoding="utf-8")
        logger.debug(f"📖 Read {len(content)} characters from {path.name}")
        return content

    def prepare_payload(self, source: str, path: Path, context: ExecutionContext) -> dict[str, object]:
        return {
            "source": source,
            "filename": str(path.resolve()),
            "context": context.to_payload(),
            "allowed_modules": self.allowed_modules,
            "verbose": self.verbose,
        }

    def _run_child(self, payload: dict[str, object], path: Path, timeout_seconds: float) -> ExecutionResult:
        env = os.environ.copy()
        project_root = str(Path(__file__).resolve().parents[1])
        existing_pythonpath = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = (
            f"{project_root}{os.pathsep}{existing_pythonpath}"
            if existing_pythonpath
            else project_root
        )

        logger.debug("⚡ Executing in sandbox...")
        try:
            completed = subprocess.run(
                [sys.executable, "-c", protocol.CHILD_TEMPLATE],
                input=json.dumps(payload, default=str),
                text=True,
                capture_output=True,
                timeout=timeout_seconds,
                env=env,
                preexec_fn=self._limit_resources(timeout_seconds) if os.name != "nt" else None,
            )
        except subprocess.TimeoutExpired:
            result = self._failure(path, f"Timeout after {timeout_seconds:g}s")
            result.timed_out = True
            return result

        if not completed.stdout:
            error = completed.stderr.strip() or "Empty response from sandbox"
            return self._failure(path, error)

        try:
            loaded = cast(object, json.loads(completed.stdout))
        except json.JSONDecodeError as exc:
            return self._failure(path, f"Invalid JSON from sandbox: {exc}")

        if not isinstance(loaded, dict):
            return self._failure(path, "Invalid response type from sandbox")
        data = cast(dict[str, object], loaded)

        self._replay(data)
        warnings = [str(item) for item in cast(list[object], data.get("warnings") or [])]
        output = str(data.get("output") or "")
        if not data.get("success"):
            result = self._failure(path, str(data.get("error") or "Unknown sandbox error"))
            result.warnings = warnings
            result.output = output
            return result
        return ExecutionResult(
            success=True,
            result=data.get("result"),
            elapsed_ms=0.0,
            warnings=warnings,
            output=output,
        )

    def _failure(self, path: Path, message: str) -> ExecutionResult:
        error = SandboxExecutionError(path.name, message)
        return ExecutionResult(success=False, result=None, elapsed_ms=0.0, error=str(error))

    def _replay(self, data: dict[str, object]) -> None:
        """Re-emit the child's log records and console output in this process."""
        for record in cast(list[dict[str, object]], data.get("logs") or []):
            name = str(record.get("name") or TARGET_LOGGER)
            level = record.get("level")
            logging.getLogger(name).log(
                level if isinstance(level, int) else logging.INFO,
                str(record.get("message", "")),
            )
        output = data.get("output")
        if isinstance(output, str) and output:
            sys.stdout.write(output)
            sys.stdout.flush()

    def summary(self) -> dict[str, object]:
        return {
            "state": self.state.value,
            "execution_time_ms": self.elapsed_ms(),
            "has_result": self.last_result is not None and self.last_result.result is not None,
            "error_count": 0 if self.last_result is None or self.last_result.success else 1,
            "last_execution": self._finished,
        }

    def _limit_resources(self, timeout_seconds: float):
        """Return a preexec_fn to enforce resource limits on Unix."""
        def _apply_limits():
            try:
                import resource
            except ImportError:
                return
            cpu_seconds = max(1, int(timeout_seconds) + 1)
            memory_bytes = int(self.memory_limit_mb * 1024 * 1024)
            resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds + 1))
            if hasattr(resource, "RLIMIT_AS"):
                resource.setrlimit(resource.RLIMIT_AS, (memory_bytes, memory_bytes))
            elif hasattr(resource, "RLIMIT_DATA"):
                resource.setrlimit(resource.RLIMIT_DATA, (memory_bytes, memory_bytes))

        return _apply_limits
