"""
Pipeline driver: load capabilities, admit, build the context, execute, report.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from harness import __version__
from harness.admission import AbortStrategy, AdmissionGate, validate_script_protection
from harness.colorlog import ColorLog
from harness.context import ContextBuilder, ExecutionContext, mask_sensitive_data
from harness.dbutils import CONNECTION_KEYS, create_database_utilities
from harness.errors import ConfigError, HarnessError, ModuleLoadError, ScriptValidationError
from harness.loader import CapabilityRegistry, ModuleLoader, Strictness, capability_specs
from harness.schemas import AdmissionDecision, ExecutionResult, LoadSummary
from runcode.config import RunCodeConfig
from sandbox.executor import SandboxRunner

logger = logging.getLogger(__name__)


@dataclass
class RunOptions:
    target: str
    args: dict[str, object] = field(default_factory=dict)
    param_file: str | None = None
    timeout_seconds: float | None = None
    verbose: bool = False
    dry_run: bool = False


class RunCode:
    """Drive one invocation from capability loading to the execution report."""

    def __init__(
        self,
        config: RunCodeConfig | None = None,
        loader: ModuleLoader | None = None,
        runner: SandboxRunner | None = None,
        abort: AbortStrategy | None = None,
    ) -> None:
        self.config = config or RunCodeConfig()
        self.loader = loader or ModuleLoader(capability_specs(self.config.capabilities))
        self.runner = runner or SandboxRunner(memory_limit_mb=self.config.memory_limit_mb)
        self.abort = abort
        self.registry: CapabilityRegistry | None = None
        self.load_summary: LoadSummary | None = None
        self.context: ExecutionContext | None = None
        self.decision: AdmissionDecision | None = None
        self._start = time.perf_counter()

    def run(self, options: RunOptions) -> int:
        """Returns the process exit code."""
        self._start = time.perf_counter()
        ColorLog.BW("🚀 RunCode - Python Sandbox Executor")
        ColorLog.BW("================================================")
        try:
            self.runner.verbose = options.verbose
            target = self.check_target(options.target)
            self.load_modules()
            source = target.read_text(encoding="utf-8")

            if options.dry_run:
                logger.info("🧪 Dry run: admission gate and execution skipped")
            else:
                self.decision = self.admit(source, options.args)

            self.context = self.build_context(options)
            if not validate_script_protection(source, self.config.required_markers):
                raise ScriptValidationError("Script validation failed - missing required signatures")

            if options.dry_run:
                ColorLog.GW("✅ Dry run completed: target is valid")
                return 0

            result = self.execute(target, options.timeout_seconds)
            self.report_results(result)
            return 0 if result.success else 1
        except HarnessError as exc:
            logger.error(f"💥 {exc.__class__.__name__}: {exc}")
            return 1
        except OSError as exc:
            logger.error(f"💥 Cannot read target: {exc}")
            return 1

    def check_target(self, target: str) -> Path:
        path = Path(target)
        if not path.is_file():
            raise ConfigError(f"Target file not found: {target}")
        return path

    def load_modules(self, strictness: Strictness = Strictness.FULL) -> CapabilityRegistry:
        self.registry, self.load_summary = self.loader.load_all(strictness)
        if not self.load_summary.is_valid:
            raise ModuleLoadError("Critical modules failed to load", self.load_summary.failed)
        logger.info(
            f"✅ Modules loaded: {len(self.load_summary.loaded)} successful, "
            f"{len(self.load_summary.failed)} failed",
            extra={"color": "GW"},
        )
        return self.registry

    def admit(self, source: str, args: dict[str, object]) -> AdmissionDecision:
        if self.registry is None:
            raise ModuleLoadError("Capabilities must be loaded before admission")
        db_params = {key: args[key] for key in CONNECTION_KEYS if args.get(key) is not None}
        gate = AdmissionGate(
            settings=self.config.admission,
            db_utils=create_database_utilities(self.registry, self.config.database),
            abort=self.abort,
            bypass_marker=self.config.bypass_marker,
        )
        return gate.evaluate(source, db_params)

    def build_context(self, options: RunOptions) -> ExecutionContext:
        if self.registry is None:
            raise ModuleLoadError("Capabilities must be loaded before building the context")
        if options.verbose:
            logger.debug(f"Arguments: {mask_sensitive_data(options.args)}")
        builder = ContextBuilder(self.registry, self.config)
        return builder.build(options.args, options.target, options.param_file)

    def execute(self, target: Path, timeout_seconds: float | None = None) -> ExecutionResult:
        if self.context is None:
            raise ConfigError("Execution context has not been built")
        logger.info("⚡ Starting execution...")
        logger.info(f"Target: {target.name}")
        if self.context.param_file:
            logger.info(f"Extra params: {Path(self.context.param_file).name}")
        return self.runner.execute_file(
            target,
            self.context,
            timeout_seconds=self.config.timeout_seconds if timeout_seconds is None else timeout_seconds,
        )

    def report_results(self, result: ExecutionResult) -> None:
        total_ms = (time.perf_counter() - self._start) * 1000

        ColorLog.BW("📊 EXECUTION REPORT")
        ColorLog.BW("==================")
        if result.success:
            ColorLog.GW(f"✅ SUCCESS - Execution completed in {result.elapsed_ms:.0f}ms")
            if result.result is not None:
                ColorLog.BW("📤 Result:", result.result)
        else:
            ColorLog.RW(f"❌ FAILED - Execution failed after {result.elapsed_ms:.0f}ms")
            ColorLog.RW("Error:", result.error)

        if result.warnings:
            ColorLog.YW(f"⚠️  {len(result.warnings)} warning(s) occurred")
        ColorLog.BW(f"⏱️  Total runtime: {total_ms:.0f}ms")

        if self.load_summary is not None:
            ColorLog.WB(
                f"📦 Modules: {len(self.load_summary.loaded)} loaded, "
                f"{len(self.load_summary.failed)} failed, "
                f"{len(self.load_summary.fallbacks)} fallbacks"
            )


def show_version() -> None:
    ColorLog.BW(f"RunCode v{__version__}")
    ColorLog.BW("Python Sandbox Executor")


def show_help() -> None:
    lines = [
        "RunCode - Python Sandbox Executor",
        "========================================",
        "",
        "Purpose: Execute Python files in a controlled sandbox environment",
        "",
        "Available capabilities in the sandbox:",
        "  - sql             : DB-API database driver (sqlite3 by default)",
        "  - dates           : Date/time helper (pendulum, clock stub fallback)",
        "  - cli             : Command-line toolkit (typer)",
        "  - fs              : File operations (shutil, os fallback)",
        "  - xlsx, excel     : Excel workbook processing (openpyxl)",
        "  - xlsx_calc       : Excel formula evaluation (formulas)",
        "  - pdf_reader      : PDF text extraction (pypdf)",
        "  - mailer          : SMTP email sending (smtplib)",
        "  - exec_sync       : Child process execution (subprocess.run)",
        "  - ColorLog        : Colored console logging",
        "",
        "Database utilities:",
        "  - db_connect             : Connect to database with parameters",
        "  - db_close               : Close database connection",
        "  - execute_query          : Execute SQL queries",
        "  - process_db_parameters  : Process DB connection parameters",
        "",
        "Your script may define a main() function:",
        "  def main():",
        "      db_connect()",
        "      rows = execute_query('SELECT 1 AS one')",
        "      logger.info(argv)",
        "      return rows",
        "",
        "Required markers: #Sheba and #labDepartment must appear in the script.",
    ]
    for line in lines:
        ColorLog.BW(line)
