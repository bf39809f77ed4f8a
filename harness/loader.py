"""
Capability loading.

Imports every named capability a target script may use, records what failed,
installs degraded fallbacks where one exists and reports whether the critical
set is complete. Nothing raised by an import escapes ``load_all``.
"""

from __future__ import annotations

import importlib
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any

from harness.colorlog import ColorLog
from harness.schemas import LoadSummary

logger = logging.getLogger(__name__)

Importer = Callable[[str], Any]


class Strictness(str, Enum):
    FULL = "full"
    SERVER = "server"
    NONE = "none"


CRITICAL_CAPABILITIES: dict[Strictness, tuple[str, ...]] = {
    Strictness.FULL: ("sql", "dates", "fs"),
    Strictness.SERVER: ("dates", "fs"),
    Strictness.NONE: (),
}

# Important for the PDF and mail scripts, but a run can go ahead without them.
OPTIONAL_CAPABILITIES: tuple[str, ...] = ("pdf_reader", "mailer")


@dataclass(frozen=True)
class CapabilitySpec:
    alias: str
    module: str
    builtin: bool = False


DEFAULT_CAPABILITIES: tuple[CapabilitySpec, ...] = (
    CapabilitySpec("sql", "sqlite3"),
    CapabilitySpec("dates", "pendulum"),
    CapabilitySpec("cli", "typer"),
    CapabilitySpec("fs", "shutil"),
    CapabilitySpec("xlsx", "openpyxl"),
    CapabilitySpec("xlsx_calc", "formulas"),
    CapabilitySpec("pdf_reader", "pypdf"),
    CapabilitySpec("mailer", "smtplib"),
    CapabilitySpec("child_process", "subprocess", builtin=True),
)


def capability_specs(overrides: Mapping[str, str] | None = None) -> tuple[CapabilitySpec, ...]:
    """Default table with module names replaced from ``overrides`` (alias -> module)."""
    if not overrides:
        return DEFAULT_CAPABILITIES
    specs = [
        CapabilitySpec(spec.alias, overrides.get(spec.alias, spec.module), spec.builtin)
        for spec in DEFAULT_CAPABILITIES
    ]
    known = {spec.alias for spec in specs}
    specs.extend(CapabilitySpec(alias, module) for alias, module in overrides.items() if alias not in known)
    return tuple(specs)


class ClockStub:
    """Minimal stand-in for the date library."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def format(self, *_args: object) -> str:
        return self.now().isoformat()

    def is_valid(self, *_args: object) -> bool:
        return True

    def unix(self) -> int:
        return int(time.time())


def _clock_fallback(importer: Importer) -> Any:
    return ClockStub()


def _file_api_fallback(importer: Importer) -> Any:
    return importer("os")


FALLBACKS: dict[str, Callable[[Importer], Any]] = {
    "dates": _clock_fallback,
    "fs": _file_api_fallback,
}


@dataclass(frozen=True)
class CapabilityRegistry:
    """Read-only view of loaded capabilities.

    Every registered alias maps to a live handle, a fallback or ``None``.
    Asking for an alias that was never registered raises ``KeyError``.
    """

    handles: Mapping[str, Any] = field(default_factory=dict)
    errors: Mapping[str, str] = field(default_factory=dict)
    modules: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "handles", MappingProxyType(dict(self.handles)))
        object.__setattr__(self, "errors", MappingProxyType(dict(self.errors)))
        object.__setattr__(self, "modules", MappingProxyType(dict(self.modules)))

    def __contains__(self, name: object) -> bool:
        return name in self.handles

    def get(self, name: str) -> Any:
        if name not in self.handles:
            raise KeyError(f"Unknown capability: {name}")
        return self.handles[name]

    def is_loaded(self, name: str) -> bool:
        return self.handles.get(name) is not None

    def names(self) -> list[str]:
        return list(self.handles)


class ModuleLoader:
    """Load the fixed capability table once per process."""

    def __init__(
        self,
        specs: Iterable[CapabilitySpec] | None = None,
        importer: Importer | None = None,
    ) -> None:
        self.specs = tuple(specs or DEFAULT_CAPABILITIES)
        self.importer: Importer = importer or importlib.import_module
        self._handles: dict[str, Any] = {}
        self._errors: dict[str, str] = {}
        self._modules: dict[str, str] = {}
        self._loaded: list[str] = []
        self._failed: list[str] = []
        self._fallbacks: list[str] = []

    def load_all(self, strictness: Strictness = Strictness.FULL) -> tuple[CapabilityRegistry, LoadSummary]:
        logger.info("🔄 Loading required modules...")
        self._reset()
        for spec in self.specs:
            self._load(spec)
        self._add_utilities()

        if self._failed:
            logger.error(f"❌ Failed to load {len(self._failed)} modules: {self._failed}")

        registry = CapabilityRegistry(self._handles, self._errors, self._modules)
        summary = LoadSummary(
            loaded=list(self._loaded),
            failed=list(self._failed),
            fallbacks=list(self._fallbacks),
            total_capabilities=len(self._handles),
            is_valid=self.validate_critical(registry, strictness),
        )
        return registry, summary

    def _reset(self) -> None:
        self._handles.clear()
        self._errors.clear()
        self._modules.clear()
        self._loaded.clear()
        self._failed.clear()
        self._fallbacks.clear()

    def _load(self, spec: CapabilitySpec) -> None:
        try:
            self._handles[spec.alias] = self.importer(spec.module)
            self._modules[spec.alias] = spec.module
            self._loaded.append(spec.alias)
            logger.debug(f"✅ {spec.module} loaded as '{spec.alias}'")
        except Exception as exc:  # noqa: BLE001
            self._failed.append(spec.alias)
            self._errors[spec.alias] = f"{exc.__class__.__name__}: {exc}"
            logger.error(f"❌ Failed to load {spec.module}: {exc}")
            self._install_fallback(spec)

    def _install_fallback(self, spec: CapabilitySpec) -> None:
        factory = FALLBACKS.get(spec.alias)
        if factory is None:
            self._handles[spec.alias] = None
            logger.error(f"❌ No fallback available for {spec.module}")
            return
        try:
            self._handles[spec.alias] = factory(self.importer)
        except Exception as exc:  # noqa: BLE001
            self._handles[spec.alias] = None
            logger.error(f"❌ Fallback for {spec.module} failed: {exc}")
            return
        self._fallbacks.append(spec.alias)
        logger.warning(f"⚠️  Using fallback for {spec.module}")

    def _add_utilities(self) -> None:
        child_process = self._handles.get("child_process")
        self._handles["exec_sync"] = getattr(child_process, "run", None)
        self._handles["excel"] = self._handles.get("xlsx")
        self._handles["email_sender"] = self._handles.get("mailer")
        self._handles["ColorLog"] = ColorLog

    @staticmethod
    def validate_critical(registry: CapabilityRegistry, strictness: Strictness) -> bool:
        missing = [
            name
            for name in CRITICAL_CAPABILITIES[strictness]
            if name not in registry or not registry.is_loaded(name)
        ]
        if missing:
            logger.error(f"❌ Critical modules missing: {missing}")
            return False

        missing_optional = [
            name for name in OPTIONAL_CAPABILITIES if name in registry and not registry.is_loaded(name)
        ]
        if missing_optional and strictness is not Strictness.NONE:
            logger.warning(f"⚠️  Optional modules missing (non-critical): {missing_optional}")
        return True
