"""
Execution context assembly.

The context is the only thing a target script can see: cleaned arguments,
target-file metadata, capability handles and helpers derived from them.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType, ModuleType, SimpleNamespace
from typing import Any

from harness.browser import BrowserLocator
from harness.dbutils import create_database_utilities, mask_value
from harness.errors import ConfigError, ContextValidationError
from harness.loader import CapabilityRegistry, ModuleLoader, Strictness, capability_specs
from harness.schemas import FileInfo, HarnessSettings

logger = logging.getLogger(__name__)

TARGET_LOGGER = "runcode.target"

# Keys the argument parser uses for its own bookkeeping.
RESERVED_PREFIXES: tuple[str, ...] = ("_", "$")

REQUIRED_KEYS: tuple[str, ...] = ("sql", "dates", "argv", "logger")

_SENSITIVE_FIELDS = ("password", "user", "username", "pass", "pwd", "api_key", "token", "secret")


def strip_reserved(args: Mapping[str, object]) -> dict[str, object]:
    return {
        key: value
        for key, value in args.items()
        if not any(str(key).startswith(prefix) for prefix in RESERVED_PREFIXES)
    }


def mask_sensitive_data(data: object) -> object:
    """Return a copy of ``data`` with credential-like values masked for logging."""
    if isinstance(data, Mapping):
        masked: dict[object, object] = {}
        for key, value in data.items():
            if isinstance(key, str) and key.lower() in _SENSITIVE_FIELDS and isinstance(value, str):
                masked[key] = mask_value(value)
            else:
                masked[key] = mask_sensitive_data(value)
        return masked
    if isinstance(data, list):
        return [mask_sensitive_data(item) for item in data]
    return data


def describe_file(target_path: str | os.PathLike[str]) -> FileInfo:
    original = os.fspath(target_path)
    resolved = Path(original).resolve()
    return FileInfo(
        original_path=original,
        resolved_path=str(resolved),
        file_name=Path(original).name,
        directory=str(resolved.parent),
        exists=resolved.is_file(),
    )


class ContextView(Mapping[str, Any]):
    """Read-only mapping that also allows attribute access (``context.sql``)."""

    def __init__(self, data: Mapping[str, Any]) -> None:
        self._data = MappingProxyType(dict(data))

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __getattr__(self, name: str) -> Any:
        try:
            return self._data[name]
        except KeyError:
            raise AttributeError(name) from None

    def __repr__(self) -> str:
        return f"ContextView({sorted(self._data)})"


def process_shim() -> SimpleNamespace:
    return SimpleNamespace(
        cwd=os.getcwd,
        env=MappingProxyType(dict(os.environ)),
        pid=os.getpid(),
    )


@dataclass
class ExecutionContext:
    argv: dict[str, object]
    file_info: FileInfo
    capabilities: Mapping[str, Any]
    helpers: dict[str, Callable[..., Any]] = field(default_factory=dict)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(TARGET_LOGGER))
    param_file: str | None = None
    settings: HarnessSettings = field(default_factory=HarnessSettings)

    def get(self, key: str) -> Any:
        return self.bindings().get(key)

    def bindings(self) -> dict[str, Any]:
        """Names injected into the target script's global scope."""
        names: dict[str, Any] = dict(self.capabilities)
        names.update(self.helpers)
        names["argv"] = dict(self.argv)
        names["file_info"] = self.file_info
        names["logger"] = self.logger
        names["process"] = process_shim()
        return names

    def capability_modules(self) -> list[str]:
        """Top-level module names behind the loaded capabilities."""
        return sorted(
            {handle.__name__.split(".")[0] for handle in self.capabilities.values() if isinstance(handle, ModuleType)}
        )

    def view(self) -> ContextView:
        return ContextView(self.bindings())

    def to_payload(self) -> dict[str, object]:
        """Serializable part of the context, enough to rebuild it in another process."""
        return {
            "argv": self.argv,
            "file_info": self.file_info.to_dict(),
            "param_file": self.param_file,
            "settings": self.settings.model_dump(mode="json"),
        }


class ContextBuilder:
    def __init__(self, registry: CapabilityRegistry, settings: HarnessSettings | None = None) -> None:
        self.registry = registry
        self.settings = settings or HarnessSettings()

    def build(
        self,
        raw_args: Mapping[str, object],
        target_path: str | os.PathLike[str],
        param_file: str | os.PathLike[str] | None = None,
    ) -> ExecutionContext:
        logger.info("🔧 Building execution context...")
        argv = strip_reserved(raw_args)
        if param_file:
            argv = self.merge_parameter_file(argv, param_file)

        file_info = describe_file(target_path)
        logger.info(f"📄 Target file: {file_info.file_name}")
        if not file_info.exists:
            raise ConfigError(f"Target file not found: {file_info.original_path}")

        context = self.assemble(argv, file_info, os.fspath(param_file) if param_file else None)
        self.validate(context)
        logger.info("✅ Context built successfully", extra={"color": "GW"})
        logger.debug(
            f"📊 Context Summary: capabilities={len(context.capabilities)} "
            f"arguments={len(context.argv)} target={file_info.file_name}"
        )
        return context

    def assemble(self, argv: dict[str, object], file_info: FileInfo, param_file: str | None) -> ExecutionContext:
        helpers: dict[str, Callable[..., Any]] = {}
        db_utils = create_database_utilities(self.registry, self.settings.database)
        if db_utils is not None:
            helpers.update(db_utils.helpers())
            logger.debug("📊 Added database utilities to context")
        helpers["find_browser"] = BrowserLocator(self.settings.browser_cache).locate

        return ExecutionContext(
            argv=argv,
            file_info=file_info,
            capabilities=self.registry.handles,
            helpers=helpers,
            logger=logging.getLogger(TARGET_LOGGER),
            param_file=param_file,
            settings=self.settings,
        )

    def merge_parameter_file(
        self, argv: dict[str, object], param_file: str | os.PathLike[str]
    ) -> dict[str, object]:
        path = Path(param_file)
        if not path.exists():
            logger.warning(f"⚠️  Extra param file not found: {path}")
            return argv
        try:
            extra = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(f"⚠️  Failed to load extra parameters from {path}: {exc}")
            return argv
        if not isinstance(extra, dict):
            logger.warning(f"⚠️  Extra param file {path} must contain a JSON object; skipped")
            return argv

        logger.info(f"✅ Loaded extra parameters from {path}", extra={"color": "GW"})
        logger.debug(f"Extra parameters: {json.dumps(mask_sensitive_data(extra), default=str)}")
        return {**argv, **strip_reserved(extra)}

    @staticmethod
    def validate(context: ExecutionContext) -> None:
        bindings = context.bindings()
        missing = [key for key in REQUIRED_KEYS if bindings.get(key) is None]
        if missing:
            logger.error(f"❌ Context validation failed. Missing: {missing}")
            raise ContextValidationError(f"Context validation failed. Missing: {missing}", missing)
        if not context.file_info.exists:
            logger.error(f"❌ Target file not found: {context.file_info.original_path}")
            raise ContextValidationError(
                f"Target file not found: {context.file_info.original_path}", ["file_info.exists"]
            )
        logger.debug("✅ Context validation passed")

    @classmethod
    def restore(cls, payload: Mapping[str, Any]) -> ExecutionContext:
        """Rebuild a context from ``ExecutionContext.to_payload`` output inside the realm."""
        settings = HarnessSettings.from_dict(payload.get("settings") or {})
        loader = ModuleLoader(capability_specs(settings.capabilities))
        registry, _summary = loader.load_all(Strictness.NONE)
        file_info = FileInfo.from_dict(payload["file_info"])
        argv = strip_reserved(payload.get("argv") or {})
        return cls(registry, settings).assemble(argv, file_info, payload.get("param_file"))
