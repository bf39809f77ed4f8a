"""Error taxonomy for the execution harness."""

from __future__ import annotations


class HarnessError(Exception):
    """Base class for every error raised by the harness."""


class ConfigError(HarnessError):
    """Invalid invocation: missing target file, bad settings, missing parameters."""


class ModuleLoadError(HarnessError):
    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = list(missing or [])


class ContextValidationError(HarnessError):
    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = list(missing or [])


class ScriptValidationError(HarnessError):
    """Target source lacks a required marker."""


class AdmissionError(HarnessError):
    """Admission gate denied the invocation. Not meant to be caught and retried."""


class SandboxExecutionError(HarnessError):
    def __init__(self, file: str, message: str) -> None:
        super().__init__(f"{file}: {message}")
        self.file = file
        self.message = message
