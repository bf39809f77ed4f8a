from __future__ import annotations

from datetime import datetime, timezone
from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, Field, field_validator, model_validator


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


TBaseSchema = TypeVar("TBaseSchema", bound="BaseSchema")


class BaseSchema(BaseModel):
    def to_json(self) -> str:
        return self.model_dump_json()

    def to_dict(self) -> dict[str, object]:
        return self.model_dump()

    @classmethod
    def from_json(cls: type[TBaseSchema], data: str) -> TBaseSchema:
        return cls.model_validate_json(data)

    @classmethod
    def from_dict(cls: type[TBaseSchema], data: Mapping[str, object]) -> TBaseSchema:
        return cls.model_validate(data)


class FileInfo(BaseSchema):
    original_path: str
    resolved_path: str
    file_name: str
    directory: str
    exists: bool


class LoadSummary(BaseSchema):
    loaded: list[str]
    failed: list[str]
    fallbacks: list[str] = Field(default_factory=list)
    total_capabilities: int = Field(ge=0)
    is_valid: bool


class ExecutionResult(BaseSchema):
    success: bool
    result: Any = None
    elapsed_ms: float = Field(ge=0)
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)
    timed_out: bool = False
    output: str = ""

    @model_validator(mode="after")
    def failure_has_error(self) -> "ExecutionResult":
        if not self.success and not self.error:
            self.error = "Unknown execution failure"
        return self


class AdmissionDecision(BaseSchema):
    allowed: bool
    reason: str
    bypassed: bool = False


class BrowserCache(BaseSchema):
    browser_path: str
    browser_name: str | None = None
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("last_updated")
    @classmethod
    def last_updated_utc(cls, value: datetime) -> datetime:
        return _ensure_utc(value)


class DatabaseSettings(BaseSchema):
    server: str | None = None
    user: str | None = None
    password: str | None = None
    database: str = "labDepartment.db"
    connection_timeout: float = Field(default=45.0, gt=0)


class AdmissionSettings(BaseSchema):
    enabled: bool = True
    threshold: int = Field(default=1000, ge=0)
    tables: tuple[str, str] = ("validations", "calcLog")


class HarnessSettings(BaseSchema):
    timeout_seconds: float = Field(default=30.0, gt=0)
    memory_limit_mb: int = Field(default=1024, gt=0)
    required_markers: list[str] = Field(default_factory=lambda: ["#Sheba", "#labDepartment"])
    bypass_marker: str = "ignoreAllByLibal"
    capabilities: dict[str, str] = Field(default_factory=dict)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    admission: AdmissionSettings = Field(default_factory=AdmissionSettings)
    browser_cache: str = "configPdf2HTML.json"
