"""Harness configuration with YAML support."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import Field

from harness.errors import ConfigError
from harness.schemas import HarnessSettings

SETTINGS_ENV_VAR = "RUNCODE_SETTINGS"
DEFAULT_SETTINGS_FILE = "runcode.yaml"

# Public CDN assets and where the local server expects an offline copy.
DEFAULT_CDN_MAPPINGS: dict[str, str] = {
    "https://cdnjs.cloudflare.com/ajax/libs/font-awesome/6.0.0/css/all.min.css": "/embedded-libs/font-awesome/css/all.min.css",
    "https://cdn.jsdelivr.net/npm/chart.js": "/embedded-libs/chart.js/chart.min.js",
    "https://cdnjs.cloudflare.com/ajax/libs/Chart.js/3.9.1/chart.min.js": "/embedded-libs/chart.js/chart.min.js",
    "https://cdnjs.cloudflare.com/ajax/libs/xlsx/0.18.5/xlsx.full.min.js": "/embedded-libs/xlsx/xlsx.full.min.js",
    "https://unpkg.com/tabulator-tables@5.4.4/dist/css/tabulator.min.css": "/embedded-libs/tabulator/css/tabulator.min.css",
    "https://unpkg.com/tabulator-tables@5.4.4/dist/js/tabulator.min.js": "/embedded-libs/tabulator/js/tabulator.min.js",
    "https://unpkg.com/tabulator-tables@5.5.0/dist/css/tabulator.min.css": "/embedded-libs/tabulator/css/tabulator.min.css",
    "https://unpkg.com/tabulator-tables@5.5.0/dist/js/tabulator.min.js": "/embedded-libs/tabulator/js/tabulator.min.js",
}


class RunCodeConfig(HarnessSettings):
    """Harness settings plus the local file server options."""

    server_host: str = "127.0.0.1"
    server_root: str = "."
    cdn_mappings: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_CDN_MAPPINGS))


def resolve_config_path(path: str | Path | None = None) -> Path | None:
    """Explicit path, then $RUNCODE_SETTINGS, then ./runcode.yaml."""
    if path:
        return Path(path)
    from_env = os.environ.get(SETTINGS_ENV_VAR)
    if from_env:
        return Path(from_env)
    local = Path.cwd() / DEFAULT_SETTINGS_FILE
    if local.exists():
        return local
    return None


def load_config(path: str | Path | None = None) -> RunCodeConfig:
    """Load harness configuration from YAML, or defaults when no file is found.

    Args:
        path: Explicit YAML path; overrides the environment and working directory

    Returns:
        RunCodeConfig instance

    Raises:
        ConfigError: If the file is missing, unreadable or does not validate
    """
    yaml_path = resolve_config_path(path)
    if yaml_path is None:
        return RunCodeConfig()

    if not yaml_path.exists():
        raise ConfigError(f"Config file not found: {yaml_path}")

    try:
        with open(yaml_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config file {yaml_path}: {e}") from e

    if data is None:
        return RunCodeConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {yaml_path} must contain a mapping")

    try:
        return RunCodeConfig.from_dict(data)
    except Exception as e:
        raise ConfigError(f"Invalid configuration in {yaml_path}: {e}") from e


def save_config(config: RunCodeConfig, yaml_path: str | Path) -> None:
    yaml_path = Path(yaml_path)
    yaml_path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump(mode="json")

    with open(yaml_path, "w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False, indent=2)
