import types
from unittest.mock import patch

import pytest

from harness.colorlog import ColorLog
from harness.loader import (
    ClockStub,
    ModuleLoader,
    Strictness,
    capability_specs,
)


def fake_importer(missing=(), broken=()):
    def _import(name):
        if name in missing:
            raise ImportError(f"No module named '{name}'")
        if name in broken:
            raise RuntimeError(f"{name} exploded during import")
        return types.ModuleType(name)

    return _import


def test_all_capabilities_load():
    registry, summary = ModuleLoader(importer=fake_importer()).load_all(Strictness.FULL)

    assert summary.is_valid is True
    assert summary.failed == []
    assert "sql" in summary.loaded
    assert registry.get("sql").__name__ == "sqlite3"
    # nine capabilities plus four utility aliases
    assert summary.total_capabilities == 13


def test_utility_aliases_are_added():
    registry, _ = ModuleLoader(importer=fake_importer()).load_all()

    assert registry.get("excel") is registry.get("xlsx")
    assert registry.get("email_sender") is registry.get("mailer")
    assert registry.get("ColorLog") is ColorLog
    # the fake subprocess module has no run()
    assert registry.get("exec_sync") is None


def test_exec_sync_points_at_subprocess_run():
    import importlib

    registry, _ = ModuleLoader(importer=importlib.import_module).load_all(Strictness.NONE)
    import subprocess

    assert registry.get("exec_sync") is subprocess.run


def test_dates_failure_installs_clock_stub():
    registry, summary = ModuleLoader(importer=fake_importer(missing={"pendulum"})).load_all()

    assert summary.is_valid is True
    assert "dates" in summary.failed
    assert "dates" in summary.fallbacks
    assert isinstance(registry.get("dates"), ClockStub)
    assert registry.get("dates").is_valid()
    assert registry.get("dates").unix() > 0
    assert "ImportError" in registry.errors["dates"]


def test_fs_failure_falls_back_to_os():
    registry, summary = ModuleLoader(importer=fake_importer(missing={"shutil"})).load_all()

    assert summary.is_valid is True
    assert registry.get("fs").__name__ == "os"
    assert "fs" in summary.fallbacks


def test_missing_sql_is_fatal_only_under_full_strictness():
    loader = ModuleLoader(importer=fake_importer(missing={"sqlite3"}))

    registry, summary = loader.load_all(Strictness.FULL)
    assert summary.is_valid is False
    assert registry.get("sql") is None
    assert registry.is_loaded("sql") is False

    _, server_summary = loader.load_all(Strictness.SERVER)
    assert server_summary.is_valid is True

    _, none_summary = loader.load_all(Strictness.NONE)
    assert none_summary.is_valid is True


def test_fs_fallback_failure_is_fatal_under_full_strictness():
    loader = ModuleLoader(importer=fake_importer(missing={"shutil", "os"}))

    registry, summary = loader.load_all(Strictness.FULL)

    assert summary.is_valid is False
    assert "fs" in summary.failed
    assert "fs" not in summary.fallbacks
    assert registry.get("fs") is None


def test_dates_fallback_failure_is_fatal_under_full_strictness():
    def broken_clock(importer):
        raise RuntimeError("clock unavailable")

    loader = ModuleLoader(importer=fake_importer(missing={"pendulum"}))

    with patch.dict("harness.loader.FALLBACKS", {"dates": broken_clock}):
        registry, summary = loader.load_all(Strictness.FULL)

    assert summary.is_valid is False
    assert "dates" in summary.failed
    assert "dates" not in summary.fallbacks
    assert registry.get("dates") is None


def test_non_import_errors_are_captured():
    registry, summary = ModuleLoader(importer=fake_importer(broken={"openpyxl"})).load_all()

    assert summary.is_valid is True
    assert "xlsx" in summary.failed
    assert registry.get("xlsx") is None
    assert "RuntimeError" in registry.errors["xlsx"]


def test_optional_capabilities_logged_as_non_critical(caplog):
    with caplog.at_level("WARNING"):
        _, summary = ModuleLoader(importer=fake_importer(missing={"pypdf", "smtplib"})).load_all()

    assert summary.is_valid is True
    assert "non-critical" in caplog.text


def test_unknown_capability_raises_key_error():
    registry, _ = ModuleLoader(importer=fake_importer()).load_all()

    with pytest.raises(KeyError):
        registry.get("lodash")
    assert "lodash" not in registry


def test_registry_is_read_only():
    registry, _ = ModuleLoader(importer=fake_importer()).load_all()

    with pytest.raises(TypeError):
        registry.handles["sql"] = None


def test_repeated_load_does_not_accumulate():
    loader = ModuleLoader(importer=fake_importer(missing={"pypdf"}))
    loader.load_all()
    _, summary = loader.load_all()

    assert summary.failed == ["pdf_reader"]


def test_capability_overrides():
    specs = capability_specs({"sql": "mysql.connector", "json_tools": "json"})
    by_alias = {spec.alias: spec.module for spec in specs}

    assert by_alias["sql"] == "mysql.connector"
    assert by_alias["json_tools"] == "json"
    assert by_alias["dates"] == "pendulum"
