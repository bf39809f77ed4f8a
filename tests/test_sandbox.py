import logging
from unittest.mock import patch

import pytest

from harness.context import ContextBuilder, ExecutionContext
from harness.loader import ModuleLoader, Strictness
from harness.schemas import FileInfo
from sandbox.executor import RunnerState, SandboxRunner

HEADER = "# #Sheba #labDepartment\n"


@pytest.fixture(scope="module")
def registry():
    registry, _ = ModuleLoader().load_all(Strictness.NONE)
    return registry


@pytest.fixture
def make_context(tmp_path, registry):
    def _make(code, args=None):
        path = tmp_path / "target.py"
        path.write_text(HEADER + code, encoding="utf-8")
        return path, ContextBuilder(registry).build(args or {}, path)

    return _make


def test_main_return_value_is_result(make_context):
    path, context = make_context("def main():\n    return {'total': sum(argv['values'])}\n", {"values": [1, 2, 3]})
    runner = SandboxRunner()

    result = runner.execute_file(path, context, timeout_seconds=20)

    assert result.success is True, result.error
    assert result.result == {"total": 6}
    assert result.elapsed_ms >= 0
    assert runner.state is RunnerState.COMPLETED
    assert runner.history == [
        RunnerState.IDLE,
        RunnerState.READING,
        RunnerState.PREPARING,
        RunnerState.EXECUTING,
        RunnerState.COMPLETED,
    ]


def test_declared_parameter_is_bound_to_context(make_context):
    code = "def main(context):\n    return [context['sql'] is not None, context.file_info.file_name]\n"
    path, context = make_context(code)

    result = SandboxRunner().execute_file(path, context, timeout_seconds=20)

    assert result.success is True, result.error
    assert result.result == [True, "target.py"]
    assert any("removed" in warning for warning in result.warnings)


def test_async_main_is_awaited(make_context):
    code = "import asyncio\n\nasync def main():\n    await asyncio.sleep(0)\n    return 'done'\n"
    path, context = make_context(code)

    result = SandboxRunner().execute_file(path, context, timeout_seconds=20)

    assert result.success is True, result.error
    assert result.result == "done"


def test_exports_are_result_without_main(make_context):
    path, context = make_context("exports['answer'] = 41 + 1\n")

    result = SandboxRunner().execute_file(path, context, timeout_seconds=20)

    assert result.success is True, result.error
    assert result.result == {"answer": 42}


def test_database_helpers_work_inside_realm(make_context, tmp_path):
    db_path = tmp_path / "realm.db"
    code = (
        "def main():\n"
        f"    db_connect({{'database': {str(db_path)!r}}})\n"
        "    execute_query('CREATE TABLE t (v INTEGER)')\n"
        "    execute_query('INSERT INTO t VALUES (7)')\n"
        "    rows = execute_query('SELECT v FROM t')['recordset']\n"
        "    db_close()\n"
        "    return rows\n"
    )
    path, context = make_context(code)

    result = SandboxRunner().execute_file(path, context, timeout_seconds=20)

    assert result.success is True, result.error
    assert result.result == [{"v": 7}]


def test_print_goes_to_target_logger(make_context, caplog):
    path, context = make_context("def main():\n    print('hello from target')\n    console.warn('careful')\n")

    with caplog.at_level(logging.INFO):
        result = SandboxRunner().execute_file(path, context, timeout_seconds=20)

    assert result.success is True, result.error
    assert "[TARGET] hello from target" in caplog.text
    assert "[TARGET WARN] careful" in caplog.text


def test_colorlog_output_is_captured(make_context):
    path, context = make_context("def main():\n    ColorLog.GW('green line')\n")

    result = SandboxRunner().execute_file(path, context, timeout_seconds=20)

    assert result.success is True, result.error
    assert "green line" in result.output


def test_runtime_error_becomes_envelope(make_context):
    path, context = make_context("def main():\n    raise ValueError('boom')\n")
    runner = SandboxRunner()

    result = runner.execute_file(path, context, timeout_seconds=20)

    assert result.success is False
    assert result.error == "target.py: ValueError: boom"
    assert runner.state is RunnerState.FAILED
    assert runner.summary()["error_count"] == 1


def test_syntax_error_is_caught(make_context):
    path, context = make_context("def main(\n    return 1\n")

    result = SandboxRunner().execute_file(path, context, timeout_seconds=20)

    assert result.success is False
    assert "SyntaxError" in result.error


def test_infinite_loop_times_out(make_context):
    path, context = make_context("def main():\n    while True:\n        pass\n")

    result = SandboxRunner().execute_file(path, context, timeout_seconds=1)

    assert result.success is False
    assert result.timed_out is True
    assert "Timeout after 1s" in result.error


@pytest.mark.parametrize("timeout", [0, -1])
def test_non_positive_timeout_fails_without_child(make_context, timeout):
    path, context = make_context("def main():\n    return 1\n")
    runner = SandboxRunner()

    with patch("sandbox.executor.subprocess.run") as mock_run:
        result = runner.execute_file(path, context, timeout_seconds=timeout)

    assert result.success is False
    assert "Timeout must be positive" in result.error
    assert runner.state is RunnerState.FAILED
    mock_run.assert_not_called()


def test_import_socket_fails(make_context):
    path, context = make_context("import socket\n\ndef main():\n    return 1\n")

    result = SandboxRunner().execute_file(path, context, timeout_seconds=20)

    assert result.success is False
    assert "not allowlisted" in result.error


def test_open_fails(make_context):
    path, context = make_context("def main():\n    open('x', 'w')\n")

    result = SandboxRunner().execute_file(path, context, timeout_seconds=20)

    assert result.success is False
    assert "Blocked by sandbox policy" in result.error


def test_require_resolves_capabilities(make_context):
    path, context = make_context("def main():\n    return [require('sql').__name__, require('json').dumps(1)]\n")

    result = SandboxRunner().execute_file(path, context, timeout_seconds=20)

    assert result.success is True, result.error
    assert result.result == ["sqlite3", "1"]


def test_missing_file_fails_without_child(tmp_path):
    missing = tmp_path / "gone.py"
    info = FileInfo(
        original_path=str(missing),
        resolved_path=str(missing),
        file_name="gone.py",
        directory=str(tmp_path),
        exists=False,
    )
    context = ExecutionContext(argv={}, file_info=info, capabilities={})

    result = SandboxRunner().execute_file(missing, context)

    assert result.success is False
    assert "FileNotFoundError" in result.error


def test_reset_clears_state(make_context):
    path, context = make_context("def main():\n    return 1\n")
    runner = SandboxRunner()
    runner.execute_file(path, context, timeout_seconds=20)

    runner.reset()

    assert runner.state is RunnerState.IDLE
    assert runner.summary()["has_result"] is False
