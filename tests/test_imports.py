"""
Smoke tests to verify all modules can be imported.
"""

def test_import_harness():
    import harness
    assert hasattr(harness, '__version__')


def test_import_sandbox():
    import sandbox
    assert hasattr(sandbox, '__version__')


def test_import_runcode():
    import runcode
    assert hasattr(runcode, '__version__')


def test_import_cli_entry_point():
    from runcode.cli import main
    assert callable(main)
