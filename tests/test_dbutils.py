import sqlite3

import pytest

from harness.dbutils import DatabaseUtilities, create_database_utilities, mask_value
from harness.errors import ConfigError
from harness.loader import ModuleLoader, Strictness
from harness.schemas import DatabaseSettings


@pytest.fixture
def db(tmp_path):
    utils = DatabaseUtilities(sqlite3, DatabaseSettings(database=str(tmp_path / "lab.db")))
    utils.db_connect()
    yield utils
    utils.db_close()


def test_execute_query_returns_recordset(db):
    db.execute_query("CREATE TABLE samples (id INTEGER PRIMARY KEY, name TEXT)")
    inserted = db.execute_query("INSERT INTO samples (name) VALUES (:name)", {"name": "alpha"})
    db.execute_query("INSERT INTO samples (name) VALUES ('beta')")

    result = db.execute_query("SELECT id, name FROM samples ORDER BY id")

    assert inserted["rowcount"] == 1
    assert result["rowcount"] == 2
    assert result["recordset"] == [{"id": 1, "name": "alpha"}, {"id": 2, "name": "beta"}]


def test_count_records(db):
    db.execute_query("CREATE TABLE validations (id INTEGER)")
    for i in range(3):
        db.execute_query("INSERT INTO validations VALUES (:i)", {"i": i})

    assert db.count_records("validations") == 3


def test_count_records_rejects_bad_identifier(db):
    with pytest.raises(ValueError):
        db.count_records("validations; DROP TABLE x")


def test_params_override_defaults(tmp_path):
    utils = DatabaseUtilities(sqlite3, DatabaseSettings(database="default.db", user="sa"))
    other = tmp_path / "other.db"

    info = utils.connection_info({"database": str(other), "user": ""})

    assert info["database"] == str(other)
    assert info["user"] == "sa"


def test_readonly_connect_does_not_create_database(tmp_path):
    missing = tmp_path / "missing.db"
    utils = DatabaseUtilities(sqlite3, DatabaseSettings(database=str(missing)))

    with pytest.raises(sqlite3.OperationalError):
        utils.db_connect(readonly=True)
    assert not missing.exists()


def test_execute_without_connection_fails():
    utils = DatabaseUtilities(sqlite3)

    with pytest.raises(ConnectionError):
        utils.execute_query("SELECT 1")


def test_db_close_is_idempotent(db):
    db.db_close()
    db.db_close()

    assert db.connection is None


def test_non_sqlite_driver_receives_keywords():
    calls = {}

    class FakeDriver:
        __name__ = "pymssql"

        @staticmethod
        def connect(**kwargs):
            calls.update(kwargs)
            return object()

    utils = DatabaseUtilities(FakeDriver(), DatabaseSettings(server="db.local", user="sa", password="pw"))
    utils.db_connect({"database": "lab"})

    assert calls == {"server": "db.local", "user": "sa", "password": "pw", "database": "lab"}


class FakeServerDriver:
    __name__ = "pymssql"

    @staticmethod
    def connect(**kwargs):
        return object()


def test_process_db_parameters():
    utils = DatabaseUtilities(FakeServerDriver())
    argv = {"user": "sa", "password": "pw", "server": "srv", "database": "lab", "extra": 1}

    assert utils.process_db_parameters(argv) == {
        "user": "sa",
        "password": "pw",
        "server": "srv",
        "database": "lab",
    }


def test_process_db_parameters_missing_value():
    utils = DatabaseUtilities(FakeServerDriver())

    with pytest.raises(ConfigError, match="user"):
        utils.process_db_parameters({"password": "pw", "server": "srv"})


def test_process_db_parameters_sqlite_needs_only_database():
    utils = DatabaseUtilities(sqlite3, DatabaseSettings())

    assert utils.process_db_parameters({}) == {"database": "labDepartment.db"}
    assert utils.process_db_parameters({"database": "lab", "user": "sa"}) == {"database": "lab"}


def test_process_db_parameters_converts_numbers():
    utils = DatabaseUtilities(sqlite3)
    definitions = {"port": {"type": "number", "default": None}, "ratio": {"type": "number", "default": "0.5"}}

    assert utils.process_db_parameters({"port": "1433"}, definitions) == {"port": 1433, "ratio": 0.5}


def test_process_db_parameters_accepts_exponent_numbers():
    utils = DatabaseUtilities(sqlite3)
    definitions = {"limit": {"type": "number", "default": None}}

    assert utils.process_db_parameters({"limit": "1e3"}, definitions) == {"limit": 1000.0}
    assert utils.process_db_parameters({"limit": 25}, definitions) == {"limit": 25}


@pytest.mark.parametrize("value", ["abc", "nan", True])
def test_process_db_parameters_rejects_non_numbers(value):
    utils = DatabaseUtilities(sqlite3)
    definitions = {"limit": {"type": "number", "default": None}}

    with pytest.raises(ConfigError, match="Parameter limit must be a number"):
        utils.process_db_parameters({"limit": value}, definitions)


def test_mask_value():
    assert mask_value("abc") == "abc"
    assert mask_value("password") == "pa.......rd"
    assert mask_value(None) is None


def test_no_utilities_without_sql():
    def _import(name):
        if name == "sqlite3":
            raise ImportError(name)
        return sqlite3

    registry, _ = ModuleLoader(importer=_import).load_all(Strictness.NONE)

    assert create_database_utilities(registry) is None
