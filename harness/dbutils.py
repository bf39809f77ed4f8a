"""
Database helpers handed to target scripts.

The helpers close over whichever DB-API 2.0 module the ``sql`` capability
holds. ``sqlite3`` gets a file path, any other driver gets the usual
server/user/password/database keyword arguments.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Mapping
from typing import Any

from harness.errors import ConfigError
from harness.loader import CapabilityRegistry
from harness.schemas import DatabaseSettings

logger = logging.getLogger(__name__)

CONNECTION_KEYS = ("user", "password", "server", "database")

DEFAULT_PARAMETER_DEFINITIONS: dict[str, dict[str, object]] = {
    "user": {"type": "string", "default": None, "description": "DB user"},
    "password": {"type": "string", "default": None, "description": "DB password"},
    "server": {"type": "string", "default": None, "description": "DB server"},
    "database": {"type": "string", "default": None, "description": "DB database name"},
}

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def to_number(key: str, value: object) -> int | float:
    """Convert a numeric parameter; integers stay integers, ``"1e3"`` becomes 1000.0."""
    if isinstance(value, bool):
        raise ConfigError(f"Parameter {key} must be a number: {value!r}")
    if isinstance(value, (int, float)):
        number = value
    else:
        text = str(value).strip()
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                raise ConfigError(f"Parameter {key} must be a number: {value!r}") from None
    if isinstance(number, float) and not math.isfinite(number):
        raise ConfigError(f"Parameter {key} must be a number: {value!r}")
    return number


def mask_value(value: object) -> object:
    """Keep the first and last two characters of strings longer than four."""
    if not isinstance(value, str) or len(value) <= 4:
        return value
    return f"{value[:2]}.......{value[-2:]}"


class DatabaseUtilities:
    def __init__(self, driver: Any, defaults: DatabaseSettings | None = None) -> None:
        self.driver = driver
        self.defaults = defaults or DatabaseSettings()
        self._connection: Any = None

    @property
    def is_sqlite(self) -> bool:
        return getattr(self.driver, "__name__", "") == "sqlite3"

    @property
    def connection(self) -> Any:
        return self._connection

    def connection_info(self, params: Mapping[str, object] | None = None) -> dict[str, object]:
        info: dict[str, object] = {
            "user": self.defaults.user,
            "password": self.defaults.password,
            "server": self.defaults.server,
            "database": self.defaults.database,
        }
        for key in CONNECTION_KEYS:
            value = (params or {}).get(key)
            if value:
                info[key] = value
        return info

    def db_connect(self, params: Mapping[str, object] | None = None, readonly: bool = False) -> Any:
        info = self.connection_info(params)
        logger.info("🔗 Connecting to database...")
        logger.debug(f"📊 Server: {info['server']}")
        logger.debug(f"🗄️  Database: {info['database']}")
        logger.debug(f"👤 User: {mask_value(info['user'])}")
        try:
            if self.is_sqlite:
                connection = self._connect_sqlite(str(info["database"]), readonly)
            else:
                kwargs = {key: value for key, value in info.items() if value is not None}
                connection = self.driver.connect(**kwargs)
        except Exception as exc:
            logger.error(f"❌ Database connection error: {exc}")
            raise
        if connection is None:
            raise ConnectionError("Database connection failed - no connection returned")
        self._connection = connection
        logger.info("✅ Database connected successfully", extra={"color": "GW"})
        return connection

    def _connect_sqlite(self, database: str, readonly: bool) -> Any:
        timeout = self.defaults.connection_timeout
        if readonly:
            return self.driver.connect(f"file:{database}?mode=ro", uri=True, timeout=timeout)
        return self.driver.connect(database, timeout=timeout)

    def db_close(self) -> None:
        if self._connection is None:
            return
        try:
            self._connection.close()
            logger.info("✅ Database connection closed", extra={"color": "GW"})
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"⚠️  Error closing database: {exc}")
        finally:
            self._connection = None

    def execute_query(self, query: str, params: Mapping[str, object] | None = None) -> dict[str, object]:
        if self._connection is None:
            raise ConnectionError("No open database connection; call db_connect first")
        logger.info("🔍 Executing SQL query...")
        cursor = self._connection.cursor()
        try:
            if params:
                cursor.execute(query, dict(params))
            else:
                cursor.execute(query)
            if cursor.description is None:
                self._connection.commit()
                rowcount = cursor.rowcount
                recordset: list[dict[str, object]] = []
            else:
                columns = [column[0] for column in cursor.description]
                recordset = [dict(zip(columns, row)) for row in cursor.fetchall()]
                rowcount = len(recordset)
        except Exception as exc:
            logger.error(f"❌ Query execution error: {exc}")
            raise
        finally:
            cursor.close()
        logger.info(f"✅ Query executed - {len(recordset)} rows returned", extra={"color": "GW"})
        return {"recordset": recordset, "rowcount": rowcount}

    def count_records(self, table: str) -> int:
        if not _IDENTIFIER.match(table):
            raise ValueError(f"Invalid table name: {table!r}")
        result = self.execute_query(f"SELECT COUNT(*) AS recordCount FROM {table}")
        recordset = result["recordset"]
        if not isinstance(recordset, list) or not recordset:
            return 0
        return int(next(iter(recordset[0].values())))

    def process_db_parameters(
        self,
        argv: Mapping[str, object],
        parameter_definitions: Mapping[str, Mapping[str, object]] | None = None,
    ) -> dict[str, object]:
        definitions = parameter_definitions or self._default_definitions()
        processed: dict[str, object] = {}
        logger.info("📋 Processing database parameters...")
        for key, definition in definitions.items():
            value = argv.get(key) or definition.get("default")
            if value is None:
                raise ConfigError(f"Missing required parameter: {key}")
            if definition.get("type") == "number":
                value = to_number(key, value)
            processed[key] = value
        logger.info("✅ Database parameters processed", extra={"color": "GW"})
        return processed

    def _default_definitions(self) -> dict[str, dict[str, object]]:
        definitions = {key: dict(value) for key, value in DEFAULT_PARAMETER_DEFINITIONS.items()}
        if self.is_sqlite:
            # sqlite3 only needs the database path.
            definitions = {"database": definitions["database"]}
        for key in definitions:
            definitions[key]["default"] = getattr(self.defaults, key)
        return definitions

    def helpers(self) -> dict[str, Callable[..., Any]]:
        return {
            "db_connect": self.db_connect,
            "db_close": self.db_close,
            "execute_query": self.execute_query,
            "process_db_parameters": self.process_db_parameters,
        }


def create_database_utilities(
    registry: CapabilityRegistry,
    defaults: DatabaseSettings | None = None,
) -> DatabaseUtilities | None:
    if "sql" not in registry or not registry.is_loaded("sql"):
        logger.warning("⚠️  SQL module not available for database utilities")
        return None
    return DatabaseUtilities(registry.get("sql"), defaults)
