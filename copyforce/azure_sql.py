"""SQL Server / Azure SQL destination: table creation and batched inserts."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, time, timezone
from typing import Any

import pyodbc
from azure.identity import DefaultAzureCredential

from copyforce.config import CopyForceSettings
from copyforce.destination import DatabaseBuilder
from copyforce.exceptions import AuthenticationError, DestinationUnavailable, DestinationWriteError
from copyforce.logging_utils import get_logger, log_operation
from copyforce.models import FieldSpec, TableSchema

logger = get_logger(__name__)

SQL_COPT_SS_ACCESS_TOKEN = 1256  # ODBC attribute for AAD access token

NVARCHAR_MAX_LENGTH = 4000
SALESFORCE_ID_LENGTH = 18


def _get_sql_access_token_bytes() -> bytes:
    """
    Returns the AAD access token bytes in the format required by ODBC:
    4-byte little-endian length prefix + UTF-16LE token bytes.
    """
    try:
        cred = DefaultAzureCredential()
        token = cred.get_token("https://database.windows.net/.default").token
    except Exception as e:
        raise AuthenticationError(
            "Failed to get Azure SQL access token. Ensure 'az login' is configured "
            "or service principal credentials are set.",
            details={"error": str(e)},
        ) from e
    token_bytes = token.encode("utf-16-le")
    return (len(token_bytes)).to_bytes(4, "little") + token_bytes


def build_connection_string(settings: CopyForceSettings) -> str:
    conn_str = (
        f"DRIVER={{{settings.sql_driver}}};"
        f"SERVER={settings.sql_server},1433;"
        f"DATABASE={settings.sql_database};"
        "Encrypt=yes;"
        "TrustServerCertificate=no;"
        "Connection Timeout=30;"
    )
    if not settings.sql_uses_aad:
        conn_str += f"UID={settings.sql_username};PWD={{{settings.sql_password}}};"
    return conn_str


def get_sql_connection(settings: CopyForceSettings) -> pyodbc.Connection:
    """
    DSN-less connection to SQL Server. Uses SQL authentication when a
    username is configured, otherwise an AAD token (az login / service principal).
    """
    if not settings.sql_server or not settings.sql_database:
        raise DestinationUnavailable(
            "COPYFORCE_SQL_SERVER and COPYFORCE_SQL_DATABASE must be set for the sqlserver destination",
            details={"server": settings.sql_server, "database": settings.sql_database},
        )

    conn_str = build_connection_string(settings)
    if settings.sql_uses_aad:
        token_bytes = _get_sql_access_token_bytes()
        return pyodbc.connect(conn_str, autocommit=False, attrs_before={SQL_COPT_SS_ACCESS_TOKEN: token_bytes})
    return pyodbc.connect(conn_str, autocommit=False)


def quote_identifier(name: str) -> str:
    return "[" + name.replace("]", "]]") + "]"


def sql_type_for(field: FieldSpec) -> str:
    """T-SQL column type for a Salesforce field type."""
    t = field.type
    if t in ("id", "reference"):
        return f"NVARCHAR({SALESFORCE_ID_LENGTH})"
    if t == "boolean":
        return "BIT"
    if t == "int":
        return "INT"
    if t == "long":
        return "BIGINT"
    if t in ("double", "currency", "percent"):
        if field.precision:
            precision = min(field.precision, 38)
            return f"DECIMAL({precision},{min(field.scale, precision)})"
        return "FLOAT"
    if t == "date":
        return "DATE"
    if t == "datetime":
        return "DATETIME2"
    if t == "time":
        return "TIME"
    if 0 < field.length <= NVARCHAR_MAX_LENGTH:
        return f"NVARCHAR({field.length})"
    return "NVARCHAR(MAX)"


def parse_salesforce_datetime(value: str) -> datetime:
    """'2024-01-10T14:30:00.000+0000' -> naive UTC datetime."""
    parsed = datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%f%z")
    return parsed.astimezone(timezone.utc).replace(tzinfo=None)


def coerce_value(field: FieldSpec, value: Any) -> Any:
    if value is None or not isinstance(value, str):
        return value
    if field.type == "datetime":
        return parse_salesforce_datetime(value)
    if field.type == "date":
        return date.fromisoformat(value)
    if field.type == "time":
        return time.fromisoformat(value.rstrip("Z"))
    return value


class SqlServerDatabaseBuilder(DatabaseBuilder):
    """Writes Salesforce tables into one schema of a SQL Server database."""

    def __init__(self, connection: pyodbc.Connection, schema: str = "dbo"):
        self.connection = connection
        self.schema = schema

    @classmethod
    def connect(cls, settings: CopyForceSettings) -> "SqlServerDatabaseBuilder":
        try:
            connection = get_sql_connection(settings)
        except (pyodbc.Error, AuthenticationError) as e:
            raise DestinationUnavailable(
                f"Unable to connect to SQL Server '{settings.sql_server}/{settings.sql_database}': {e}",
                details={"server": settings.sql_server, "database": settings.sql_database},
            ) from e
        logger.info(
            "Connected to SQL Server",
            extra={"server": settings.sql_server, "database": settings.sql_database, "sql_schema": settings.sql_schema},
        )
        return cls(connection, settings.sql_schema)

    def qualified_name(self, table: str) -> str:
        return f"{quote_identifier(self.schema)}.{quote_identifier(table)}"

    def create_table_sql(self, schema: TableSchema) -> str:
        columns = []
        for field in schema.fields:
            column = f"{quote_identifier(field.name)} {sql_type_for(field)}"
            if field.name == "Id":
                column += " NOT NULL PRIMARY KEY"
            elif field.nillable:
                column += " NULL"
            columns.append(column)

        qualified = self.qualified_name(schema.name)
        literal = qualified.replace("'", "''")
        return (
            f"IF OBJECT_ID(N'{literal}', N'U') IS NULL\n"
            f"CREATE TABLE {qualified} (\n  " + ",\n  ".join(columns) + "\n)"
        )

    def insert_sql(self, schema: TableSchema) -> str:
        columns = ", ".join(quote_identifier(n) for n in schema.field_names)
        placeholders = ", ".join("?" for _ in schema.fields)
        return f"INSERT INTO {self.qualified_name(schema.name)} ({columns}) VALUES ({placeholders})"

    def create_schema_for_table(self, schema: TableSchema) -> None:
        if not schema.fields:
            logger.warning("Skipping table without transferable fields", extra={"table": schema.name})
            return
        try:
            cursor = self.connection.cursor()
            cursor.execute(self.create_table_sql(schema))
            self.connection.commit()
        except pyodbc.Error as e:
            self.connection.rollback()
            raise DestinationWriteError(
                f"Failed to create table {self.qualified_name(schema.name)}: {e}",
                details={"table": schema.name},
            ) from e
        logger.info("Table created", extra={"table": schema.name, "column_count": len(schema.fields)})

    def write_table(self, schema: TableSchema, batches: Iterable[list[dict]]) -> int:
        sql = self.insert_sql(schema)
        rows_written = 0

        with log_operation(logger, "sql_write_table", table=schema.name) as ctx:
            cursor = self.connection.cursor()
            cursor.fast_executemany = True
            for batch in batches:
                if not batch:
                    continue
                try:
                    params = [tuple(coerce_value(f, row.get(f.name)) for f in schema.fields) for row in batch]
                    cursor.executemany(sql, params)
                    self.connection.commit()
                except (pyodbc.Error, ValueError) as e:
                    self.connection.rollback()
                    raise DestinationWriteError(
                        f"Failed to insert into {self.qualified_name(schema.name)}: {e}",
                        details={"table": schema.name, "rows_written": rows_written},
                    ) from e
                rows_written += len(batch)
            ctx["rows_written"] = rows_written

        return rows_written

    def close(self) -> None:
        try:
            self.connection.close()
        except pyodbc.Error as e:
            logger.warning("Failed to close SQL Server connection", extra={"error": str(e)})
