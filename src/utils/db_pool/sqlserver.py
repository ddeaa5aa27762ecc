"""SQL Server connection pool implementation."""

from typing import Any

import pyodbc
from opentelemetry import trace

from utils.tracing import trace_operation

from .base import BaseConnectionPool


class SQLServerConnectionPool(BaseConnectionPool):
    """Connection pool for SQL Server databases (pyodbc)."""

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        driver: str = "ODBC Driver 18 for SQL Server",
        connection_string: str | None = None,
        login_timeout: int = 10,
        **kwargs: Any,
    ):
        """
        Initialize SQL Server connection pool.

        Args:
            host, port, database, user, password: Individual connection
                parameters (required unless connection_string is given)
            driver: ODBC driver name
            connection_string: Complete ODBC connection string
            login_timeout: Seconds to wait for login
            **kwargs: Additional arguments for BaseConnectionPool
        """
        if connection_string:
            self.connection_string = connection_string
            self.host = self._extract_from_conn_str(connection_string, "SERVER")
            self.database = self._extract_from_conn_str(connection_string, "DATABASE")
        else:
            if not all([host, port, database, user, password]):
                raise ValueError(
                    "Either connection_string or all of (host, port, database, user, password) must be provided"
                )
            self.host = host
            self.database = database
            self.connection_string = (
                f"DRIVER={{{driver}}};"
                f"SERVER={host},{port};"
                f"DATABASE={database};"
                f"UID={user};"
                f"PWD={password};"
                f"TrustServerCertificate=yes;"
                f"Encrypt=yes;"
            )
        self.login_timeout = login_timeout

        kwargs.setdefault("pool_name", f"sqlserver-{self.database}")
        super().__init__(**kwargs)

    @staticmethod
    def _extract_from_conn_str(conn_str: str, key: str) -> str:
        for part in conn_str.split(";"):
            name, _, value = part.partition("=")
            if name.strip().upper() == key.upper():
                return value.strip()
        return "unknown"

    def _create_connection(self) -> pyodbc.Connection:
        with trace_operation(
            "sqlserver_connect",
            kind=trace.SpanKind.CLIENT,
            db_host=self.host,
            db_name=self.database,
        ):
            conn = pyodbc.connect(self.connection_string, timeout=self.login_timeout)
            conn.autocommit = True
            return conn

    def _is_connection_healthy(self, conn: pyodbc.Connection) -> bool:
        if conn is None:
            return False

        try:
            cursor = conn.cursor()
            try:
                cursor.execute("SELECT 1")
                cursor.fetchone()
            finally:
                cursor.close()
            return True
        except pyodbc.Error:
            return False

    def _reset_connection(self, conn: pyodbc.Connection) -> None:
        if not conn.autocommit:
            conn.rollback()
            conn.autocommit = True
        # SET options are session-scoped and survive the batch transaction
        cursor = conn.cursor()
        try:
            cursor.execute("SET LOCK_TIMEOUT -1")
        finally:
            cursor.close()

    def _is_connection_broken(self, conn: pyodbc.Connection, error: Exception) -> bool:
        # 08xxx: connection exception class
        if isinstance(error, pyodbc.Error) and error.args:
            return str(error.args[0]).startswith("08")
        return False

    def _close_connection(self, conn: pyodbc.Connection) -> None:
        if conn is not None:
            conn.close()

    def _get_db_type(self) -> str:
        return "sqlserver"
