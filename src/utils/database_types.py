"""
Database type enumeration for dialect-specific SQL rendering.

Replaces 'postgresql' / 'sqlserver' string literals throughout the codebase.
"""

from enum import Enum


class DatabaseType(str, Enum):
    """
    Supported database dialects.

    Inherits from str for JSON serialization and comparison with plain
    strings coming from configuration.
    """

    POSTGRESQL = "postgresql"
    SQLSERVER = "sqlserver"

    @classmethod
    def parse(cls, value: "str | DatabaseType") -> "DatabaseType":
        """Accept enum members, values and common aliases (postgres, mssql)."""
        if isinstance(value, cls):
            return value

        aliases = {
            "postgres": cls.POSTGRESQL,
            "pg": cls.POSTGRESQL,
            "mssql": cls.SQLSERVER,
            "sql_server": cls.SQLSERVER,
        }
        normalized = str(value).strip().lower()
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unsupported database type: {value!r}") from None

    @property
    def placeholder(self) -> str:
        """DB-API parameter marker (psycopg2 uses pyformat, pyodbc qmark)."""
        return "%s" if self is DatabaseType.POSTGRESQL else "?"

    @property
    def otel_system(self) -> str:
        """db.system value from the OpenTelemetry semantic conventions."""
        return "postgresql" if self is DatabaseType.POSTGRESQL else "mssql"

    def quote_identifier(self, identifier: str) -> str:
        """Quote an already-validated identifier for this dialect."""
        if self is DatabaseType.POSTGRESQL:
            return f'"{identifier}"'
        return f"[{identifier}]"
