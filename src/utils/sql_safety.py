"""
SQL safety utilities for preventing SQL injection.

Table and column names are interpolated into generated statements, so
every identifier is validated against a strict ASCII pattern before it is
quoted. Values always travel as bound parameters.
"""

import re

from utils.database_types import DatabaseType

VALID_IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
VALID_SCHEMA_TABLE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)?$")
# Cast targets for PostgreSQL VALUES lists, e.g. "numeric(12,2)", "timestamptz", "text[]"
VALID_TYPE_NAME = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_ ]*(\(\d+(,\s*\d+)?\))?(\[\])?$")


def validate_identifier(identifier: str) -> None:
    """
    Validate a SQL identifier (column name, schema name, ...).

    Raises:
        ValueError: If the identifier contains invalid characters
    """
    if not identifier:
        raise ValueError("SQL identifier cannot be empty")

    if not VALID_IDENTIFIER.match(identifier):
        raise ValueError(
            f"Invalid SQL identifier: {identifier!r}. "
            "Only ASCII letters, digits, and underscores are allowed, "
            "and must start with a letter or underscore."
        )


def validate_schema_table(schema_table: str) -> None:
    """
    Validate a ``table`` or ``schema.table`` identifier.

    Raises:
        ValueError: If the identifier format is invalid
    """
    if not schema_table:
        raise ValueError("Schema.table identifier cannot be empty")

    if not VALID_SCHEMA_TABLE.match(schema_table):
        raise ValueError(
            f"Invalid schema.table identifier: {schema_table!r}. "
            "Only ASCII letters, digits, and underscores are allowed."
        )


def validate_type_name(type_name: str) -> None:
    """Validate a column type used in an explicit cast."""
    if not type_name or not VALID_TYPE_NAME.match(type_name.strip()):
        raise ValueError(f"Invalid SQL type name: {type_name!r}")


def quote_identifier(identifier: str, db_type: DatabaseType | str) -> str:
    """
    Validate and quote a single identifier.

    Raises:
        ValueError: If the identifier is invalid
    """
    validate_identifier(identifier)
    return DatabaseType.parse(db_type).quote_identifier(identifier)


def quote_schema_table(schema_table: str, db_type: DatabaseType | str) -> str:
    """
    Validate and quote ``table`` or ``schema.table``.

    Example:
        >>> quote_schema_table("sales.orders", "sqlserver")
        '[sales].[orders]'
    """
    validate_schema_table(schema_table)
    dialect = DatabaseType.parse(db_type)
    return ".".join(dialect.quote_identifier(part) for part in schema_table.split("."))


def validate_integer_param(value: int, param_name: str, min_value: int = 0) -> None:
    """
    Validate an integer parameter.

    Raises:
        ValueError: If the value is not an integer or is below min_value
    """
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"Invalid {param_name}: {value!r}. Must be an integer.")

    if value < min_value:
        raise ValueError(f"Invalid {param_name}: {value}. Must be >= {min_value}.")
