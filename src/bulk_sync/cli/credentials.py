"""
Credential management for the CLI.

Connection settings for the source and target databases come from Vault
(--use-vault), or from command-line flags with environment variables as
fallback.
"""

import argparse
import logging
import os
from typing import Any

import requests

from utils.database_types import DatabaseType
from utils.vault_client import VaultClient

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

# Environment fallbacks per dialect: (host, port, database, user, password)
_ENV_NAMES = {
    DatabaseType.POSTGRESQL: ("POSTGRES_HOST", "POSTGRES_PORT", "POSTGRES_DB", "POSTGRES_USER", "POSTGRES_PASSWORD"),
    DatabaseType.SQLSERVER: ("SQLSERVER_HOST", "SQLSERVER_PORT", "SQLSERVER_DATABASE", "SQLSERVER_USER", "SQLSERVER_PASSWORD"),
}
_DEFAULTS = {
    DatabaseType.POSTGRESQL: ("localhost", 5432, "postgres", "postgres"),
    DatabaseType.SQLSERVER: ("localhost", 1433, "master", "sa"),
}


def get_connection_config(
    args: argparse.Namespace,
    role: str,
    db_type: DatabaseType | str,
    vault_client: VaultClient | None = None,
) -> dict[str, Any]:
    """
    Connection settings for the ``role`` ("source" or "target") database.

    Args:
        args: Parsed command-line arguments
        role: Prefix of the --<role>-* flags
        db_type: Dialect, which selects the POSTGRES_* or SQLSERVER_* variables
        vault_client: Client to use with --use-vault (default: built from VAULT_ADDR/VAULT_TOKEN)

    Returns:
        Dict with host, port, database, user, password, as expected by
        utils.db_pool.create_pool

    Raises:
        ConfigurationError: If Vault cannot be reached or no password is available
    """
    dialect = DatabaseType.parse(db_type)

    if getattr(args, "use_vault", False):
        try:
            client = vault_client or VaultClient()
            if not client.health_check():
                raise ConfigurationError(
                    f"Vault at {client.vault_addr} is unreachable, sealed or not initialized"
                )
            config = client.get_database_credentials(
                dialect, secret_path=getattr(args, f"vault_{role}_path", None)
            )
        except (ValueError, requests.RequestException) as e:
            raise ConfigurationError(f"Failed to fetch {role} credentials from Vault: {e}") from e
        logger.info(f"Using Vault credentials for {role} database")
        return config

    host_env, port_env, db_env, user_env, password_env = _ENV_NAMES[dialect]
    default_host, default_port, default_db, default_user = _DEFAULTS[dialect]

    def flag(name: str) -> Any:
        return getattr(args, f"{role}_{name}", None)

    config = {
        "host": flag("host") or os.getenv(host_env, default_host),
        "port": int(flag("port") or os.getenv(port_env, default_port)),
        "database": flag("database") or os.getenv(db_env, default_db),
        "user": flag("user") or os.getenv(user_env, default_user),
        "password": flag("password") or os.getenv(password_env),
    }

    if not config["password"]:
        raise ConfigurationError(
            f"{role.capitalize()} database password not provided "
            f"(use --{role}-password, {password_env} or --use-vault)"
        )
    return config
