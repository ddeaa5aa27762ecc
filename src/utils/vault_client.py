"""
HashiCorp Vault client for fetching database credentials

Reads connection settings for the source and target databases from the
KV v2 secrets engine, normalized to the dict shape utils.db_pool.create_pool
expects (host, port, database, user, password).
"""

import logging
import os
import re
from typing import Any

import requests

from utils.database_types import DatabaseType

logger = logging.getLogger(__name__)

_SAFE_PATH = re.compile(r"^[a-zA-Z0-9/_-]+$")
_DEFAULT_PORTS = {DatabaseType.POSTGRESQL: 5432, DatabaseType.SQLSERVER: 1433}


class VaultClient:
    """Minimal Vault KV v2 client over the HTTP API."""

    def __init__(
        self,
        vault_addr: str | None = None,
        vault_token: str | None = None,
        namespace: str | None = None,
        mount_point: str = "secret",
        timeout: float = 10.0,
    ):
        """
        Args:
            vault_addr: Vault server address (default: $VAULT_ADDR)
            vault_token: Vault token (default: $VAULT_TOKEN)
            namespace: Vault Enterprise namespace
            mount_point: KV v2 mount
            timeout: HTTP timeout in seconds

        Raises:
            ValueError: If address or token is missing
        """
        self.vault_addr = (vault_addr or os.getenv("VAULT_ADDR") or "").rstrip("/")
        vault_token = vault_token or os.getenv("VAULT_TOKEN")
        self.mount_point = mount_point
        self.timeout = timeout

        if not self.vault_addr:
            raise ValueError(
                "Vault address not provided. Set VAULT_ADDR or pass vault_addr."
            )
        if not vault_token:
            raise ValueError(
                "Vault token not provided. Set VAULT_TOKEN or pass vault_token."
            )

        self.session = requests.Session()
        self.session.headers.update({"X-Vault-Token": vault_token})
        if namespace:
            self.session.headers["X-Vault-Namespace"] = namespace

        logger.info(f"Initialized Vault client for {self.vault_addr}")

    def get_secret(self, secret_path: str) -> dict[str, Any]:
        """
        Fetch the data of a KV v2 secret (path relative to the mount).

        Raises:
            ValueError: If the path is unsafe or the secret is missing/empty
            requests.RequestException: If the Vault request fails
        """
        if not secret_path or ".." in secret_path or not _SAFE_PATH.match(secret_path):
            raise ValueError(f"Invalid secret_path: {secret_path!r}")

        url = f"{self.vault_addr}/v1/{self.mount_point}/data/{secret_path.strip('/')}"
        logger.debug(f"Fetching secret from: {url}")

        response = self.session.get(url, timeout=self.timeout)
        if response.status_code == 404:
            raise ValueError(f"Secret not found at path: {secret_path}")
        response.raise_for_status()

        secret_data = response.json().get("data", {}).get("data", {})
        if not secret_data:
            raise ValueError(f"No data found in secret at path: {secret_path}")

        return secret_data

    def get_database_credentials(
        self,
        db_type: DatabaseType | str,
        secret_path: str | None = None,
    ) -> dict[str, Any]:
        """
        Fetch connection settings for a database.

        Args:
            db_type: postgresql or sqlserver
            secret_path: Secret path (default: database/<db_type>)

        Returns:
            Dict with host, port, database, user, password. A secret
            holding ``connection_string`` is passed through as-is.
        """
        dialect = DatabaseType.parse(db_type)
        secret = self.get_secret(secret_path or f"database/{dialect.value}")

        if "connection_string" in secret:
            return {"connection_string": secret["connection_string"]}

        # Older secrets use server/username instead of host/user
        credentials = {
            "host": secret.get("host") or secret.get("server"),
            "port": int(secret.get("port", _DEFAULT_PORTS[dialect])),
            "database": secret.get("database"),
            "user": secret.get("user") or secret.get("username"),
            "password": secret.get("password"),
        }

        missing = [name for name, value in credentials.items() if value in (None, "")]
        if missing:
            raise ValueError(f"Missing required fields in secret: {', '.join(missing)}")

        logger.info(f"Fetched {dialect.value} credentials from Vault")
        return credentials

    def health_check(self) -> bool:
        """True when Vault is initialized and unsealed (active or standby)."""
        try:
            response = self.session.get(f"{self.vault_addr}/v1/sys/health", timeout=5)
        except requests.RequestException as e:
            logger.error(f"Vault health check failed: {e}")
            return False
        return response.status_code in (200, 429, 472, 473)
