"""
Unit tests for utils/vault_client.py

Covers initialization, secret retrieval, database credential normalization
and health checks against a mocked HTTP session.
"""

from unittest.mock import Mock, patch

import pytest
import requests

from utils.vault_client import VaultClient


def vault_response(status_code=200, data=None):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = {"data": {"data": data or {}}}
    if status_code >= 400 and status_code != 404:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} Server Error")
    return response


@pytest.fixture
def client():
    client = VaultClient(vault_addr="https://vault.example.com/", vault_token="test-token-123")
    client.session = Mock()
    return client


class TestVaultClientInit:
    """Test VaultClient initialization scenarios"""

    def test_init_with_explicit_parameters(self):
        client = VaultClient(vault_addr="https://vault.example.com/", vault_token="t", namespace="team-a")

        assert client.vault_addr == "https://vault.example.com"
        assert client.session.headers["X-Vault-Token"] == "t"
        assert client.session.headers["X-Vault-Namespace"] == "team-a"

    def test_init_with_env_variables(self, monkeypatch):
        monkeypatch.setenv("VAULT_ADDR", "https://vault.env.com")
        monkeypatch.setenv("VAULT_TOKEN", "env-token-456")

        client = VaultClient()

        assert client.vault_addr == "https://vault.env.com"
        assert client.session.headers["X-Vault-Token"] == "env-token-456"

    @patch("utils.vault_client.os.getenv", return_value=None)
    def test_missing_address(self, mock_getenv):
        with pytest.raises(ValueError, match="Vault address not provided"):
            VaultClient(vault_token="t")

    @patch("utils.vault_client.os.getenv", return_value=None)
    def test_missing_token(self, mock_getenv):
        with pytest.raises(ValueError, match="Vault token not provided"):
            VaultClient(vault_addr="https://vault.example.com")


class TestGetSecret:
    """Test KV v2 reads"""

    def test_reads_data_of_data(self, client):
        client.session.get.return_value = vault_response(data={"password": "p"})

        assert client.get_secret("database/postgresql") == {"password": "p"}
        client.session.get.assert_called_once_with(
            "https://vault.example.com/v1/secret/data/database/postgresql", timeout=10.0
        )

    @pytest.mark.parametrize("path", ["", "../sys/policy", "database/pg?list=true", "a b"])
    def test_rejects_unsafe_paths(self, client, path):
        with pytest.raises(ValueError, match="Invalid secret_path"):
            client.get_secret(path)
        client.session.get.assert_not_called()

    def test_not_found(self, client):
        client.session.get.return_value = vault_response(status_code=404)
        with pytest.raises(ValueError, match="Secret not found"):
            client.get_secret("database/postgresql")

    def test_empty_secret(self, client):
        client.session.get.return_value = vault_response(data={})
        with pytest.raises(ValueError, match="No data found"):
            client.get_secret("database/postgresql")

    def test_server_error_propagates(self, client):
        client.session.get.return_value = vault_response(status_code=503)
        with pytest.raises(requests.HTTPError):
            client.get_secret("database/postgresql")


class TestGetDatabaseCredentials:
    """Test normalization into pool connection settings"""

    def test_default_path_and_port(self, client):
        client.session.get.return_value = vault_response(
            data={"host": "pg.internal", "database": "warehouse", "user": "sync", "password": "s3cret"}
        )

        credentials = client.get_database_credentials("postgres")

        assert credentials == {
            "host": "pg.internal",
            "port": 5432,
            "database": "warehouse",
            "user": "sync",
            "password": "s3cret",
        }
        assert client.session.get.call_args.args[0].endswith("/data/database/postgresql")

    def test_legacy_field_names(self, client):
        client.session.get.return_value = vault_response(
            data={"server": "mssql.internal", "port": "14330", "database": "wh", "username": "sa", "password": "p"}
        )

        credentials = client.get_database_credentials("sqlserver", secret_path="database/legacy")

        assert credentials["host"] == "mssql.internal"
        assert credentials["port"] == 14330
        assert credentials["user"] == "sa"

    def test_connection_string_passthrough(self, client):
        client.session.get.return_value = vault_response(data={"connection_string": "DSN=warehouse"})
        assert client.get_database_credentials("sqlserver") == {"connection_string": "DSN=warehouse"}

    def test_missing_fields(self, client):
        client.session.get.return_value = vault_response(data={"host": "pg.internal", "password": ""})
        with pytest.raises(ValueError, match="database, user, password"):
            client.get_database_credentials("postgresql")


class TestHealthCheck:
    @pytest.mark.parametrize("status_code,healthy", [(200, True), (429, True), (503, False), (501, False)])
    def test_status_codes(self, client, status_code, healthy):
        client.session.get.return_value = Mock(status_code=status_code)
        assert client.health_check() is healthy

    def test_unreachable(self, client):
        client.session.get.side_effect = requests.ConnectionError("refused")
        assert client.health_check() is False
