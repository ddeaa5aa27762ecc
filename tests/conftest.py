"""
Pytest configuration and fixtures for bulk sync tests.
Provides shared fixtures for in-memory sources, targets and checkpoint stores.
"""

import os
from pathlib import Path

import pytest

from bulk_sync.config import SyncConfig
from bulk_sync.sources import IterableSource

from tests.fakes import InMemoryTarget, MemoryCheckpointStore


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "property: hypothesis property-based tests")
    config.addinivalue_line("markers", "slow: mark test as slow running")


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Get project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture(autouse=True)
def set_test_env_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set default connection environment variables if not already set."""
    defaults = {
        "SQLSERVER_HOST": "localhost",
        "SQLSERVER_DATABASE": "warehouse",
        "SQLSERVER_USER": "sa",
        "SQLSERVER_PASSWORD": "YourStrong!Passw0rd",
        "POSTGRES_HOST": "localhost",
        "POSTGRES_PORT": "5432",
        "POSTGRES_DB": "warehouse",
        "POSTGRES_USER": "postgres",
        "POSTGRES_PASSWORD": "postgres_secure_password",
        "VAULT_ADDR": "http://localhost:8200",
        "VAULT_TOKEN": "dev-root-token",
    }

    for key, value in defaults.items():
        if key not in os.environ:
            monkeypatch.setenv(key, value)
    for key in [name for name in os.environ if name.startswith("BULK_SYNC_")]:
        monkeypatch.delenv(key)


@pytest.fixture
def base_table() -> dict:
    """Ten base rows keyed 1..10, each with a price."""
    return {key: {"price": 0} for key in range(1, 11)}


@pytest.fixture
def price_source() -> IterableSource:
    """Delta setting price = key * 10 for keys 1..10."""
    return IterableSource([(key, {"price": key * 10}) for key in range(1, 11)])


@pytest.fixture
def target(base_table: dict) -> InMemoryTarget:
    return InMemoryTarget(base=base_table)


@pytest.fixture
def checkpoint_store() -> MemoryCheckpointStore:
    return MemoryCheckpointStore()


@pytest.fixture
def fast_config() -> SyncConfig:
    """Small batches, no backoff delay."""
    return SyncConfig(
        run_id="test-run",
        batch_size=3,
        worker_concurrency=2,
        max_retries=3,
        backoff_base=0.0,
        backoff_max=0.0,
        jitter=False,
    )


