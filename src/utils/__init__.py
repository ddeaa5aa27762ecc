"""
Shared infrastructure for the bulk sync engine

Provides:
- db_pool: Thread-safe PostgreSQL / SQL Server connection pools
- logging: Structured logging setup
- tracing: OpenTelemetry spans
- metrics: Prometheus registration helpers and exporter
- retry: Exponential backoff helpers
- vault_client: HashiCorp Vault integration for database credentials
"""

__version__ = "1.0.0"
__all__ = ["db_pool", "logging", "tracing", "metrics", "retry", "vault_client"]
