"""
Prometheus HTTP exporter.

Exposes every registered metric on /metrics so a long sync run can be
scraped while it progresses.
"""

import errno
import logging
import time

from prometheus_client import REGISTRY, CollectorRegistry, Gauge, Info, start_http_server

logger = logging.getLogger(__name__)


class MetricsPublisher:
    """Starts the Prometheus HTTP server once per process."""

    def __init__(
        self,
        port: int = 9108,
        addr: str = "0.0.0.0",
        registry: CollectorRegistry | None = None,
    ):
        self.port = port
        self.addr = addr
        self.registry = registry or REGISTRY
        self._server_started = False

    def start(self) -> None:
        """Start the metrics HTTP server"""
        if self._server_started:
            logger.warning(f"Metrics server already running on port {self.port}")
            return

        try:
            start_http_server(self.port, addr=self.addr, registry=self.registry)
        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                raise RuntimeError(
                    f"Metrics server port {self.port} is already in use. "
                    f"Stop the conflicting process or pass a different --metrics-port."
                ) from e
            raise

        self._server_started = True
        logger.info(f"Metrics server started on {self.addr}:{self.port}")


class ApplicationInfo:
    """Build info and uptime gauges."""

    def __init__(
        self,
        app_name: str = "bulk-sync",
        version: str = "1.0.0",
        registry: CollectorRegistry | None = None,
    ):
        self.registry = registry or REGISTRY

        self.info = Info("bulk_sync_application", "Application metadata", registry=self.registry)
        self.info.info({"name": app_name, "version": version})

        self._start_time = time.time()
        self.uptime_seconds = Gauge(
            "bulk_sync_application_uptime_seconds",
            "Application uptime in seconds",
            registry=self.registry,
        )
        self.uptime_seconds.set_function(self.get_uptime)

    def get_uptime(self) -> float:
        return time.time() - self._start_time
