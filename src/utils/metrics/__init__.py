"""
Prometheus metrics helpers

Usage:
    from utils.metrics import MetricsPublisher, get_or_create_metric

    BATCHES = get_or_create_metric(
        lambda: Counter("bulk_sync_batches_total", "Batches by outcome", ["outcome"]),
        "bulk_sync_batches",
    )

    publisher = MetricsPublisher(port=9108)
    publisher.start()
"""

import logging
from typing import Callable, TypeVar

from prometheus_client import REGISTRY, CollectorRegistry

from .publisher import ApplicationInfo, MetricsPublisher

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_or_create_metric(
    metric_factory: Callable[[], T],
    metric_name: str,
    registry: CollectorRegistry = REGISTRY,
) -> T:
    """
    Create a metric, or return the one already registered under that name.

    Modules defining metrics at import time can be reloaded (tests,
    notebooks) without tripping "Duplicated timeseries" errors.

    Args:
        metric_factory: Callable that creates the metric (e.g. lambda: Counter(...))
        metric_name: Registry name to look up if already registered
            (counters register without their ``_total`` suffix)
        registry: Prometheus registry to use (default: global REGISTRY)
    """
    try:
        return metric_factory()
    except ValueError:
        existing = registry._names_to_collectors.get(metric_name)
        if existing is not None:
            return existing
        raise


__all__ = [
    "MetricsPublisher",
    "ApplicationInfo",
    "get_or_create_metric",
]
