"""Prometheus metrics for the ciflow push trigger.

Metrics are exposed at the `/metrics` endpoint in Prometheus format.

Metrics Defined:
- ciflow_tag_operations_total: Counter of tag creates, deletes and no-op syncs
- ciflow_webhook_deliveries_total: Counter of webhook deliveries by outcome
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    generate_latest,
)


logger = logging.getLogger(__name__)


TAG_OPERATIONS = ("created", "deleted", "unchanged")

DELIVERY_RESULTS = ("handled", "ignored", "failed")


class CiflowMetrics:
    """Container for the service's Prometheus metrics.

    Supports custom registries for testing.

    Metrics:
        tag_operations_total: Counter of tag operations.
            Labels: operation (created/deleted/unchanged)

        webhook_deliveries_total: Counter of processed webhook deliveries.
            Labels: event (e.g. pull_request.labeled), result
            (handled/ignored/failed)

    Example:
        >>> metrics = CiflowMetrics(registry=CollectorRegistry())
        >>> metrics.record_tag_operation("created")
        >>> metrics.record_delivery("pull_request.closed", "handled")
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize metrics.

        Args:
            registry: Optional Prometheus registry. If None, uses the
                      default REGISTRY. Pass a custom registry for testing.
        """
        self.registry = registry or REGISTRY

        self.tag_operations_total = Counter(
            "ciflow_tag_operations_total",
            "Total number of tag operations performed on the reference store",
            labelnames=["operation"],
            registry=self.registry,
        )

        self.webhook_deliveries_total = Counter(
            "ciflow_webhook_deliveries_total",
            "Total number of webhook deliveries processed",
            labelnames=["event", "result"],
            registry=self.registry,
        )

        for operation in TAG_OPERATIONS:
            self.tag_operations_total.labels(operation=operation)

    def record_tag_operation(self, operation: str) -> None:
        """Record a tag operation.

        Args:
            operation: One of TAG_OPERATIONS.
        """
        if operation not in TAG_OPERATIONS:
            logger.warning("Unknown tag operation: %s", operation)
            return
        self.tag_operations_total.labels(operation=operation).inc()

    def record_delivery(self, event: str, result: str) -> None:
        """Record the outcome of a webhook delivery.

        Args:
            event: Event name, e.g. "pull_request.synchronize".
            result: One of DELIVERY_RESULTS.
        """
        if result not in DELIVERY_RESULTS:
            logger.warning("Unknown delivery result: %s", result)
            return
        self.webhook_deliveries_total.labels(event=event, result=result).inc()

    def generate_output(self) -> bytes:
        """Generate Prometheus text output for this registry."""
        return generate_latest(self.registry)


# Global metrics instance for the default registry
_default_metrics: Optional[CiflowMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> CiflowMetrics:
    """Get or create the metrics instance.

    Args:
        registry: Optional Prometheus registry. If None, returns the
                  global metrics instance for the default registry.

    Returns:
        CiflowMetrics: The metrics instance.
    """
    global _default_metrics

    if registry is not None:
        return CiflowMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = CiflowMetrics()

    return _default_metrics
