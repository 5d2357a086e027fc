"""
Prometheus metrics for monitoring.

Each Metrics instance owns its own CollectorRegistry, so several validators
(or tests) in one process never collide on metric names.
"""

from typing import Optional
import logging

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)


class Metrics:
    """
    Prometheus metrics collector.

    Tracks:
    - Validations by outcome and rejection reason
    - Validation latency
    - Type and domain registrations
    """

    def __init__(self, enabled: bool = True, registry: Optional[CollectorRegistry] = None):
        """
        Initialize metrics.

        Args:
            enabled: Enable metrics collection
            registry: Collector registry (a private one is created if None)
        """
        self.enabled = enabled
        self.registry = registry or CollectorRegistry()

        if not self.enabled:
            return

        self.validations = Counter(
            'eip712_forwarder_validations_total',
            'Total request validations',
            ['result', 'reason'],
            registry=self.registry
        )

        self.validation_latency = Histogram(
            'eip712_forwarder_validation_latency_seconds',
            'Request validation latency',
            registry=self.registry
        )

        self.registrations = Counter(
            'eip712_forwarder_registrations_total',
            'Type and domain registrations',
            ['kind'],
            registry=self.registry
        )

    def serve(self, port: int = 9090) -> bool:
        """
        Start the metrics HTTP server.

        Returns:
            True if the server started
        """
        if not self.enabled:
            return False
        try:
            start_http_server(port, registry=self.registry)
            logger.info(f"Metrics server started on port {port}")
            return True
        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False

    def track_validation(self, result: str, reason: str, duration: float) -> None:
        """Record a validation outcome."""
        if self.enabled:
            self.validations.labels(result=result, reason=reason).inc()
            self.validation_latency.observe(duration)

    def track_registration(self, kind: str) -> None:
        """Record a type or domain registration."""
        if self.enabled:
            self.registrations.labels(kind=kind).inc()

    def validation_count(self, result: str, reason: str) -> float:
        """Current counter value (0 when disabled)."""
        if not self.enabled:
            return 0.0
        value = self.registry.get_sample_value(
            'eip712_forwarder_validations_total', {'result': result, 'reason': reason}
        )
        return value or 0.0
