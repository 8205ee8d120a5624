"""Prometheus monitoring backend for the MyApp controller.

PrometheusMonitor turns sensor hooks into counters, gauges and histograms
under the `myapp_` prefix, served by `myapp.sensors.server`.
"""

from typing import Any, Dict, List, Optional
import time
import logging

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from myapp.sensors.base import OperatorSensor

logger = logging.getLogger(__name__)


class PrometheusMonitor(OperatorSensor):
    """Prometheus metrics monitor for the MyApp controller.

    Exposes metrics via prometheus_client that can be scraped by Prometheus.
    Metrics register with the default registry unless another one is given.

    Example:
        monitor = PrometheusMonitor()

        state = monitor.on_reconcile_start("my-app", "default", 5, "watch")
        monitor.on_reconcile_complete("my-app", "default", state, "success")
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY, version: str = None):
        """Initialize Prometheus metrics."""
        super().__init__()

        # =============================================================================
        # Reconciliation Metrics
        # =============================================================================

        self.reconcile_total = Counter(
            'myapp_reconcile_total',
            'Total number of reconciliation attempts',
            labelnames=['namespace', 'name', 'result'],
            registry=registry,
        )

        self.reconcile_duration = Histogram(
            'myapp_reconcile_duration_seconds',
            'Time spent in reconciliation',
            labelnames=['namespace', 'name'],
            buckets=[0.01, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0],
            registry=registry,
        )

        self.errors_total = Counter(
            'myapp_errors_total',
            'Total number of errors by type',
            labelnames=['error_type', 'namespace'],
            registry=registry,
        )

        self.active_reconciles = Gauge(
            'myapp_active_reconciles',
            'Number of active reconciliation loops',
            labelnames=['namespace'],
            registry=registry,
        )

        self.queue_depth = Gauge(
            'myapp_reconcile_queue_depth',
            'Number of keys waiting on the work queue',
            registry=registry,
        )

        # =============================================================================
        # Resource Metrics
        # =============================================================================

        self.managed_resources = Gauge(
            'myapp_managed_resources_total',
            'Number of resources managed by controller',
            labelnames=['resource_type', 'namespace'],
            registry=registry,
        )

        self.resource_operations = Counter(
            'myapp_resource_operations_total',
            'Total number of child resource writes',
            labelnames=['resource_type', 'namespace', 'operation'],
            registry=registry,
        )

        self.resource_drift = Counter(
            'myapp_resource_drift_detected_total',
            'Total number of times a child resource drifted from its desired state',
            labelnames=['resource_type', 'namespace', 'field'],
            registry=registry,
        )

        # =============================================================================
        # Webhook Metrics
        # =============================================================================

        self.webhook_requests = Counter(
            'myapp_webhook_requests_total',
            'Total webhook requests',
            labelnames=['webhook_type', 'result'],
            registry=registry,
        )

        self.webhook_duration = Histogram(
            'myapp_webhook_duration_seconds',
            'Webhook request duration',
            labelnames=['webhook_type'],
            buckets=[0.001, 0.01, 0.1, 0.5, 1.0],
            registry=registry,
        )

        self.controller_info = Gauge(
            'myapp_controller_info',
            'Controller version info',
            labelnames=['version'],
            registry=registry,
        )
        if version:
            self.controller_info.labels(version=version).set(1)

        logger.info("PrometheusMonitor initialized with all metrics")

    # =============================================================================
    # Reconciliation Lifecycle Hooks
    # =============================================================================

    def on_reconcile_start(
        self,
        name: str,
        namespace: str,
        generation: int,
        trigger_source: str,
    ) -> Optional[Dict[str, Any]]:
        """Record reconciliation start time."""
        self.active_reconciles.labels(namespace=namespace).inc()
        return {
            'start_time': time.time(),
            'trigger_source': trigger_source,
        }

    def on_reconcile_complete(
        self,
        name: str,
        namespace: str,
        state: Optional[Dict[str, Any]],
        result: str,
        error: Optional[Exception] = None,
    ) -> None:
        """Record reconciliation duration and result."""
        if state:
            duration = time.time() - state['start_time']
            self.reconcile_duration.labels(namespace=namespace, name=name).observe(duration)
            self.active_reconciles.labels(namespace=namespace).dec()
        self.reconcile_total.labels(namespace=namespace, name=name, result=result).inc()

    def on_error(self, error_type: str, namespace: str) -> None:
        self.errors_total.labels(error_type=error_type, namespace=namespace).inc()

    # =============================================================================
    # Work Queue Hooks
    # =============================================================================

    def on_reconcile_queued(self, name: str, namespace: str, queue_depth: int) -> None:
        self.queue_depth.set(queue_depth)

    def on_managed_resources(self, resource_type: str, namespace: str, count: int) -> None:
        self.managed_resources.labels(
            resource_type=resource_type, namespace=namespace
        ).set(count)

    # =============================================================================
    # Resource Operation Hooks
    # =============================================================================

    def on_resource_sync_complete(
        self,
        name: str,
        namespace: str,
        resource_type: str,
        operation: str,
    ) -> None:
        self.resource_operations.labels(
            resource_type=resource_type, namespace=namespace, operation=operation
        ).inc()

    def on_resource_drift_detected(
        self,
        name: str,
        namespace: str,
        resource_type: str,
        drift_fields: List[str],
    ) -> None:
        for field in drift_fields:
            self.resource_drift.labels(
                resource_type=resource_type, namespace=namespace, field=field
            ).inc()

    # =============================================================================
    # Admission Webhook Hooks
    # =============================================================================

    def on_webhook_start(self, webhook_type: str) -> Optional[Dict[str, Any]]:
        return {'start_time': time.time()}

    def on_webhook_complete(
        self,
        webhook_type: str,
        state: Optional[Dict[str, Any]],
        result: str,
    ) -> None:
        if state:
            duration = time.time() - state['start_time']
            self.webhook_duration.labels(webhook_type=webhook_type).observe(duration)
        self.webhook_requests.labels(webhook_type=webhook_type, result=result).inc()
