"""MyApp Controller Sensor Framework.

Non-invasive instrumentation of controller lifecycle events through a
hook-based pattern, inspired by Faust's sensor architecture.

Key components:
- OperatorSensor: Base class defining lifecycle hooks for controller events
- SensorDelegate: Fan-out pattern for routing events to multiple sensor backends
- PrometheusMonitor: Prometheus metrics exporter

Usage:
    from myapp.sensors import SensorDelegate, PrometheusMonitor

    delegate = SensorDelegate()
    delegate.add(PrometheusMonitor())
"""

from myapp.sensors.base import OperatorSensor
from myapp.sensors.delegate import SensorDelegate
from myapp.sensors.prometheus import PrometheusMonitor
from myapp.sensors.server import init_metrics_server

__all__ = [
    'OperatorSensor',
    'SensorDelegate',
    'PrometheusMonitor',
    'init_metrics_server',
]
