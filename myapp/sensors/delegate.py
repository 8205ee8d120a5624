"""Fan-out of controller events to several sensors.

The controller talks to a single `SensorDelegate`; each registered backend
receives every event and keeps its own start/complete state.
"""

from typing import Any, Dict, List, Optional, Set
import logging

from myapp.sensors.base import OperatorSensor

logger = logging.getLogger(__name__)

SensorStates = Optional[Dict[OperatorSensor, Any]]


class SensorDelegate(OperatorSensor):
    """Forwards controller events to every registered sensor.

    Start hooks return a mapping of sensor to the state that sensor produced;
    the matching complete hook hands each sensor back its own entry. An
    exception raised by one sensor is logged and does not reach the caller or
    the other sensors.

    Example:
        delegate = SensorDelegate()
        delegate.add(PrometheusMonitor())

        states = delegate.on_webhook_start("validate")
        delegate.on_webhook_complete("validate", states, "allowed")
    """

    def __init__(self) -> None:
        self._sensors: Set[OperatorSensor] = set()

    def add(self, sensor: OperatorSensor) -> None:
        logger.info(f"Registering sensor {type(sensor).__name__}")
        self._sensors.add(sensor)

    def remove(self, sensor: OperatorSensor) -> None:
        logger.info(f"Unregistering sensor {type(sensor).__name__}")
        self._sensors.discard(sensor)

    def _call(self, sensor: OperatorSensor, hook: str, *args: Any) -> Any:
        try:
            return getattr(sensor, hook)(*args)
        except Exception as e:
            logger.error(
                f"Sensor {type(sensor).__name__} failed in {hook}: {e}", exc_info=True
            )
            return None

    def _start(self, hook: str, *args: Any) -> SensorStates:
        states = {}
        for sensor in self._sensors:
            state = self._call(sensor, hook, *args)
            if state is not None:
                states[sensor] = state
        return states or None

    def _emit(self, hook: str, *args: Any) -> None:
        for sensor in self._sensors:
            self._call(sensor, hook, *args)

    # ---- reconcile passes ----

    def on_reconcile_start(
        self,
        name: str,
        namespace: str,
        generation: int,
        trigger_source: str,
    ) -> SensorStates:
        return self._start("on_reconcile_start", name, namespace, generation, trigger_source)

    def on_reconcile_complete(
        self,
        name: str,
        namespace: str,
        state: SensorStates,
        result: str,
        error: Optional[Exception] = None,
    ) -> None:
        for sensor in self._sensors:
            sensor_state = state.get(sensor) if state else None
            self._call(
                sensor, "on_reconcile_complete", name, namespace, sensor_state, result, error
            )

    def on_error(self, error_type: str, namespace: str) -> None:
        self._emit("on_error", error_type, namespace)

    # ---- work queue ----

    def on_reconcile_queued(self, name: str, namespace: str, queue_depth: int) -> None:
        self._emit("on_reconcile_queued", name, namespace, queue_depth)

    def on_managed_resources(self, resource_type: str, namespace: str, count: int) -> None:
        self._emit("on_managed_resources", resource_type, namespace, count)

    # ---- child resources ----

    def on_resource_sync_complete(
        self, name: str, namespace: str, resource_type: str, operation: str
    ) -> None:
        self._emit("on_resource_sync_complete", name, namespace, resource_type, operation)

    def on_resource_drift_detected(
        self, name: str, namespace: str, resource_type: str, drift_fields: List[str]
    ) -> None:
        self._emit(
            "on_resource_drift_detected", name, namespace, resource_type, drift_fields
        )

    # ---- admission ----

    def on_webhook_start(self, webhook_type: str) -> SensorStates:
        return self._start("on_webhook_start", webhook_type)

    def on_webhook_complete(
        self, webhook_type: str, state: SensorStates, result: str
    ) -> None:
        for sensor in self._sensors:
            sensor_state = state.get(sensor) if state else None
            self._call(sensor, "on_webhook_complete", webhook_type, sensor_state, result)

    def asdict(self) -> Dict[str, Any]:
        """State of every registered sensor, keyed by sensor class name."""
        return {type(sensor).__name__: sensor.asdict() for sensor in self._sensors}
