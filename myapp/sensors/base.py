"""Sensor hooks observed by the MyApp controller.

`OperatorSensor` is the no-op base every monitoring backend extends. Start
hooks may return a state dict; the controller hands that dict back to the
matching complete hook so a backend can measure durations or track in-flight
work without keeping its own bookkeeping.
"""

from typing import Any, Dict, List, Optional


class OperatorSensor:
    """No-op base for controller sensors.

    Hooks are grouped by what the controller is doing: a reconcile pass, the
    work queue, writes to child objects, or an admission review. Override the
    hooks you need and leave the rest alone.

    Example:
        class TimingSensor(OperatorSensor):
            def on_reconcile_start(self, name, namespace, generation, trigger_source):
                return {"started": time.monotonic()}

            def on_reconcile_complete(self, name, namespace, state, result, error=None):
                elapsed = time.monotonic() - state["started"]
                logger.info(f"{namespace}/{name} reconciled in {elapsed:.3f}s ({result})")
    """

    # ---- reconcile passes ----

    def on_reconcile_start(
        self,
        name: str,
        namespace: str,
        generation: int,
        trigger_source: str,
    ) -> Optional[Dict[str, Any]]:
        """Called when a reconcile pass begins.

        Args:
            name: MyApp resource name
            namespace: Kubernetes namespace
            generation: Resource generation number (0 when unknown)
            trigger_source: What triggered the pass (watch, requeue, backoff)

        Returns:
            Optional state dict passed to on_reconcile_complete
        """
        pass

    def on_reconcile_complete(
        self,
        name: str,
        namespace: str,
        state: Optional[Dict[str, Any]],
        result: str,
        error: Optional[Exception] = None,
    ) -> None:
        """Called when a reconcile pass completes.

        Args:
            name: MyApp resource name
            namespace: Kubernetes namespace
            state: State dict returned from on_reconcile_start
            result: Outcome label (success, requeue, error)
            error: Exception if the pass failed
        """
        pass

    def on_error(self, error_type: str, namespace: str) -> None:
        """Called for every classified failure of a pass.

        Args:
            error_type: Error classification (conflict, transient_store_error, ...)
            namespace: Kubernetes namespace
        """
        pass

    # ---- work queue ----

    def on_reconcile_queued(self, name: str, namespace: str, queue_depth: int) -> None:
        """Called when a key is put on the work queue.

        Args:
            name: MyApp resource name
            namespace: Kubernetes namespace
            queue_depth: Current number of keys waiting on the queue
        """
        pass

    def on_managed_resources(self, resource_type: str, namespace: str, count: int) -> None:
        """Called when the number of objects the controller manages changes.

        Args:
            resource_type: Kind of the managed object
            namespace: Kubernetes namespace
            count: Number of objects currently known
        """
        pass

    # ---- child resources ----

    def on_resource_sync_complete(
        self,
        name: str,
        namespace: str,
        resource_type: str,
        operation: str,
    ) -> None:
        """Called after a child object was written.

        Args:
            name: Parent MyApp resource name
            namespace: Kubernetes namespace
            resource_type: Type of resource (deployment, service)
            operation: Operation performed (create, patch, delete)
        """
        pass

    def on_resource_drift_detected(
        self,
        name: str,
        namespace: str,
        resource_type: str,
        drift_fields: List[str],
    ) -> None:
        """Called when a child object no longer matches its desired state.

        Args:
            name: Parent MyApp resource name
            namespace: Kubernetes namespace
            resource_type: Type of resource with drift
            drift_fields: List of fields that drifted from desired state
        """
        pass

    # ---- admission ----

    def on_webhook_start(self, webhook_type: str) -> Optional[Dict[str, Any]]:
        """Called when an admission review begins.

        Args:
            webhook_type: validate or mutate

        Returns:
            Optional state dict passed to on_webhook_complete
        """
        pass

    def on_webhook_complete(
        self,
        webhook_type: str,
        state: Optional[Dict[str, Any]],
        result: str,
    ) -> None:
        """Called when an admission review completes.

        Args:
            webhook_type: validate or mutate
            state: State dict returned from on_webhook_start
            result: allowed, denied or error
        """
        pass

    def asdict(self) -> Dict[str, Any]:
        """Return sensor state as dictionary (for debugging/introspection)."""
        return {}
