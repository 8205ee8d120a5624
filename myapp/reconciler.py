import logging
from enum import Enum
from logging import Logger
from typing import Any, Dict, NamedTuple, Optional, Union

from myapp.admission import validate
from myapp.finalizers import FINALIZER, FinalizerManager, FinalizerResult
from myapp.resources.myapp import MyAppResource
from myapp.sensors import OperatorSensor, SensorDelegate
from myapp.store.base import Kind, ObjectStore
from myapp.types.models.myapp import MyApp
from myapp.types.models.myapp_resources import MyAppResources
from myapp.types.schemas.myapp import dump_myapp, load_myapp
from myapp.types.settings import Settings
from myapp.utils.errors import (
    ConflictError,
    OwnershipConflict,
    PermanentStoreError,
    StoreError,
    ValidationFailure,
)
from myapp.utils.helpers import get_path, now, upsert_condition

CHILD_KINDS = (Kind.DEPLOYMENT, Kind.SERVICE)

STATE_RUNNING = "Running"
STATE_ERROR = "Error"

CONDITION_READY = "Ready"
REASON_SUCCESS = "ReconcileSuccess"
REASON_VALIDATION_ERROR = "ValidationError"
REASON_PERMANENT_STORE_ERROR = "PermanentStoreError"
REASON_OWNERSHIP_CONFLICT = "OwnershipConflict"


class State(str, Enum):
    """Lifecycle state of a MyApp, derived from its observed document."""

    PENDING_FINALIZER = "PendingFinalizer"
    ACTIVE = "Active"
    TERMINATING = "Terminating"
    DONE = "Done"


class Action(NamedTuple):
    """What the driver should do once a pass has finished."""

    requeue_after: Optional[float] = None

    @classmethod
    def await_change(cls) -> "Action":
        return cls(None)

    @classmethod
    def requeue(cls, seconds: float) -> "Action":
        return cls(float(seconds))

    @property
    def awaits_change(self) -> bool:
        return self.requeue_after is None


def derive_state(app: Optional[MyApp], finalizer: str = FINALIZER) -> State:
    if app is None:
        return State.DONE
    if app.is_terminating:
        return State.TERMINATING
    if not app.has_finalizer(finalizer):
        return State.PENDING_FINALIZER
    return State.ACTIVE


class Reconciler:
    """Drives one MyApp toward its desired state.

    A pass is stateless: everything it needs is read from the store. Store
    failures are raised to the caller; expected outcomes (object gone, child
    already present) are handled here.
    """

    logger: Logger
    conf: Settings
    sensor: OperatorSensor

    def __init__(
        self,
        store: ObjectStore,
        conf: Settings = None,
        sensor: OperatorSensor = None,
        logger: Logger = None,
        finalizer: str = FINALIZER,
    ) -> None:
        self.store = store
        self.conf = conf or Settings()
        self.sensor = sensor or SensorDelegate()
        self.logger = logger or logging.getLogger(__name__)
        self.finalizers = FinalizerManager(store, finalizer, logger=self.logger)

    async def reconcile_key(self, namespace: str, name: str) -> Action:
        """Run a pass for the object stored under (namespace, name)."""
        document = await self.store.get(Kind.MYAPP, namespace, name)
        if document is None:
            self.logger.debug(f"{namespace}/{name} is gone, nothing to do")
            return Action.await_change()
        return await self.reconcile(document)

    async def reconcile(self, document: Union[Dict[str, Any], MyApp]) -> Action:
        """Run a single reconcile pass over an observed MyApp."""
        if isinstance(document, MyApp):
            app, document = document, dump_myapp(document)
        else:
            app = load_myapp(document)
        state = derive_state(app, self.finalizers.finalizer)

        if state is State.DONE:
            return Action.await_change()

        if state is State.TERMINATING:
            return await self.finalize(app)

        if state is State.PENDING_FINALIZER:
            if await self.finalizers.ensure_present(app) is FinalizerResult.GONE:
                return Action.await_change()
            return Action.requeue(self.conf.finalizer_requeue_seconds)

        try:
            self.check(app, document)
        except ValidationFailure as ex:
            self.logger.error(f"{app.namespace}/{app.name} is invalid: {ex.reason}")
            await self.publish_status(
                app, document, STATE_ERROR, False, REASON_VALIDATION_ERROR, ex.reason
            )
            return Action.requeue(self.conf.validation_retry_seconds)

        try:
            await self.apply(app)
        except PermanentStoreError as ex:
            await self.publish_failure(app, document, ex)
            raise

        await self.publish_status(
            app,
            document,
            STATE_RUNNING,
            True,
            REASON_SUCCESS,
            "Deployment and Service are up to date",
            observed_generation=app.generation,
        )
        return Action.requeue(self.conf.drift_interval_seconds)

    def check(self, app: MyApp, document: Dict[str, Any]) -> None:
        """Raise ValidationFailure when the spec violates the domain constraints."""
        if app.spec_error:
            raise ValidationFailure(app.spec_error)
        decision = validate(document)
        if not decision.allowed:
            raise ValidationFailure(decision.reason)

    async def apply(self, app: MyApp) -> None:
        """Create or patch both child objects."""
        resource = MyAppResource.from_app(app, logger=self.logger)
        for kind in CHILD_KINDS:
            await self.sync_child(app, resource, kind)

    async def sync_child(self, app: MyApp, resource: MyAppResource, kind: Kind) -> str:
        """Check current state of a child object and create/patch if needed."""
        name = resource.child_name(kind)
        resource_type = kind.kind_name.lower()
        desired = resource.desired(kind)

        existing = await self.store.get(kind, app.namespace, name)
        if existing is None:
            created = await self.store.create(desired)
            if created is not None:
                self.logger.info(f"Created {kind.kind_name} {app.namespace}/{name}")
                self.sensor.on_resource_sync_complete(
                    app.name, app.namespace, resource_type, "create"
                )
                return "create"
            # lost a race with another writer; compare against what is there now
            existing = await self.store.get(kind, app.namespace, name)
            if existing is None:
                raise ConflictError(f"{kind.kind_name} {app.namespace}/{name} changed concurrently")

        foreign = resource.foreign_controller(existing)
        if foreign is not None:
            raise OwnershipConflict(
                f"{kind.kind_name} {app.namespace}/{name} is controlled by "
                f"{foreign.get('kind')} {foreign.get('name')}"
            )

        diff = resource.diff(kind, existing, desired)
        if diff.no_change:
            self.logger.debug(f"{kind.kind_name} {app.namespace}/{name} is up to date")
            return "no-op"

        self.logger.info(
            f"{kind.kind_name} {app.namespace}/{name} drifted on {', '.join(diff.fields)}"
        )
        self.sensor.on_resource_drift_detected(
            app.name, app.namespace, resource_type, list(diff.fields)
        )
        patch = resource.prepare_patch(kind, desired, diff.fields, existing=existing)
        patched = await self.store.patch(kind, app.namespace, name, patch)
        if patched is None:
            raise ConflictError(f"{kind.kind_name} {app.namespace}/{name} vanished during patch")
        self.sensor.on_resource_sync_complete(
            app.name, app.namespace, resource_type, "patch"
        )
        return "patch"

    async def finalize(self, app: MyApp) -> Action:
        """Delete the children, then release the MyApp."""
        if not app.has_finalizer(self.finalizers.finalizer):
            return Action.await_change()

        self.logger.info(f"Cleaning up {app.namespace}/{app.name}")
        names = {
            Kind.DEPLOYMENT: MyAppResources.deployment_name(app.name),
            Kind.SERVICE: MyAppResources.service_name(app.name),
        }
        remaining = []
        for kind in CHILD_KINDS:
            name = names[kind]
            if await self.store.delete(kind, app.namespace, name):
                self.sensor.on_resource_sync_complete(
                    app.name, app.namespace, kind.kind_name.lower(), "delete"
                )
            if await self.store.get(kind, app.namespace, name) is not None:
                remaining.append(f"{kind.kind_name} {name}")

        if remaining:
            self.logger.info(
                f"Waiting for {', '.join(remaining)} to go away before releasing "
                f"{app.namespace}/{app.name}"
            )
            return Action.requeue(self.conf.finalizer_requeue_seconds)

        await self.finalizers.ensure_absent(app)
        return Action.await_change()

    async def publish_status(
        self,
        app: MyApp,
        document: Dict[str, Any],
        state: str,
        ready: bool,
        reason: str,
        message: str,
        observed_generation: Optional[int] = None,
    ) -> None:
        """Write the status subresource with a single patch.

        `observedGeneration` is only written for a successful pass; failures
        leave the last reconciled generation in place.
        """
        # an unreadable status is replaced as a whole
        previous = (
            get_path(document, "status", "conditions", default=None)
            if app.status is not None
            else None
        )
        conditions = upsert_condition(
            previous,
            {
                "type": CONDITION_READY,
                "status": "True" if ready else "False",
                "reason": reason,
                "message": message,
            },
        )
        status = {"state": state, "conditions": conditions, "lastUpdated": now()}
        if observed_generation is not None:
            status["observedGeneration"] = observed_generation
        await self.store.patch(
            Kind.MYAPP, app.namespace, app.name, {"status": status}, subresource="status"
        )

    async def publish_failure(
        self, app: MyApp, document: Dict[str, Any], error: PermanentStoreError
    ) -> None:
        """Report a permanent store failure on the status, if it can still be written."""
        reason = (
            REASON_OWNERSHIP_CONFLICT
            if isinstance(error, OwnershipConflict)
            else REASON_PERMANENT_STORE_ERROR
        )
        try:
            await self.publish_status(app, document, STATE_ERROR, False, reason, str(error))
        except StoreError as ex:
            self.logger.warning(
                f"Could not publish failure status for {app.namespace}/{app.name}: {ex}"
            )
