import logging
from enum import Enum
from logging import Logger

from myapp.store.base import Kind, ObjectStore
from myapp.types.models.myapp import MyApp

FINALIZER = f"{MyApp.PLURAL_NAME}.{MyApp.GROUP_NAME}/finalizer"


class FinalizerResult(str, Enum):
    UPDATED = "Updated"
    ALREADY_PRESENT = "AlreadyPresent"
    ALREADY_ABSENT = "AlreadyAbsent"
    GONE = "Gone"


class FinalizerManager:
    """Adds and removes the controller's finalizer on a MyApp.

    The marker is added before any child object is created and removed only
    after every child is confirmed absent. Each change is one merge patch of
    `metadata.finalizers` guarded by the observed resourceVersion, so a
    concurrent writer makes it fail with `ConflictError` instead of losing
    updates.
    """

    def __init__(
        self, store: ObjectStore, finalizer: str = FINALIZER, logger: Logger = None
    ) -> None:
        self.store = store
        self.finalizer = finalizer
        self.logger = logger or logging.getLogger(__name__)

    async def ensure_present(self, app: MyApp) -> FinalizerResult:
        if app.has_finalizer(self.finalizer):
            return FinalizerResult.ALREADY_PRESENT
        finalizers = app.finalizers + [self.finalizer]
        if await self._patch_finalizers(app, finalizers) is None:
            self.logger.info(f"{app.namespace}/{app.name} vanished before the finalizer was added")
            return FinalizerResult.GONE
        self.logger.info(f"Added finalizer to {app.namespace}/{app.name}")
        return FinalizerResult.UPDATED

    async def ensure_absent(self, app: MyApp) -> FinalizerResult:
        if not app.has_finalizer(self.finalizer):
            return FinalizerResult.ALREADY_ABSENT
        finalizers = [f for f in app.finalizers if f != self.finalizer]
        result = await self._patch_finalizers(app, finalizers)
        if result is None:
            # deleted by someone else meanwhile; nothing left to release
            self.logger.info(f"{app.namespace}/{app.name} vanished before finalizer removal")
            return FinalizerResult.GONE
        self.logger.info(f"Removed finalizer from {app.namespace}/{app.name}")
        return FinalizerResult.UPDATED

    async def _patch_finalizers(self, app: MyApp, finalizers):
        patch = {
            "metadata": {
                "resourceVersion": app.resource_version,
                "finalizers": finalizers or None,
            }
        }
        return await self.store.patch(Kind.MYAPP, app.namespace, app.name, patch)
