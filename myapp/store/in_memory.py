"""Module for in memory object store."""

import asyncio
import copy
import logging
import uuid
from collections import defaultdict
from typing import (
    Any,
    AsyncIterator,
    DefaultDict,
    Dict,
    List,
    NamedTuple,
    Optional,
    Tuple,
    Type,
)

from myapp.utils.errors import ConflictError, PermanentStoreError, StoreError
from myapp.utils.helpers import apply_merge_patch, deep_compare_dict, now
from .base import Kind, ObjectStore, WatchEvent, WatchEventType


_LOGGER = logging.getLogger(__name__)

ObjectKey = Tuple[Kind, str, str]

_IMMUTABLE_METADATA = (
    "uid",
    "name",
    "namespace",
    "resourceVersion",
    "generation",
    "creationTimestamp",
    "deletionTimestamp",
)


class Call(NamedTuple):
    """A store call as recorded by `InMemoryObjectStore.calls`."""

    operation: str
    kind: Kind
    namespace: str
    name: str


class _InjectedFailure:
    def __init__(
        self,
        operation: str,
        error: Type[StoreError],
        kind: Optional[Kind],
        times: int,
    ) -> None:
        self.operation = operation
        self.error = error
        self.kind = kind
        self.remaining = times

    def matches(self, operation: str, kind: Kind) -> bool:
        return (
            self.remaining > 0
            and self.operation in (operation, "*")
            and (self.kind is None or self.kind is kind)
        )


class InMemoryObjectStore(ObjectStore):
    """In-memory implementation of the ObjectStore interface.

    Behaves like the API server for the parts the controller relies on:
    server-assigned uid, resourceVersion and generation, deletion through
    deletionTimestamp while finalizers remain, cascading deletion of owned
    objects, optimistic concurrency and watch streams. Failures can be
    injected per operation to exercise error handling.
    """

    def __init__(self) -> None:
        """Initialize the InMemoryObjectStore."""
        self._objects: Dict[ObjectKey, Dict[str, Any]] = {}
        self._resource_version = 0
        self._watchers: DefaultDict[Kind, List[Tuple[Optional[str], asyncio.Queue]]] = (
            defaultdict(list)
        )
        self._failures: List[_InjectedFailure] = []
        self.calls: List[Call] = []

    # ---- Inspection helpers ----

    def objects(self, kind: Kind, namespace: Optional[str] = None) -> List[Dict]:
        """List copies of the stored objects of `kind`."""
        return [
            copy.deepcopy(obj)
            for (k, ns, _), obj in sorted(self._objects.items(), key=lambda i: i[0][1:])
            if k is kind and (namespace is None or ns == namespace)
        ]

    def calls_for(self, operation: str, kind: Optional[Kind] = None) -> List[Call]:
        return [
            call
            for call in self.calls
            if call.operation == operation and (kind is None or call.kind is kind)
        ]

    def fail_next(
        self,
        operation: str,
        error: Type[StoreError],
        kind: Optional[Kind] = None,
        times: int = 1,
    ) -> None:
        """Make the next `times` calls of `operation` raise `error`.

        `operation` is one of get, create, patch, delete, or "*" for any.
        """
        self._failures.append(_InjectedFailure(operation, error, kind, times))

    # ---- ObjectStore ----

    async def get(self, kind: Kind, namespace: str, name: str) -> Optional[Dict]:
        await self._enter("get", kind, namespace, name)
        obj = self._objects.get((kind, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    async def create(self, obj: Dict) -> Optional[Dict]:
        kind = Kind.of(obj)
        metadata = obj.get("metadata") or {}
        namespace, name = metadata.get("namespace"), metadata.get("name")
        await self._enter("create", kind, namespace, name)
        if not name:
            raise PermanentStoreError(f"{kind.kind_name} without a name is invalid")
        key = (kind, namespace, name)
        if key in self._objects:
            _LOGGER.debug("%s %s/%s already exists", kind.kind_name, namespace, name)
            return None

        created = copy.deepcopy(obj)
        # status is a subresource; create never writes it
        created.pop("status", None)
        created_metadata = created.setdefault("metadata", {})
        created_metadata.update(
            {
                "uid": str(uuid.uuid4()),
                "resourceVersion": self._next_resource_version(),
                "generation": 1,
                "creationTimestamp": now(),
            }
        )
        created_metadata.pop("deletionTimestamp", None)
        self._objects[key] = created
        self._notify(kind, WatchEventType.ADDED, created)
        return copy.deepcopy(created)

    async def patch(
        self,
        kind: Kind,
        namespace: str,
        name: str,
        patch: Dict,
        subresource: Optional[str] = None,
    ) -> Optional[Dict]:
        await self._enter("patch", kind, namespace, name)
        key = (kind, namespace, name)
        current = self._objects.get(key)
        if current is None:
            return None

        expected_version = (patch.get("metadata") or {}).get("resourceVersion")
        if (
            expected_version is not None
            and expected_version != current["metadata"]["resourceVersion"]
        ):
            raise ConflictError(
                f"Operation cannot be fulfilled on {kind.plural} \"{name}\": "
                "the object has been modified"
            )

        if subresource == "status":
            updated = copy.deepcopy(current)
            if "status" in patch:
                updated["status"] = apply_merge_patch(current.get("status"), patch["status"])
                if updated["status"] is None:
                    updated.pop("status")
        elif subresource is None:
            changes = {k: v for k, v in patch.items() if k != "status"}
            metadata_patch = dict(changes.get("metadata") or {})
            for field in _IMMUTABLE_METADATA:
                metadata_patch.pop(field, None)
            changes["metadata"] = metadata_patch
            updated = apply_merge_patch(current, changes)
            self._check_finalizers(current, updated)
            if not deep_compare_dict(current.get("spec"), updated.get("spec")):
                updated["metadata"]["generation"] = current["metadata"]["generation"] + 1
        else:
            raise PermanentStoreError(f"Unsupported subresource: {subresource}")

        if deep_compare_dict(current, updated):
            return copy.deepcopy(current)

        updated["metadata"]["resourceVersion"] = self._next_resource_version()
        if updated["metadata"].get("deletionTimestamp") and not updated["metadata"].get(
            "finalizers"
        ):
            self._remove(key, updated)
            return copy.deepcopy(updated)

        self._objects[key] = updated
        self._notify(kind, WatchEventType.MODIFIED, updated)
        return copy.deepcopy(updated)

    async def delete(self, kind: Kind, namespace: str, name: str) -> bool:
        await self._enter("delete", kind, namespace, name)
        key = (kind, namespace, name)
        if key not in self._objects:
            return False
        self._request_deletion(key)
        return True

    async def watch(
        self, kind: Kind, namespace: Optional[str] = None
    ) -> AsyncIterator[WatchEvent]:
        queue: asyncio.Queue = asyncio.Queue()
        for obj in self.objects(kind, namespace):
            queue.put_nowait(WatchEvent(WatchEventType.ADDED, obj))
        subscription = (namespace, queue)
        self._watchers[kind].append(subscription)
        try:
            while True:
                yield await queue.get()
        finally:
            self._watchers[kind].remove(subscription)

    # ---- internals ----

    async def _enter(self, operation: str, kind: Kind, namespace: str, name: str):
        self.calls.append(Call(operation, kind, namespace, name))
        # behave like a remote call: let other tasks run
        await asyncio.sleep(0)
        for failure in self._failures:
            if failure.matches(operation, kind):
                failure.remaining -= 1
                raise failure.error(
                    f"injected failure on {operation} {kind.kind_name} {namespace}/{name}"
                )

    def _next_resource_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    def _check_finalizers(self, current: Dict, updated: Dict) -> None:
        if not current["metadata"].get("deletionTimestamp"):
            return
        added = set(updated["metadata"].get("finalizers") or []) - set(
            current["metadata"].get("finalizers") or []
        )
        if added:
            raise PermanentStoreError(
                "Forbidden: no new finalizers can be added if the object is being deleted"
            )

    def _request_deletion(self, key: ObjectKey) -> None:
        obj = self._objects[key]
        metadata = obj["metadata"]
        if metadata.get("finalizers"):
            if metadata.get("deletionTimestamp"):
                return
            updated = copy.deepcopy(obj)
            updated["metadata"]["deletionTimestamp"] = now()
            updated["metadata"]["resourceVersion"] = self._next_resource_version()
            self._objects[key] = updated
            self._notify(key[0], WatchEventType.MODIFIED, updated)
            return
        self._remove(key, obj)

    def _remove(self, key: ObjectKey, last_state: Dict) -> None:
        self._objects.pop(key, None)
        _LOGGER.debug("Removed %s %s/%s", key[0].kind_name, key[1], key[2])
        self._notify(key[0], WatchEventType.DELETED, last_state)
        self._collect_garbage(last_state["metadata"].get("uid"))

    def _collect_garbage(self, owner_uid: Optional[str]) -> None:
        """Delete every object owned by `owner_uid`."""
        if not owner_uid:
            return
        dependents = [
            key
            for key, obj in self._objects.items()
            if any(
                ref.get("uid") == owner_uid
                for ref in obj["metadata"].get("ownerReferences") or []
            )
        ]
        for key in dependents:
            if key in self._objects:
                self._request_deletion(key)

    def _notify(self, kind: Kind, event_type: WatchEventType, obj: Dict) -> None:
        namespace = obj["metadata"].get("namespace")
        for watch_namespace, queue in self._watchers[kind]:
            if watch_namespace is None or watch_namespace == namespace:
                queue.put_nowait(WatchEvent(event_type, copy.deepcopy(obj)))
