import asyncio
import logging
from collections import defaultdict
from logging import Logger
from typing import DefaultDict, Dict, Optional, Set, Tuple

from myapp.reconciler import Action, Reconciler
from myapp.sensors import OperatorSensor, SensorDelegate
from myapp.store.base import Kind, ObjectStore, WatchEvent, WatchEventType
from myapp.types.models.myapp import MyApp
from myapp.types.settings import Settings
from myapp.utils.errors import (
    ConflictError,
    PermanentStoreError,
    StoreError,
)
from myapp.utils.helpers import get_path, jittered

Key = Tuple[str, str]


class Controller:
    """Work queue that feeds MyApp keys to the reconciler.

    A key is processed by at most one worker at a time. A key triggered again
    while its pass is running is marked dirty and queued once more when the
    pass ends; triggers for a key that is already waiting are merged. Each
    trigger bumps a per-key sequence number, and a pass whose key was
    triggered meanwhile does not schedule its own requeue.
    """

    logger: Logger
    conf: Settings
    sensor: OperatorSensor

    def __init__(
        self,
        store: ObjectStore,
        reconciler: Reconciler = None,
        conf: Settings = None,
        sensor: OperatorSensor = None,
        logger: Logger = None,
    ) -> None:
        self.store = store
        self.conf = conf or Settings()
        self.sensor = sensor or SensorDelegate()
        self.logger = logger or logging.getLogger(__name__)
        self.reconciler = reconciler or Reconciler(
            store, conf=self.conf, sensor=self.sensor, logger=self.logger
        )
        self._queue: asyncio.Queue = asyncio.Queue()
        self._queued: Set[Key] = set()
        self._in_flight: Set[Key] = set()
        self._dirty: Set[Key] = set()
        self._sequence: DefaultDict[Key, int] = defaultdict(int)
        self._trigger_source: Dict[Key, str] = {}
        self._timers: Dict[Key, asyncio.TimerHandle] = {}
        self._failures: DefaultDict[Key, int] = defaultdict(int)
        self._fingerprints: Dict[Tuple[Kind, Key], tuple] = {}
        self._managed: DefaultDict[str, Set[str]] = defaultdict(set)

    # ---- triggers ----

    def enqueue(self, key: Key, trigger_source: str = "watch") -> None:
        """Request a pass for `key`."""
        self._sequence[key] += 1
        self._cancel_timer(key)
        if key in self._in_flight:
            self._dirty.add(key)
            self._trigger_source[key] = trigger_source
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._trigger_source[key] = trigger_source
        self._queue.put_nowait(key)
        self.sensor.on_reconcile_queued(key[1], key[0], self._queue.qsize())

    def forget(self, key: Key) -> None:
        """Drop timers and backoff state of a key whose object is gone."""
        self._sequence[key] += 1
        self._cancel_timer(key)
        self._failures.pop(key, None)

    def schedule(self, key: Key, delay: Optional[float]) -> None:
        if delay is None:
            return
        if delay <= 0:
            self.enqueue(key, trigger_source="retry")
            return
        self._cancel_timer(key)
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay, self._fire, key)

    def pending_requeue(self, key: Key) -> bool:
        return key in self._timers

    def backoff_delay(self, failures: int) -> float:
        """Exponential delay for the n-th consecutive transient failure."""
        delay = self.conf.backoff_base_seconds * (2 ** max(failures - 1, 0))
        delay = min(delay, self.conf.backoff_cap_seconds)
        return min(jittered(delay, self.conf.backoff_jitter), self.conf.backoff_cap_seconds)

    def _fire(self, key: Key) -> None:
        self._timers.pop(key, None)
        self.enqueue(key, trigger_source="requeue")

    def _cancel_timer(self, key: Key) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    # ---- watch events ----

    def handle_event(self, kind: Kind, event: WatchEvent) -> None:
        """Turn a watch event into triggers."""
        if kind is Kind.MYAPP:
            self._handle_myapp_event(event)
        else:
            self._handle_child_event(kind, event)

    def _handle_myapp_event(self, event: WatchEvent) -> None:
        key = event.key
        namespace, name = key
        if event.type is WatchEventType.DELETED:
            self._fingerprints.pop((Kind.MYAPP, key), None)
            self._managed[namespace].discard(name)
            self.sensor.on_managed_resources("myapp", namespace, len(self._managed[namespace]))
            self.forget(key)
            return

        if name not in self._managed[namespace]:
            self._managed[namespace].add(name)
            self.sensor.on_managed_resources("myapp", namespace, len(self._managed[namespace]))

        metadata = event.object.get("metadata") or {}
        # status writes do not trigger a new pass
        fingerprint = (
            metadata.get("generation"),
            metadata.get("deletionTimestamp"),
            tuple(metadata.get("finalizers") or ()),
        )
        previous = self._fingerprints.get((Kind.MYAPP, key))
        self._fingerprints[(Kind.MYAPP, key)] = fingerprint
        if event.type is WatchEventType.MODIFIED and previous == fingerprint:
            return
        self.enqueue(key, trigger_source="watch")

    def _handle_child_event(self, kind: Kind, event: WatchEvent) -> None:
        owner = self._owner_key(event.object)
        if owner is None:
            return
        metadata = event.object.get("metadata") or {}
        child_key = (kind, (metadata.get("namespace"), metadata.get("name")))
        if event.type is WatchEventType.DELETED:
            self._fingerprints.pop(child_key, None)
            self.enqueue(owner, trigger_source=f"{kind.kind_name.lower()}_deleted")
            return
        fingerprint = (
            metadata.get("generation"),
            tuple(
                ref.get("uid") for ref in metadata.get("ownerReferences") or []
            ),
        )
        previous = self._fingerprints.get(child_key)
        self._fingerprints[child_key] = fingerprint
        if event.type is WatchEventType.ADDED or previous == fingerprint:
            return
        self.enqueue(owner, trigger_source=f"{kind.kind_name.lower()}_changed")

    def _owner_key(self, obj: Dict) -> Optional[Key]:
        for ref in get_path(obj, "metadata", "ownerReferences", default=None) or []:
            if ref.get("kind") == MyApp.KIND and ref.get("controller"):
                return (get_path(obj, "metadata", "namespace"), ref.get("name"))
        return None

    # ---- workers ----

    async def process(self, key: Key) -> Optional[float]:
        """Run one pass for `key` and return the delay until the next one."""
        namespace, name = key
        sequence = self._sequence[key]
        trigger_source = self._trigger_source.pop(key, "watch")
        sensor_state = self.sensor.on_reconcile_start(name, namespace, 0, trigger_source)
        try:
            action: Action = await self.reconciler.reconcile_key(namespace, name)
        except ConflictError as ex:
            self.logger.info(f"Conflict on {namespace}/{name}, retrying: {ex}")
            delay, result, error = 0.0, "conflict", ex
        except PermanentStoreError as ex:
            delay = self.conf.permanent_error_retry_seconds
            self.logger.error(
                f"Permanent store error on {namespace}/{name}, retrying in {delay}s: {ex}"
            )
            result, error = "error", ex
        except StoreError as ex:
            self._failures[key] += 1
            delay = self.backoff_delay(self._failures[key])
            self.logger.warning(
                f"Transient store error on {namespace}/{name} "
                f"(attempt {self._failures[key]}), retrying in {delay:.2f}s: {ex}"
            )
            result, error = "error", ex
        except Exception as ex:
            self._failures[key] += 1
            delay = self.backoff_delay(self._failures[key])
            self.logger.exception(
                f"Unexpected error reconciling {namespace}/{name}, retrying in {delay:.2f}s"
            )
            result, error = "error", ex
        else:
            self._failures.pop(key, None)
            delay = action.requeue_after
            result, error = "success", None

        if error is not None:
            self.sensor.on_error(getattr(error, "error_type", type(error).__name__), namespace)
        self.sensor.on_reconcile_complete(name, namespace, sensor_state, result, error)

        if self._sequence[key] != sequence:
            self.logger.debug(f"{namespace}/{name} was triggered during the pass")
            return None
        return delay

    async def worker(self) -> None:
        while True:
            key = await self._queue.get()
            self._queued.discard(key)
            self._in_flight.add(key)
            try:
                delay = await self.process(key)
                self.schedule(key, delay)
            finally:
                self._in_flight.discard(key)
                if key in self._dirty:
                    self._dirty.discard(key)
                    self.enqueue(key, self._trigger_source.get(key, "watch"))
                self._queue.task_done()

    async def watch(self, kind: Kind) -> None:
        async for event in self.store.watch(kind, self.conf.watch_namespace):
            self.handle_event(kind, event)

    async def join(self) -> None:
        """Wait until no key is queued or being processed."""
        await self._queue.join()

    async def run(self, watch: bool = True) -> None:
        """Run the workers until cancelled.

        With `watch`, the controller also streams every kind from the store;
        otherwise events are fed in through `handle_event`.
        """
        self.logger.info(
            f"Starting controller with {self.conf.worker_limit} workers "
            f"(namespace: {self.conf.watch_namespace or 'all'})"
        )
        workers = [
            asyncio.create_task(self.worker(), name=f"myapp-worker-{i}")
            for i in range(self.conf.worker_limit)
        ]
        watchers = [
            asyncio.create_task(self.watch(kind), name=f"myapp-watch-{kind.plural}")
            for kind in Kind
            if watch
        ]
        try:
            await asyncio.gather(*(watchers or workers))
        finally:
            for task in workers + watchers:
                task.cancel()
            await asyncio.gather(*workers, *watchers, return_exceptions=True)
            for key in list(self._timers):
                self._cancel_timer(key)
            self.logger.info("Controller stopped")
