import asyncio
import logging
from logging import Logger
from typing import Any, AsyncIterator, Awaitable, Dict, Optional

import aiohttp
from kubernetes_asyncio import watch
from kubernetes_asyncio.client import (
    ApiException,
    AppsV1Api,
    CoreV1Api,
    CustomObjectsApi,
    V1DeleteOptions,
)
from kubernetes_asyncio.client.api_client import ApiClient

from myapp.utils.errors import (
    StoreError,
    already_exists_error,
    convert_api_exception,
    not_found_error,
)
from myapp.utils.helpers import jittered
from .base import Kind, ObjectStore, WatchEvent, WatchEventType

MERGE_PATCH = "application/merge-patch+json"


class KubernetesObjectStore(ObjectStore):
    """ObjectStore backed by the Kubernetes API server.

    Every call is bounded by `timeout`; API and transport failures are
    converted into the store error taxonomy.
    """

    logger: Logger

    WATCH_TIMEOUT_SECONDS = 300
    WATCH_RETRY_SECONDS = 5

    _apps_v1_api: AppsV1Api = None
    _core_v1_api: CoreV1Api = None
    _custom_objects_api: CustomObjectsApi = None

    def __init__(
        self,
        api_client: ApiClient,
        timeout: float = 10,
        logger: Logger = None,
    ) -> None:
        self.api_client = api_client
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    async def get(self, kind: Kind, namespace: str, name: str) -> Optional[Dict]:
        try:
            if kind is Kind.MYAPP:
                result = await self._call(
                    self.custom_objects_api.get_namespaced_custom_object(
                        group=kind.group,
                        version=kind.version,
                        namespace=namespace,
                        plural=kind.plural,
                        name=name,
                    )
                )
            elif kind is Kind.DEPLOYMENT:
                result = await self._call(
                    self.apps_v1_api.read_namespaced_deployment(
                        name=name, namespace=namespace
                    )
                )
            else:
                result = await self._call(
                    self.core_v1_api.read_namespaced_service(
                        name=name, namespace=namespace
                    )
                )
        except ApiException as ex:
            if not_found_error(ex):
                return None
            raise convert_api_exception(ex) from ex
        return self._as_dict(result)

    async def create(self, obj: Dict) -> Optional[Dict]:
        kind = Kind.of(obj)
        namespace = obj["metadata"]["namespace"]
        try:
            if kind is Kind.MYAPP:
                result = await self._call(
                    self.custom_objects_api.create_namespaced_custom_object(
                        group=kind.group,
                        version=kind.version,
                        namespace=namespace,
                        plural=kind.plural,
                        body=obj,
                    )
                )
            elif kind is Kind.DEPLOYMENT:
                result = await self._call(
                    self.apps_v1_api.create_namespaced_deployment(
                        namespace=namespace, body=obj
                    )
                )
            else:
                result = await self._call(
                    self.core_v1_api.create_namespaced_service(
                        namespace=namespace, body=obj
                    )
                )
        except ApiException as ex:
            if already_exists_error(ex):
                return None
            raise convert_api_exception(ex) from ex
        return self._as_dict(result)

    async def patch(
        self,
        kind: Kind,
        namespace: str,
        name: str,
        patch: Dict,
        subresource: Optional[str] = None,
    ) -> Optional[Dict]:
        if subresource not in (None, "status"):
            raise ValueError(f"Unsupported subresource: {subresource}")
        try:
            if kind is Kind.MYAPP:
                method = (
                    self.custom_objects_api.patch_namespaced_custom_object_status
                    if subresource == "status"
                    else self.custom_objects_api.patch_namespaced_custom_object
                )
                result = await self._call(
                    method(
                        group=kind.group,
                        version=kind.version,
                        namespace=namespace,
                        plural=kind.plural,
                        name=name,
                        body=patch,
                        _content_type=MERGE_PATCH,
                    )
                )
            elif kind is Kind.DEPLOYMENT:
                method = (
                    self.apps_v1_api.patch_namespaced_deployment_status
                    if subresource == "status"
                    else self.apps_v1_api.patch_namespaced_deployment
                )
                result = await self._call(
                    method(
                        name=name,
                        namespace=namespace,
                        body=patch,
                        _content_type=MERGE_PATCH,
                    )
                )
            else:
                method = (
                    self.core_v1_api.patch_namespaced_service_status
                    if subresource == "status"
                    else self.core_v1_api.patch_namespaced_service
                )
                result = await self._call(
                    method(
                        name=name,
                        namespace=namespace,
                        body=patch,
                        _content_type=MERGE_PATCH,
                    )
                )
        except ApiException as ex:
            if not_found_error(ex):
                return None
            raise convert_api_exception(ex) from ex
        return self._as_dict(result)

    async def delete(self, kind: Kind, namespace: str, name: str) -> bool:
        delete_options = V1DeleteOptions(propagation_policy="Background")
        try:
            if kind is Kind.MYAPP:
                await self._call(
                    self.custom_objects_api.delete_namespaced_custom_object(
                        group=kind.group,
                        version=kind.version,
                        namespace=namespace,
                        plural=kind.plural,
                        name=name,
                        body=delete_options,
                    )
                )
            elif kind is Kind.DEPLOYMENT:
                await self._call(
                    self.apps_v1_api.delete_namespaced_deployment(
                        name=name, namespace=namespace, body=delete_options
                    )
                )
            else:
                await self._call(
                    self.core_v1_api.delete_namespaced_service(
                        name=name, namespace=namespace, body=delete_options
                    )
                )
        except ApiException as ex:
            if not_found_error(ex):
                return False
            raise convert_api_exception(ex) from ex
        return True

    async def watch(
        self, kind: Kind, namespace: Optional[str] = None
    ) -> AsyncIterator[WatchEvent]:
        """Stream watch events, reconnecting whenever the stream ends or fails."""
        resource_version = None
        failures = 0
        while True:
            list_func, kwargs = self._list_call(kind, namespace)
            if resource_version:
                kwargs["resource_version"] = resource_version
            try:
                async with watch.Watch() as w:
                    async for event in w.stream(
                        list_func, timeout_seconds=self.WATCH_TIMEOUT_SECONDS, **kwargs
                    ):
                        event_type = event.get("type")
                        obj = event.get("raw_object") or self._as_dict(event.get("object"))
                        if event_type == "ERROR":
                            if (obj or {}).get("code") == 410:
                                resource_version = None
                                break
                            self.logger.warning("Watch on %s failed: %s", kind.plural, obj)
                            break
                        if event_type not in WatchEventType.__members__:
                            continue
                        resource_version = (obj.get("metadata") or {}).get(
                            "resourceVersion", resource_version
                        )
                        failures = 0
                        yield WatchEvent(WatchEventType(event_type), obj)
            except ApiException as ex:
                if ex.status == 410:
                    resource_version = None
                    continue
                failures += 1
                self.logger.error(
                    "Watch on %s failed (%s): %s", kind.plural, ex.status, ex.reason
                )
                await asyncio.sleep(self._watch_retry_delay(failures))
            except (asyncio.TimeoutError, aiohttp.ClientError) as ex:
                failures += 1
                self.logger.warning("Watch on %s interrupted: %r", kind.plural, ex)
                await asyncio.sleep(self._watch_retry_delay(failures))

    async def close(self) -> None:
        await self.api_client.close()

    def _list_call(self, kind: Kind, namespace: Optional[str]):
        if kind is Kind.MYAPP:
            kwargs = dict(group=kind.group, version=kind.version, plural=kind.plural)
            if namespace:
                return (
                    self.custom_objects_api.list_namespaced_custom_object,
                    dict(kwargs, namespace=namespace),
                )
            return self.custom_objects_api.list_cluster_custom_object, kwargs
        if kind is Kind.DEPLOYMENT:
            if namespace:
                return self.apps_v1_api.list_namespaced_deployment, dict(namespace=namespace)
            return self.apps_v1_api.list_deployment_for_all_namespaces, {}
        if namespace:
            return self.core_v1_api.list_namespaced_service, dict(namespace=namespace)
        return self.core_v1_api.list_service_for_all_namespaces, {}

    def _watch_retry_delay(self, failures: int) -> float:
        return jittered(min(self.WATCH_RETRY_SECONDS * failures, 60))

    async def _call(self, request: Awaitable) -> Any:
        try:
            return await asyncio.wait_for(request, timeout=self.timeout)
        except ApiException:
            raise
        except (asyncio.TimeoutError, aiohttp.ClientError) as ex:
            raise convert_api_exception(ex) from ex

    def _as_dict(self, obj: Any) -> Optional[Dict]:
        if obj is None or isinstance(obj, dict):
            return obj
        return self.api_client.sanitize_for_serialization(obj)

    @property
    def apps_v1_api(self) -> AppsV1Api:
        if self._apps_v1_api is None:
            self._apps_v1_api = AppsV1Api(self.api_client)
        return self._apps_v1_api

    @property
    def core_v1_api(self) -> CoreV1Api:
        if self._core_v1_api is None:
            self._core_v1_api = CoreV1Api(self.api_client)
        return self._core_v1_api

    @property
    def custom_objects_api(self) -> CustomObjectsApi:
        if self._custom_objects_api is None:
            self._custom_objects_api = CustomObjectsApi(self.api_client)
        return self._custom_objects_api
