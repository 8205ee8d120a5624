"""Unit tests for the Kubernetes backed object store."""

import asyncio
import json
from unittest.mock import AsyncMock, Mock

import pytest
from kubernetes_asyncio.client import ApiException

from myapp.store.base import Kind
from myapp.store.kubernetes import MERGE_PATCH, KubernetesObjectStore
from myapp.utils.errors import ConflictError, PermanentStoreError, TransientStoreError


def api_exception(status, reason):
    ex = ApiException(status=status, reason=reason)
    ex.body = json.dumps({"kind": "Status", "reason": reason, "message": reason})
    return ex


@pytest.fixture
def api_client():
    client = Mock()
    client.close = AsyncMock()
    client.sanitize_for_serialization = Mock(side_effect=lambda obj: {"converted": obj})
    return client


@pytest.fixture
def k8s_store(api_client):
    store = KubernetesObjectStore(api_client, timeout=0.05)
    store._custom_objects_api = Mock()
    store._apps_v1_api = Mock()
    store._core_v1_api = Mock()
    return store


class TestGet:
    """Tests for get."""

    @pytest.mark.asyncio
    async def test_custom_object(self, k8s_store):
        api = k8s_store._custom_objects_api
        api.get_namespaced_custom_object = AsyncMock(return_value={"metadata": {"name": "web"}})
        assert await k8s_store.get(Kind.MYAPP, "default", "web") == {"metadata": {"name": "web"}}
        api.get_namespaced_custom_object.assert_awaited_once_with(
            group="example.com", version="v1", namespace="default", plural="myapps", name="web"
        )

    @pytest.mark.asyncio
    async def test_typed_object_is_serialized(self, k8s_store):
        model = object()
        k8s_store._apps_v1_api.read_namespaced_deployment = AsyncMock(return_value=model)
        assert await k8s_store.get(Kind.DEPLOYMENT, "default", "web-deployment") == {
            "converted": model
        }

    @pytest.mark.asyncio
    async def test_not_found(self, k8s_store):
        k8s_store._core_v1_api.read_namespaced_service = AsyncMock(
            side_effect=api_exception(404, "NotFound")
        )
        assert await k8s_store.get(Kind.SERVICE, "default", "web-service") is None

    @pytest.mark.asyncio
    async def test_forbidden(self, k8s_store):
        k8s_store._core_v1_api.read_namespaced_service = AsyncMock(
            side_effect=api_exception(403, "Forbidden")
        )
        with pytest.raises(PermanentStoreError):
            await k8s_store.get(Kind.SERVICE, "default", "web-service")

    @pytest.mark.asyncio
    async def test_timeout(self, k8s_store):
        async def slow(**kwargs):
            await asyncio.sleep(1)

        k8s_store._apps_v1_api.read_namespaced_deployment = AsyncMock(side_effect=slow)
        with pytest.raises(TransientStoreError):
            await k8s_store.get(Kind.DEPLOYMENT, "default", "web-deployment")


class TestWrites:
    """Tests for create, patch and delete."""

    @pytest.mark.asyncio
    async def test_create_already_exists(self, k8s_store):
        k8s_store._apps_v1_api.create_namespaced_deployment = AsyncMock(
            side_effect=api_exception(409, "AlreadyExists")
        )
        obj = {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {"name": "web-deployment", "namespace": "default"},
        }
        assert await k8s_store.create(obj) is None

    @pytest.mark.asyncio
    async def test_patch_status_uses_merge_patch(self, k8s_store):
        api = k8s_store._custom_objects_api
        api.patch_namespaced_custom_object_status = AsyncMock(return_value={"status": {}})
        await k8s_store.patch(
            Kind.MYAPP, "default", "web", {"status": {"state": "Running"}}, subresource="status"
        )
        kwargs = api.patch_namespaced_custom_object_status.call_args.kwargs
        assert kwargs["_content_type"] == MERGE_PATCH
        assert kwargs["body"] == {"status": {"state": "Running"}}
        api.patch_namespaced_custom_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_patch_conflict(self, k8s_store):
        k8s_store._custom_objects_api.patch_namespaced_custom_object = AsyncMock(
            side_effect=api_exception(409, "Conflict")
        )
        with pytest.raises(ConflictError):
            await k8s_store.patch(
                Kind.MYAPP, "default", "web", {"metadata": {"resourceVersion": "1"}}
            )

    @pytest.mark.asyncio
    async def test_patch_not_found(self, k8s_store):
        k8s_store._core_v1_api.patch_namespaced_service = AsyncMock(
            side_effect=api_exception(404, "NotFound")
        )
        assert await k8s_store.patch(Kind.SERVICE, "default", "web-service", {}) is None

    @pytest.mark.asyncio
    async def test_delete(self, k8s_store):
        api = k8s_store._apps_v1_api
        api.delete_namespaced_deployment = AsyncMock(return_value=None)
        assert await k8s_store.delete(Kind.DEPLOYMENT, "default", "web-deployment") is True
        body = api.delete_namespaced_deployment.call_args.kwargs["body"]
        assert body.propagation_policy == "Background"

    @pytest.mark.asyncio
    async def test_delete_not_found(self, k8s_store):
        k8s_store._apps_v1_api.delete_namespaced_deployment = AsyncMock(
            side_effect=api_exception(404, "NotFound")
        )
        assert await k8s_store.delete(Kind.DEPLOYMENT, "default", "web-deployment") is False

    @pytest.mark.asyncio
    async def test_close(self, k8s_store, api_client):
        await k8s_store.close()
        api_client.close.assert_awaited_once()
