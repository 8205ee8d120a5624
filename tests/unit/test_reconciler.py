"""Unit tests for the MyApp reconciler."""

import asyncio
from unittest.mock import Mock

import pytest

from myapp.finalizers import FINALIZER
from myapp.reconciler import Action, Reconciler, State, derive_state
from myapp.sensors import OperatorSensor
from myapp.store.base import Kind
from myapp.types.schemas.myapp import load_myapp
from myapp.utils.errors import (
    ConflictError,
    OwnershipConflict,
    PermanentStoreError,
    TransientStoreError,
)

NS, NAME = "default", "web"


@pytest.fixture
def sensor():
    return Mock(spec=OperatorSensor)


@pytest.fixture
def reconciler(store, conf, sensor):
    return Reconciler(store, conf=conf, sensor=sensor)


async def reconcile(reconciler):
    return await reconciler.reconcile_key(NS, NAME)


async def get_app(store):
    return await store.get(Kind.MYAPP, NS, NAME)


def ready_condition(document):
    (condition,) = document["status"]["conditions"]
    assert condition["type"] == "Ready"
    return condition


class TestDeriveState:
    """Tests for derive_state."""

    def test_states(self, make_document):
        assert derive_state(None) is State.DONE
        assert derive_state(load_myapp(make_document())) is State.PENDING_FINALIZER
        assert (
            derive_state(load_myapp(make_document(finalizers=[FINALIZER])))
            is State.ACTIVE
        )
        terminating = make_document(finalizers=[FINALIZER])
        terminating["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00+00:00"
        assert derive_state(load_myapp(terminating)) is State.TERMINATING


class TestScenario:
    """End-to-end passes over the in-memory store."""

    @pytest.mark.asyncio
    async def test_first_pass_adds_finalizer_only(self, store, reconciler, myapp_document):
        await store.create(myapp_document)
        action = await reconcile(reconciler)
        assert action == Action.requeue(1)
        stored = await get_app(store)
        assert stored["metadata"]["finalizers"] == [FINALIZER]
        assert "status" not in stored
        assert store.objects(Kind.DEPLOYMENT) == []
        assert store.objects(Kind.SERVICE) == []

    @pytest.mark.asyncio
    async def test_second_pass_creates_children_and_status(
        self, store, reconciler, myapp_document
    ):
        created = await store.create(myapp_document)
        await reconcile(reconciler)
        action = await reconcile(reconciler)
        assert action == Action.requeue(300)

        deployment = await store.get(Kind.DEPLOYMENT, NS, "web-deployment")
        assert deployment["spec"]["replicas"] == 3
        container = deployment["spec"]["template"]["spec"]["containers"][0]
        assert container["image"] == "nginx:1.21.0"
        assert container["env"] == [{"name": "ENV", "value": "production"}]
        assert deployment["metadata"]["ownerReferences"][0]["uid"] == created["metadata"]["uid"]
        assert await store.get(Kind.SERVICE, NS, "web-service") is not None

        stored = await get_app(store)
        assert stored["status"]["state"] == "Running"
        assert stored["status"]["observedGeneration"] == stored["metadata"]["generation"]
        assert stored["status"]["lastUpdated"]
        condition = ready_condition(stored)
        assert condition["status"] == "True"
        assert condition["reason"] == "ReconcileSuccess"

    @pytest.mark.asyncio
    async def test_converges_within_three_passes(self, store, reconciler, myapp_document):
        await store.create(myapp_document)
        for _ in range(3):
            await reconcile(reconciler)
        store.calls.clear()
        action = await reconcile(reconciler)
        assert action == Action.requeue(300)
        for kind in (Kind.DEPLOYMENT, Kind.SERVICE):
            assert store.calls_for("create", kind) == []
            assert store.calls_for("patch", kind) == []

    @pytest.mark.asyncio
    async def test_deletion_removes_children_then_finalizer(
        self, store, reconciler, myapp_document
    ):
        await store.create(myapp_document)
        await reconcile(reconciler)
        await reconcile(reconciler)
        await store.delete(Kind.MYAPP, NS, NAME)
        assert (await get_app(store))["metadata"]["deletionTimestamp"]

        action = await reconcile(reconciler)
        assert action == Action.await_change()
        assert await get_app(store) is None
        assert store.objects(Kind.DEPLOYMENT) == []
        assert store.objects(Kind.SERVICE) == []

        store.calls.clear()
        assert await reconcile(reconciler) == Action.await_change()
        assert [call.operation for call in store.calls] == ["get"]

    @pytest.mark.asyncio
    async def test_terminating_without_marker_waits(self, store, reconciler, make_document):
        await store.create(make_document(finalizers=["other/finalizer"]))
        await store.delete(Kind.MYAPP, NS, NAME)
        store.calls.clear()
        assert await reconcile(reconciler) == Action.await_change()
        assert store.calls_for("delete") == []

    @pytest.mark.asyncio
    async def test_finalizer_kept_while_child_remains(
        self, store, reconciler, finalized_document
    ):
        await store.create(finalized_document)
        await reconcile(reconciler)
        # a foreign finalizer keeps the Deployment around after delete
        await store.patch(
            Kind.DEPLOYMENT,
            NS,
            "web-deployment",
            {"metadata": {"finalizers": ["example.com/hold"]}},
        )
        await store.delete(Kind.MYAPP, NS, NAME)

        action = await reconcile(reconciler)
        assert action == Action.requeue(1)
        assert FINALIZER in (await get_app(store))["metadata"]["finalizers"]

        await store.patch(
            Kind.DEPLOYMENT, NS, "web-deployment", {"metadata": {"finalizers": None}}
        )
        assert await reconcile(reconciler) == Action.await_change()
        assert await get_app(store) is None

    @pytest.mark.asyncio
    async def test_missing_object_is_done(self, store, reconciler):
        assert await reconcile(reconciler) == Action.await_change()
        assert [call.operation for call in store.calls] == ["get"]


class TestValidation:
    """Tests for the defensive validation step."""

    @pytest.mark.asyncio
    async def test_invalid_spec_publishes_error(self, store, reconciler, make_document):
        await store.create(make_document(image="nginx:latest", finalizers=[FINALIZER]))
        action = await reconcile(reconciler)
        assert action == Action.requeue(60)
        assert store.calls_for("create", Kind.DEPLOYMENT) == []
        assert store.calls_for("create", Kind.SERVICE) == []

        stored = await get_app(store)
        assert stored["status"]["state"] == "Error"
        assert "observedGeneration" not in stored["status"]
        condition = ready_condition(stored)
        assert condition["status"] == "False"
        assert condition["reason"] == "ValidationError"
        assert "latest" in condition["message"]

    @pytest.mark.asyncio
    async def test_malformed_spec_publishes_error(self, store, reconciler, make_document):
        await store.create(make_document(replicas="three", finalizers=[FINALIZER]))
        assert await reconcile(reconciler) == Action.requeue(60)
        condition = ready_condition(await get_app(store))
        assert condition["reason"] == "ValidationError"
        assert condition["message"].startswith("spec.replicas:")

    @pytest.mark.asyncio
    async def test_fixed_spec_recovers(self, store, reconciler, make_document):
        await store.create(make_document(replicas=0, finalizers=[FINALIZER]))
        await reconcile(reconciler)
        first = ready_condition(await get_app(store))

        await store.patch(Kind.MYAPP, NS, NAME, {"spec": {"replicas": 2}})
        assert await reconcile(reconciler) == Action.requeue(300)
        stored = await get_app(store)
        assert stored["status"]["observedGeneration"] == 2
        condition = ready_condition(stored)
        assert condition["status"] == "True"
        assert condition["lastTransitionTime"] >= first["lastTransitionTime"]

    @pytest.mark.asyncio
    async def test_invalid_edit_keeps_last_reconciled_generation(
        self, store, reconciler, finalized_document
    ):
        await store.create(finalized_document)
        await reconcile(reconciler)
        assert (await get_app(store))["status"]["observedGeneration"] == 1

        await store.patch(Kind.MYAPP, NS, NAME, {"spec": {"image": "nginx:latest"}})
        assert await reconcile(reconciler) == Action.requeue(60)
        stored = await get_app(store)
        assert stored["metadata"]["generation"] == 2
        assert stored["status"]["observedGeneration"] == 1
        assert ready_condition(stored)["reason"] == "ValidationError"


class TestDrift:
    """Tests for drift correction on existing children."""

    @pytest.mark.asyncio
    async def test_restores_owned_fields_only(self, store, reconciler, finalized_document):
        await store.create(finalized_document)
        await reconcile(reconciler)
        await store.patch(
            Kind.DEPLOYMENT,
            NS,
            "web-deployment",
            {"spec": {"replicas": 7, "minReadySeconds": 10}},
        )

        await reconcile(reconciler)
        deployment = await store.get(Kind.DEPLOYMENT, NS, "web-deployment")
        assert deployment["spec"]["replicas"] == 3
        assert deployment["spec"]["minReadySeconds"] == 10

    @pytest.mark.asyncio
    async def test_spec_change_patches_image(self, store, reconciler, finalized_document):
        await store.create(finalized_document)
        await reconcile(reconciler)
        await store.patch(Kind.MYAPP, NS, NAME, {"spec": {"image": "nginx:1.22.0"}})

        await reconcile(reconciler)
        deployment = await store.get(Kind.DEPLOYMENT, NS, "web-deployment")
        container = deployment["spec"]["template"]["spec"]["containers"][0]
        assert container["image"] == "nginx:1.22.0"
        assert len(store.calls_for("create", Kind.DEPLOYMENT)) == 1

    @pytest.mark.asyncio
    async def test_adopts_existing_child(self, store, reconciler, finalized_document):
        created = await store.create(finalized_document)
        await store.create(
            {
                "apiVersion": "v1",
                "kind": "Service",
                "metadata": {"name": "web-service", "namespace": NS},
                "spec": {"selector": {"app": "web"}, "ports": [{"name": "http", "port": 80}]},
            }
        )
        await reconcile(reconciler)
        service = await store.get(Kind.SERVICE, NS, "web-service")
        assert service["metadata"]["ownerReferences"][0]["uid"] == created["metadata"]["uid"]

    @pytest.mark.asyncio
    async def test_spec_change_patches_resources_and_scheduling(
        self, store, reconciler, make_document
    ):
        await store.create(
            make_document(
                resources={"cpu": "100m", "memory": "128Mi"}, finalizers=[FINALIZER]
            )
        )
        await reconcile(reconciler)
        await store.patch(
            Kind.MYAPP,
            NS,
            NAME,
            {
                "spec": {
                    "resources": {"cpu": "2", "memory": "4Gi"},
                    "scheduling": {"nodeSelector": {"disktype": "ssd"}},
                }
            },
        )

        await reconcile(reconciler)
        deployment = await store.get(Kind.DEPLOYMENT, NS, "web-deployment")
        pod_spec = deployment["spec"]["template"]["spec"]
        assert pod_spec["containers"][0]["resources"] == {
            "requests": {"cpu": "2", "memory": "4Gi"}
        }
        assert pod_spec["nodeSelector"] == {"disktype": "ssd"}
        assert (await get_app(store))["status"]["observedGeneration"] == 2

    @pytest.mark.asyncio
    async def test_keeps_foreign_owner_reference(self, store, reconciler, finalized_document):
        await store.create(finalized_document)
        await reconcile(reconciler)
        deployment = await store.get(Kind.DEPLOYMENT, NS, "web-deployment")
        refs = deployment["metadata"]["ownerReferences"] + [
            {"apiVersion": "v1", "kind": "ConfigMap", "name": "extra", "uid": "other-uid"}
        ]
        await store.patch(
            Kind.DEPLOYMENT, NS, "web-deployment", {"metadata": {"ownerReferences": refs}}
        )
        store.calls.clear()

        await reconcile(reconciler)
        assert store.calls_for("patch", Kind.DEPLOYMENT) == []
        deployment = await store.get(Kind.DEPLOYMENT, NS, "web-deployment")
        assert any(ref["uid"] == "other-uid" for ref in deployment["metadata"]["ownerReferences"])

    @pytest.mark.asyncio
    async def test_refuses_child_controlled_elsewhere(
        self, store, reconciler, finalized_document
    ):
        await store.create(finalized_document)
        await store.create(
            {
                "apiVersion": "v1",
                "kind": "Service",
                "metadata": {
                    "name": "web-service",
                    "namespace": NS,
                    "ownerReferences": [
                        {
                            "apiVersion": "apps/v1",
                            "kind": "ReplicaSet",
                            "name": "other",
                            "uid": "other-uid",
                            "controller": True,
                        }
                    ],
                },
                "spec": {"selector": {"app": "other"}},
            }
        )

        with pytest.raises(OwnershipConflict):
            await reconcile(reconciler)
        service = await store.get(Kind.SERVICE, NS, "web-service")
        assert service["spec"]["selector"] == {"app": "other"}
        assert [ref["uid"] for ref in service["metadata"]["ownerReferences"]] == ["other-uid"]
        condition = ready_condition(await get_app(store))
        assert condition["reason"] == "OwnershipConflict"

    @pytest.mark.asyncio
    async def test_reports_drift_to_sensor(self, store, reconciler, sensor, finalized_document):
        await store.create(finalized_document)
        await reconcile(reconciler)
        await store.patch(Kind.DEPLOYMENT, NS, "web-deployment", {"spec": {"replicas": 1}})
        await reconcile(reconciler)
        sensor.on_resource_drift_detected.assert_called_once_with(
            NAME, NS, "deployment", ["replicas"]
        )


class TestConcurrency:
    """Tests for duplicate and racing passes."""

    @pytest.mark.asyncio
    async def test_concurrent_passes_do_not_double_create(
        self, store, reconciler, finalized_document
    ):
        await store.create(finalized_document)
        await asyncio.gather(reconcile(reconciler), reconcile(reconciler))
        assert len(store.objects(Kind.DEPLOYMENT)) == 1
        assert len(store.objects(Kind.SERVICE)) == 1

    @pytest.mark.asyncio
    async def test_replayed_pass_is_idempotent(self, store, reconciler, finalized_document):
        await store.create(finalized_document)
        await reconcile(reconciler)
        before = store.objects(Kind.DEPLOYMENT)
        await reconcile(reconciler)
        assert store.objects(Kind.DEPLOYMENT) == before

    @pytest.mark.asyncio
    async def test_stale_finalizer_write_conflicts(self, store, reconciler, myapp_document):
        created = await store.create(myapp_document)
        await store.patch(Kind.MYAPP, NS, NAME, {"metadata": {"labels": {"a": "b"}}})
        with pytest.raises(ConflictError):
            await reconciler.reconcile(created)


class TestStoreFailures:
    """Tests for store failures during a pass."""

    @pytest.mark.asyncio
    async def test_transient_error_aborts_pass(self, store, reconciler, finalized_document):
        await store.create(finalized_document)
        store.fail_next("create", TransientStoreError, kind=Kind.SERVICE)
        with pytest.raises(TransientStoreError):
            await reconcile(reconciler)
        assert "status" not in await get_app(store)

        await reconcile(reconciler)
        assert len(store.objects(Kind.DEPLOYMENT)) == 1
        assert len(store.objects(Kind.SERVICE)) == 1

    @pytest.mark.asyncio
    async def test_permanent_error_publishes_status(
        self, store, reconciler, finalized_document
    ):
        await store.create(finalized_document)
        store.fail_next("create", PermanentStoreError, kind=Kind.DEPLOYMENT)
        with pytest.raises(PermanentStoreError):
            await reconcile(reconciler)
        stored = await get_app(store)
        assert stored["status"]["state"] == "Error"
        assert ready_condition(stored)["reason"] == "PermanentStoreError"
        assert "observedGeneration" not in stored["status"]

    @pytest.mark.asyncio
    async def test_permanent_error_survives_failed_status_write(
        self, store, reconciler, finalized_document
    ):
        await store.create(finalized_document)
        store.fail_next("create", PermanentStoreError, kind=Kind.DEPLOYMENT)
        store.fail_next("patch", PermanentStoreError, kind=Kind.MYAPP)
        with pytest.raises(PermanentStoreError):
            await reconcile(reconciler)
        assert "status" not in await get_app(store)
