"""Unit tests for MyApp models, schemas, labels and settings."""

import pytest

from myapp.common.models.labels import Labels
from myapp.types.models.myapp_resources import MyAppResources
from myapp.types.schemas.myapp import dump_myapp, load_myapp
from myapp.types.settings import Settings


class TestLoadMyApp:
    """Tests for load_myapp and dump_myapp."""

    def test_loads_spec(self, make_document):
        app = load_myapp(
            make_document(
                resources={"cpu": "1", "memory": "1Gi"},
                scheduling={"nodeSelector": {"zone": "a"}},
            )
        )
        assert app.spec_error is None
        assert app.spec.replicas == 3
        assert app.spec.image == "nginx:1.21.0"
        assert app.spec.env_vars == {"ENV": "production"}
        assert app.spec.resources.cpu == "1"
        assert app.spec.scheduling.node_selector == {"zone": "a"}
        assert app.status is None

    def test_metadata_properties(self, make_document):
        document = make_document(finalizers=["f"])
        document["metadata"].update(
            {"uid": "u", "generation": 4, "resourceVersion": "9", "labels": {"a": "b"}}
        )
        app = load_myapp(document)
        assert (app.uid, app.generation, app.resource_version) == ("u", 4, "9")
        assert app.has_finalizer("f")
        assert not app.is_terminating

    def test_spec_error_keeps_metadata(self, make_document):
        app = load_myapp(make_document(env_vars={"A": 1}))
        assert app.spec is None
        assert app.spec_error.startswith("spec.envVars")
        assert app.name == "web"

    def test_unreadable_status_is_dropped(self, make_document):
        document = make_document()
        document["status"] = {"conditions": [{"reason": "missing type"}]}
        assert load_myapp(document).status is None

    def test_loads_status(self, make_document):
        document = make_document()
        document["status"] = {
            "state": "Running",
            "observedGeneration": 2,
            "conditions": [{"type": "Ready", "status": "True", "reason": "ReconcileSuccess"}],
        }
        status = load_myapp(document).status
        assert status.state == "Running"
        assert status.observed_generation == 2
        assert status.conditions[0].reason == "ReconcileSuccess"

    def test_dump_round_trip(self, make_document):
        document = make_document()
        dumped = dump_myapp(load_myapp(document))
        assert dumped["metadata"] == document["metadata"]
        assert load_myapp(dumped).spec.as_dict() == load_myapp(document).spec.as_dict()


class TestNames:
    """Tests for child naming."""

    def test_child_names(self):
        assert MyAppResources.deployment_name("web") == "web-deployment"
        assert MyAppResources.service_name("web") == "web-service"


class TestLabels:
    """Tests for Labels."""

    def test_default_labels(self):
        labels = Labels.generate_default_labels("web", "MyApp", "myapp-controller").as_dict()
        assert labels == {
            "app": "web",
            "example.com/kind": "MyApp",
            "app.kubernetes.io/name": "myapp",
            "app.kubernetes.io/instance": "web",
            "app.kubernetes.io/part-of": "myapp-web",
            "app.kubernetes.io/managed-by": "myapp-controller",
        }

    def test_label_value_is_truncated(self):
        value = Labels().get_or_valid_instance_label_value("a" * 62 + "-b")
        assert len(value) <= 63
        assert not value.endswith("-")

    def test_selector(self):
        labels = Labels.generate_default_labels("web", "MyApp", "myapp-controller")
        assert labels.selector().as_dict() == {"app": "web"}


class TestSettings:
    """Tests for Settings overrides."""

    def test_overrides(self):
        conf = Settings(drift_interval_seconds=10, watch_namespace=None)
        assert conf.drift_interval_seconds == 10
        assert Settings().drift_interval_seconds == Settings.drift_interval_seconds

    def test_unknown_setting(self):
        with pytest.raises(TypeError):
            Settings(no_such_setting=1)
