"""Shared fixtures for unit tests."""

import pytest

from myapp.finalizers import FINALIZER
from myapp.store import InMemoryObjectStore
from myapp.types.settings import Settings


NAMESPACE = "default"
NAME = "web"


def make_myapp(
    name: str = NAME,
    namespace: str = NAMESPACE,
    replicas=3,
    image: str = "nginx:1.21.0",
    env_vars=None,
    finalizers=None,
    **spec,
):
    """Build a MyApp document as a client would submit it."""
    document = {
        "apiVersion": "example.com/v1",
        "kind": "MyApp",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "replicas": replicas,
            "image": image,
            "envVars": {"ENV": "production"} if env_vars is None else env_vars,
        },
    }
    document["spec"].update(spec)
    if finalizers:
        document["metadata"]["finalizers"] = list(finalizers)
    return document


@pytest.fixture
def make_document():
    return make_myapp


@pytest.fixture
def store():
    return InMemoryObjectStore()


@pytest.fixture
def conf():
    """Settings with short intervals and no jitter."""
    return Settings(
        drift_interval_seconds=300,
        finalizer_requeue_seconds=1,
        backoff_base_seconds=1,
        backoff_cap_seconds=60,
        backoff_jitter=0,
        validation_retry_seconds=60,
        permanent_error_retry_seconds=300,
        worker_limit=2,
    )


@pytest.fixture
def myapp_document():
    return make_myapp()


@pytest.fixture
def finalized_document():
    """A MyApp that already carries the controller's finalizer."""
    return make_myapp(finalizers=[FINALIZER])
