import copy
import logging
from logging import Logger
from typing import Any, Dict, List, NamedTuple, Optional, Tuple
from myapp.utils.helpers import deep_compare_dict, get_path
from myapp.types.models.myapp import MyApp
from myapp.types.models.myapp_spec import MyAppSpec
from myapp.types.models.myapp_resources import MyAppResources
from myapp.types.models.resource_requests import ResourceRequests
from myapp.types.models.scheduling import SchedulingConfig
from myapp.store.base import Kind
from myapp.resources.base import BaseResource
from myapp.common.models.labels import Labels


class Diff(NamedTuple):
    """Controller-owned fields of a child object that differ from the desired state."""

    kind: Kind
    fields: Tuple[str, ...] = ()

    @property
    def no_change(self) -> bool:
        return not self.fields


class MyAppResource(BaseResource):
    """Synthesizes the child objects of a MyApp.

    Everything here is pure: the same MyApp always produces the same
    Deployment and Service documents, and nothing talks to the store.
    """

    logger: Logger

    KIND = MyApp.KIND
    CONTAINER_NAME = "app"
    WEB_PORT_NAME = "http"
    DEFAULT_WEB_PORT = 80

    DEPLOYMENT_FIELDS = (
        "replicas",
        "image",
        "env",
        "resources",
        "nodeSelector",
        "priorityClassName",
        "schedulerName",
        "ownerReferences",
    )
    CONTAINER_FIELDS = ("image", "env", "resources")
    SERVICE_FIELDS = ("ports", "selector", "ownerReferences")

    deployment_name: str
    service_name: str
    replicas: int
    image: Optional[str]
    env_vars: Dict[str, str]
    resources: Optional[ResourceRequests]
    scheduling: Optional[SchedulingConfig]
    owner_reference: Dict[str, Any]

    # derived
    _deployment: Dict = None
    _service: Dict = None

    def __init__(
        self,
        name: str,
        namespace: str,
        labels: Optional[Dict[str, str]] = None,
    ):
        _labels = Labels.generate_default_labels(
            name, self.KIND, self.MYAPP_OPERATOR_NAME
        )
        _labels.update(labels or {})
        super().__init__(name=name, namespace=namespace, labels=_labels)

    @classmethod
    def from_spec(
        cls,
        name: str,
        namespace: str,
        spec: MyAppSpec,
        owner_reference: Dict[str, Any],
        logger: Logger = None,
    ) -> "MyAppResource":
        resource = MyAppResource(name, namespace)
        resource.logger = logger or logging.getLogger(__name__)
        resource.deployment_name = MyAppResources.deployment_name(name)
        resource.service_name = MyAppResources.service_name(name)
        resource.replicas = spec.replicas
        resource.image = spec.image
        resource.env_vars = dict(spec.env_vars or {})
        resource.resources = spec.resources
        resource.scheduling = spec.scheduling
        resource.owner_reference = dict(owner_reference)
        return resource

    @classmethod
    def from_app(cls, app: MyApp, logger: Logger = None) -> "MyAppResource":
        """Create the synthesizer for an observed MyApp with a parsed spec."""
        if app.spec is None:
            raise ValueError(f"MyApp {app.namespace}/{app.name} has no usable spec")
        return cls.from_spec(
            app.name,
            app.namespace,
            app.spec,
            owner_reference=app.owner_reference(),
            logger=logger,
        )

    def synthesize(self) -> Tuple[Dict, Dict]:
        """Desired (deployment, service) documents."""
        return copy.deepcopy(self.deployment), copy.deepcopy(self.service)

    def desired(self, kind: Kind) -> Dict:
        if kind is Kind.DEPLOYMENT:
            return copy.deepcopy(self.deployment)
        if kind is Kind.SERVICE:
            return copy.deepcopy(self.service)
        raise ValueError(f"{kind} is not a child kind of {self.KIND}")

    def child_name(self, kind: Kind) -> str:
        if kind is Kind.DEPLOYMENT:
            return self.deployment_name
        if kind is Kind.SERVICE:
            return self.service_name
        raise ValueError(f"{kind} is not a child kind of {self.KIND}")

    def prepare_env(self) -> List[Dict[str, str]]:
        """Container environment, ordered by variable name."""
        return [
            {"name": key, "value": str(value)}
            for key, value in sorted(self.env_vars.items())
        ]

    def prepare_resource_requirements(self) -> Optional[Dict]:
        if self.resources is None:
            return None
        return {
            "requests": {
                "cpu": self.resources.cpu,
                "memory": self.resources.memory,
            }
        }

    def prepare_container(self) -> Dict:
        container = {
            "name": self.CONTAINER_NAME,
            "image": self.image,
            "env": self.prepare_env(),
        }
        resources = self.prepare_resource_requirements()
        if resources:
            container["resources"] = resources
        return container

    def prepare_pod_spec(self) -> Dict:
        """Pod spec; scheduling hints are copied through unchanged."""
        pod_spec = {"containers": [self.prepare_container()]}
        if self.scheduling is not None:
            if self.scheduling.node_selector:
                pod_spec["nodeSelector"] = dict(self.scheduling.node_selector)
            if self.scheduling.priority_class:
                pod_spec["priorityClassName"] = self.scheduling.priority_class
            if self.scheduling.scheduler_name:
                pod_spec["schedulerName"] = self.scheduling.scheduler_name
        return pod_spec

    def prepare_deployment(self) -> Dict:
        """Build deployment resource."""
        selector = self.labels.selector().as_dict()
        deployment = {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": self.prepare_metadata(self.deployment_name),
            "spec": {
                "replicas": self.replicas,
                "selector": {"matchLabels": selector},
                "template": {
                    "metadata": {"labels": self.labels.as_dict()},
                    "spec": self.prepare_pod_spec(),
                },
            },
        }
        deployment["metadata"]["ownerReferences"] = [dict(self.owner_reference)]
        deployment["metadata"]["annotations"] = self.prepare_hash_annotation(
            self.compute_hash(self.prepare_deployment_watch_fields(deployment))
        )
        return deployment

    def prepare_deployment_watch_fields(self, deployment: Dict) -> Dict:
        """
        Prepare fields of interest when comparing actual vs desired state.
        Only these fields are owned by the controller; anything else on the
        deployment is left alone.
        """
        container = self._find_container(deployment) or {}
        pod_spec = get_path(deployment, "spec", "template", "spec", default=None) or {}
        return {
            "replicas": get_path(deployment, "spec", "replicas"),
            "image": container.get("image"),
            "env": [
                {"name": env.get("name"), "value": env.get("value")}
                for env in container.get("env") or []
            ],
            "resources": container.get("resources"),
            "nodeSelector": pod_spec.get("nodeSelector"),
            "priorityClassName": pod_spec.get("priorityClassName"),
            "schedulerName": pod_spec.get("schedulerName"),
            "ownerReferences": self.own_reference(deployment),
        }

    def prepare_service(self) -> Dict:
        """Build service resource."""
        service = {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": self.prepare_metadata(self.service_name),
            "spec": {
                "type": "ClusterIP",
                "selector": self.labels.selector().as_dict(),
                "ports": [
                    {
                        "name": self.WEB_PORT_NAME,
                        "protocol": "TCP",
                        "port": self.DEFAULT_WEB_PORT,
                        "targetPort": self.DEFAULT_WEB_PORT,
                    }
                ],
            },
        }
        service["metadata"]["ownerReferences"] = [dict(self.owner_reference)]
        service["metadata"]["annotations"] = self.prepare_hash_annotation(
            self.compute_hash(self.prepare_service_watch_fields(service))
        )
        return service

    def prepare_service_watch_fields(self, service: Dict) -> Dict:
        """
        Prepare fields of interest when comparing actual vs desired state.
        Server-assigned port attributes (nodePort, defaulted protocol) are
        ignored.
        """
        return {
            "ports": [
                {
                    "name": port.get("name"),
                    "protocol": port.get("protocol") or "TCP",
                    "port": port.get("port"),
                    "targetPort": port.get("targetPort", port.get("port")),
                }
                for port in get_path(service, "spec", "ports", default=None) or []
            ],
            "selector": dict(get_path(service, "spec", "selector", default=None) or {}),
            "ownerReferences": self.own_reference(service),
        }

    def prepare_watch_fields(self, kind: Kind, obj: Dict) -> Dict:
        if kind is Kind.DEPLOYMENT:
            return self.prepare_deployment_watch_fields(obj)
        if kind is Kind.SERVICE:
            return self.prepare_service_watch_fields(obj)
        raise ValueError(f"{kind} is not a child kind of {self.KIND}")

    def diff(self, kind: Kind, existing: Dict, desired: Dict = None) -> Diff:
        """Compare the controller-owned fields of an existing child with the desired one.

        A field the desired document leaves unset is not owned, so whatever the
        server or another actor put there is kept.
        """
        desired = desired if desired is not None else self.desired(kind)
        actual_fields = self.prepare_watch_fields(kind, existing)
        desired_fields = self.prepare_watch_fields(kind, desired)
        owned = self.DEPLOYMENT_FIELDS if kind is Kind.DEPLOYMENT else self.SERVICE_FIELDS
        changed = tuple(
            field
            for field in owned
            if desired_fields[field] is not None
            and not deep_compare_dict(
                {"value": actual_fields.get(field)}, {"value": desired_fields[field]}
            )
        )
        return Diff(kind, changed)

    def prepare_patch(
        self,
        kind: Kind,
        desired: Dict,
        fields: Tuple[str, ...],
        existing: Dict = None,
    ) -> Dict:
        """Prepare a JSON merge patch carrying only the differing fields.

        Lists are replaced as a whole by a merge patch, so an `image`, `env` or
        `resources` change rewrites the controller's container entry. The owner
        reference list keeps every entry that does not point at this MyApp.
        """
        if not fields:
            return {}
        patch: Dict[str, Any] = {
            "metadata": {
                "annotations": dict(get_path(desired, "metadata", "annotations", default={}))
            }
        }
        if "ownerReferences" in fields:
            patch["metadata"]["ownerReferences"] = self.merge_owner_references(existing)
        if kind is Kind.DEPLOYMENT:
            spec: Dict[str, Any] = {}
            if "replicas" in fields:
                spec["replicas"] = desired["spec"]["replicas"]
            desired_pod = desired["spec"]["template"]["spec"]
            pod_patch: Dict[str, Any] = {}
            if any(field in fields for field in self.CONTAINER_FIELDS):
                pod_patch["containers"] = copy.deepcopy(desired_pod["containers"])
            if "nodeSelector" in fields:
                pod_patch["nodeSelector"] = self._replace_map(
                    get_path(existing or {}, "spec", "template", "spec", "nodeSelector"),
                    desired_pod["nodeSelector"],
                )
            for field in ("priorityClassName", "schedulerName"):
                if field in fields:
                    pod_patch[field] = desired_pod[field]
            if pod_patch:
                spec["template"] = {"spec": pod_patch}
            if spec:
                patch["spec"] = spec
        elif kind is Kind.SERVICE:
            spec = {}
            if "ports" in fields:
                spec["ports"] = copy.deepcopy(desired["spec"]["ports"])
            if "selector" in fields:
                spec["selector"] = self._replace_map(
                    get_path(existing or {}, "spec", "selector"), desired["spec"]["selector"]
                )
            if spec:
                patch["spec"] = spec
        else:
            raise ValueError(f"{kind} is not a child kind of {self.KIND}")
        return patch

    def _find_container(self, deployment: Dict) -> Optional[Dict]:
        containers = (
            get_path(deployment, "spec", "template", "spec", "containers", default=None)
            or []
        )
        for container in containers:
            if container.get("name") == self.CONTAINER_NAME:
                return container
        return containers[0] if containers else None

    def _replace_map(self, existing: Optional[Dict], desired: Dict) -> Dict:
        """Merge patch value that turns `existing` into exactly `desired`."""
        value = {key: None for key in existing or {}}
        value.update(desired)
        return value

    def _points_here(self, ref: Dict) -> bool:
        if ref.get("uid") == self.owner_reference.get("uid"):
            return True
        # a reference left behind by an earlier MyApp of the same name
        return (
            ref.get("apiVersion") == self.owner_reference.get("apiVersion")
            and ref.get("kind") == self.owner_reference.get("kind")
            and ref.get("name") == self.owner_reference.get("name")
        )

    def _owner_references(self, obj: Dict) -> List[Dict]:
        return list(get_path(obj, "metadata", "ownerReferences", default=None) or [])

    def own_reference(self, obj: Dict) -> Dict:
        """This MyApp's owner reference on `obj`, normalized for comparison.

        Empty when `obj` does not reference this MyApp.
        """
        for ref in self._owner_references(obj):
            if ref.get("uid") == self.owner_reference.get("uid"):
                return {
                    "apiVersion": ref.get("apiVersion"),
                    "kind": ref.get("kind"),
                    "name": ref.get("name"),
                    "uid": ref.get("uid"),
                    "controller": bool(ref.get("controller")),
                    "blockOwnerDeletion": bool(ref.get("blockOwnerDeletion")),
                }
        return {}

    def foreign_controller(self, obj: Dict) -> Optional[Dict]:
        """Controller reference on `obj` that belongs to some other owner."""
        for ref in self._owner_references(obj):
            if ref.get("controller") and not self._points_here(ref):
                return ref
        return None

    def merge_owner_references(self, existing: Optional[Dict]) -> List[Dict]:
        """Owner references of `existing` with this MyApp's entry added or replaced."""
        refs = []
        placed = False
        for ref in self._owner_references(existing or {}):
            if not self._points_here(ref):
                refs.append(copy.deepcopy(ref))
            elif not placed:
                refs.append(dict(self.owner_reference))
                placed = True
        if not placed:
            refs.append(dict(self.owner_reference))
        return refs

    @property
    def deployment(self) -> Dict:
        if self._deployment is None:
            self._deployment = self.prepare_deployment()
        return self._deployment

    @property
    def service(self) -> Dict:
        if self._service is None:
            self._service = self.prepare_service()
        return self._service
