import kopf
from typing import Any, Dict

from myapp.common.models.labels import Labels
from myapp.resources.base import BaseResource
from myapp.store.base import Kind, WatchEvent, WatchEventType
from myapp.types.models.myapp import MyApp

# Children are only watched when they carry the controller's managed-by label
MANAGED_BY = {Labels.KUBERNETES_MANAGED_BY_LABEL: BaseResource.MYAPP_OPERATOR_NAME}


def forward_event(memo: kopf.Memo, kind: Kind, event: Dict[str, Any]) -> None:
    """Hand a kopf watch event to the controller's work queue.

    Objects seen during the initial listing arrive without a type and are
    treated as added.
    """
    controller = getattr(memo, "controller", None)
    if controller is None:
        return
    event_type = WatchEventType(event.get("type") or WatchEventType.ADDED.value)
    controller.handle_event(kind, WatchEvent(event_type, event["object"]))


@kopf.on.event(MyApp.GROUP_NAME, MyApp.GROUP_VERSION, MyApp.PLURAL_NAME)
def on_myapp_event(event, memo: kopf.Memo, **kwargs):
    forward_event(memo, Kind.MYAPP, event)


@kopf.on.event("apps/v1", "deployments", labels=MANAGED_BY)
def on_deployment_event(event, memo: kopf.Memo, **kwargs):
    forward_event(memo, Kind.DEPLOYMENT, event)


@kopf.on.event("v1", "services", labels=MANAGED_BY)
def on_service_event(event, memo: kopf.Memo, **kwargs):
    forward_event(memo, Kind.SERVICE, event)
