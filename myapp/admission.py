"""Admission decisions for MyApp objects.

Pure functions over admission documents: nothing here reads the store or
the network, so the same input always produces the same decision.
"""

import copy
import re
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

from myapp.common.models.labels import Labels
from myapp.resources.base import BaseResource
from myapp.types.schemas.myapp import load_myapp
from myapp.utils.helpers import escape_json_pointer

MIN_REPLICAS = 1
MAX_REPLICAS = 100
FORBIDDEN_TAG = "latest"
DEFAULT_RESOURCES = {"cpu": "100m", "memory": "128Mi"}

# repository path with an optional registry port, then a tag, a digest or both
_COMPONENT = r"[a-z0-9]+(?:[._-][a-z0-9]+)*"
_TAG = r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}"
_DIGEST = r"[a-z0-9]+:[a-f0-9]+"
IMAGE_PATTERN = (
    rf"^{_COMPONENT}(?::[0-9]+)?(?:/{_COMPONENT})*(?::{_TAG}(?:@{_DIGEST})?|@{_DIGEST})$"
)

JsonPatch = List[Dict[str, Any]]


class AdmissionKind(Enum):
    """Kinds the admission webhooks know how to review."""

    MYAPP = "MyApp"


class AdmissionDecision(NamedTuple):
    allowed: bool
    reason: Optional[str] = None
    patch: Tuple[Dict[str, Any], ...] = ()

    @classmethod
    def allow(cls, patch: JsonPatch = None) -> "AdmissionDecision":
        return cls(True, None, tuple(patch or ()))

    @classmethod
    def deny(cls, reason: str) -> "AdmissionDecision":
        return cls(False, reason)


def image_tag(image: str) -> Optional[str]:
    """Tag of an image reference, or None when it has none.

    A registry port (`host:5000/app`) is not a tag; a digest suffix is ignored.
    """
    name = image.split("@", 1)[0]
    last_component = name.rsplit("/", 1)[-1]
    if ":" not in last_component:
        return None
    return last_component.rsplit(":", 1)[1]


def validate(desired: Dict[str, Any]) -> AdmissionDecision:
    """Check a MyApp document against the domain constraints.

    Every violation is reported; reasons are joined on a single line.
    """
    app = load_myapp(desired)
    if app.spec_error:
        return AdmissionDecision.deny(app.spec_error)

    spec = app.spec
    errors = []
    if spec.replicas is None or not MIN_REPLICAS <= spec.replicas <= MAX_REPLICAS:
        errors.append(
            f"replicas must be between {MIN_REPLICAS} and {MAX_REPLICAS}"
        )
    image = (spec.image or "").strip()
    if not image:
        errors.append("image cannot be empty")
    else:
        tag = image_tag(image)
        if tag is None and "@" not in image:
            errors.append(f"image '{image}' must specify a tag (repository:tag)")
        elif tag == FORBIDDEN_TAG:
            errors.append(f"Image tag '{FORBIDDEN_TAG}' is not allowed")
        elif not re.match(IMAGE_PATTERN, image):
            errors.append(f"image '{image}' is not a valid image reference")
    if errors:
        return AdmissionDecision.deny("; ".join(errors))
    return AdmissionDecision.allow()


def mutation_patch(desired: Dict[str, Any]) -> JsonPatch:
    """RFC 6902 operations that turn `desired` into `mutate(desired)`."""
    ops: JsonPatch = []
    managed_by = Labels.KUBERNETES_MANAGED_BY_LABEL
    metadata = desired.get("metadata")
    if not isinstance(metadata, dict):
        ops.append(
            {
                "op": "add",
                "path": "/metadata",
                "value": {"labels": {managed_by: BaseResource.MYAPP_OPERATOR_NAME}},
            }
        )
    elif not isinstance(metadata.get("labels"), dict):
        ops.append(
            {
                "op": "add",
                "path": "/metadata/labels",
                "value": {managed_by: BaseResource.MYAPP_OPERATOR_NAME},
            }
        )
    elif managed_by not in metadata["labels"]:
        ops.append(
            {
                "op": "add",
                "path": f"/metadata/labels/{escape_json_pointer(managed_by)}",
                "value": BaseResource.MYAPP_OPERATOR_NAME,
            }
        )

    spec = desired.get("spec")
    if not isinstance(spec, dict):
        ops.append(
            {"op": "add", "path": "/spec", "value": {"resources": dict(DEFAULT_RESOURCES)}}
        )
    elif spec.get("resources") is None:
        ops.append(
            {
                "op": "replace" if "resources" in spec else "add",
                "path": "/spec/resources",
                "value": dict(DEFAULT_RESOURCES),
            }
        )
    return ops


def mutate(desired: Dict[str, Any]) -> Dict[str, Any]:
    """Fill in defaults. Pure, total and idempotent."""
    return apply_json_patch(desired, mutation_patch(desired))


def apply_json_patch(document: Dict[str, Any], ops: JsonPatch) -> Dict[str, Any]:
    """Apply `add` and `replace` operations on object members to a copy of `document`."""
    result = copy.deepcopy(document)
    for op in ops:
        if op["op"] not in ("add", "replace"):
            raise ValueError(f"Unsupported patch operation: {op['op']}")
        tokens = [
            token.replace("~1", "/").replace("~0", "~")
            for token in op["path"].lstrip("/").split("/")
        ]
        target = result
        for token in tokens[:-1]:
            target = target[token]
        target[tokens[-1]] = copy.deepcopy(op["value"])
    return result


_REVIEWERS: Dict[AdmissionKind, Tuple[Callable, Callable]] = {
    AdmissionKind.MYAPP: (validate, mutation_patch),
}


def review(
    kind: Any, operation: str, obj: Dict[str, Any], mutating: bool = False
) -> AdmissionDecision:
    """Review an admission request for one of the supported kinds.

    Validating reviews return the validation decision; mutating reviews
    always admit and carry the defaulting patch.
    """
    try:
        admission_kind = AdmissionKind(kind.value if isinstance(kind, Enum) else kind)
    except ValueError:
        return AdmissionDecision.deny(f"unsupported kind: {kind}")
    if operation not in ("CREATE", "UPDATE"):
        return AdmissionDecision.allow()
    validator, patcher = _REVIEWERS[admission_kind]
    if mutating:
        return AdmissionDecision.allow(patcher(obj))
    return validator(obj)
