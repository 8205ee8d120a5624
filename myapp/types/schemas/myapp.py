import copy
from typing import Any, Dict, Mapping
from marshmallow import ValidationError
from myapp.types.models.myapp import MyApp
from myapp.types.schemas.myapp_spec import MyAppSpecSchema
from myapp.types.schemas.myapp_status import MyAppStatusSchema


def format_validation_error(ex: ValidationError, prefix: str = "spec") -> str:
    """Flatten marshmallow error messages into a single human readable line."""

    def _flatten(messages: Any, path: str):
        if isinstance(messages, Mapping):
            for key, value in messages.items():
                yield from _flatten(value, f"{path}.{key}" if path else str(key))
        elif isinstance(messages, (list, tuple)):
            for value in messages:
                yield from _flatten(value, path)
        else:
            yield f"{path}: {messages}"

    return "; ".join(_flatten(ex.messages, prefix))


def load_myapp(document: Dict[str, Any]) -> MyApp:
    """Parse a MyApp document as returned by the store.

    Metadata is always available; a spec that fails to parse leaves `spec` as
    None and records the reason in `spec_error`.
    """
    spec, spec_error, status = None, None, None
    try:
        spec = MyAppSpecSchema().load(document.get("spec") or {})
    except ValidationError as ex:
        spec_error = format_validation_error(ex)
    if document.get("status"):
        try:
            status = MyAppStatusSchema().load(document["status"])
        except ValidationError:
            # status is controller owned; an unreadable one is rewritten next pass
            status = None
    return MyApp(
        api_version=document.get("apiVersion", MyApp.API_VERSION),
        kind=document.get("kind", MyApp.KIND),
        metadata=copy.deepcopy(document.get("metadata") or {}),
        spec=spec,
        spec_error=spec_error,
        status=status,
    )


def dump_myapp(app: MyApp) -> Dict[str, Any]:
    """Serialize a MyApp back into its document form."""
    document = {
        "apiVersion": app.api_version,
        "kind": app.kind,
        "metadata": copy.deepcopy(app.metadata),
    }
    if app.spec is not None:
        document["spec"] = dict(MyAppSpecSchema().dump(app.spec))
    if app.status is not None:
        document["status"] = dict(MyAppStatusSchema().dump(app.status))
    return document
