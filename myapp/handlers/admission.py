import kopf
from logging import Logger
from typing import Any, Dict, List

from myapp.admission import AdmissionKind, review
from myapp.sensors import OperatorSensor, SensorDelegate
from myapp.types.models.myapp import MyApp
from myapp.types.settings import MUTATE_FAIL_OPEN, VALIDATE_FAIL_OPEN

MYAPP_RESOURCE = f"{MyApp.PLURAL_NAME}.{MyApp.GROUP_NAME}"


def _sensor(memo: kopf.Memo) -> OperatorSensor:
    return getattr(memo, "sensor", None) or SensorDelegate()


def fill_patch(ops: List[Dict[str, Any]], patch: Dict[str, Any]) -> None:
    """Copy `add`/`replace` operations into kopf's merge-style admission patch."""
    for op in ops:
        tokens = [
            token.replace("~1", "/").replace("~0", "~")
            for token in op["path"].lstrip("/").split("/")
        ]
        target = patch
        for token in tokens[:-1]:
            target = target.setdefault(token, {})
        target[tokens[-1]] = op["value"]


@kopf.on.validate(
    MYAPP_RESOURCE, id="validate-myapp", ignore_failures=VALIDATE_FAIL_OPEN
)
def validate_myapp(body, operation, memo: kopf.Memo, logger: Logger, **kwargs):
    """Reject MyApp objects that violate the domain constraints."""
    sensor = _sensor(memo)
    state = sensor.on_webhook_start("validate")
    decision = review(AdmissionKind.MYAPP, operation, dict(body))
    if not decision.allowed:
        logger.info(f"Rejected {operation} of MyApp {body.get('metadata', {}).get('name')}: {decision.reason}")
        sensor.on_webhook_complete("validate", state, "denied")
        raise kopf.AdmissionError(decision.reason, code=400)
    sensor.on_webhook_complete("validate", state, "allowed")


@kopf.on.mutate(
    MYAPP_RESOURCE, id="mutate-myapp", ignore_failures=MUTATE_FAIL_OPEN
)
def mutate_myapp(body, operation, patch, memo: kopf.Memo, logger: Logger, **kwargs):
    """Default the managed-by label and resource requests."""
    sensor = _sensor(memo)
    state = sensor.on_webhook_start("mutate")
    decision = review(AdmissionKind.MYAPP, operation, dict(body), mutating=True)
    if not decision.allowed:
        sensor.on_webhook_complete("mutate", state, "denied")
        raise kopf.AdmissionError(decision.reason, code=400)
    if decision.patch:
        logger.debug(f"Defaulting MyApp: {list(decision.patch)}")
        fill_patch(list(decision.patch), patch)
    sensor.on_webhook_complete("mutate", state, "allowed")
