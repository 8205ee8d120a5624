import os
from typing import Any, Optional

_TRUE, _FALSE = {"True", "true", "yes", "1"}, {"False", "false", "no", "0"}


def _getenv(name: str, *default: Any) -> Any:
    try:
        v = os.environ[name]
        if v in _TRUE:
            return True
        elif v in _FALSE:
            return False
        else:
            return v
    except KeyError:
        pass
    if default:
        return default[0]
    raise KeyError(name)


# ------------------------------------------------
# ---- Defaults and environment variables ----
# ------------------------------------------------

#: Seconds between periodic drift-correction passes of a healthy MyApp
DRIFT_INTERVAL_SECONDS = float(_getenv("DRIFT_INTERVAL_SECONDS", 300))

#: Seconds to wait before re-reading a MyApp after adding the finalizer
FINALIZER_REQUEUE_SECONDS = float(_getenv("FINALIZER_REQUEUE_SECONDS", 1))

#: First delay of the exponential backoff applied to transient store failures
BACKOFF_BASE_SECONDS = float(_getenv("BACKOFF_BASE_SECONDS", 1))

#: Upper bound of the exponential backoff
BACKOFF_CAP_SECONDS = float(_getenv("BACKOFF_CAP_SECONDS", 60))

#: Fraction of each backoff delay that is randomized
BACKOFF_JITTER = float(_getenv("BACKOFF_JITTER", 0.2))

#: Fixed retry interval for a MyApp whose spec fails validation
VALIDATION_RETRY_SECONDS = float(_getenv("VALIDATION_RETRY_SECONDS", 60))

#: Fixed retry interval after a permanent store failure (e.g. forbidden)
PERMANENT_ERROR_RETRY_SECONDS = float(_getenv("PERMANENT_ERROR_RETRY_SECONDS", 300))

#: Timeout applied to every single store call
STORE_TIMEOUT_SECONDS = float(_getenv("STORE_TIMEOUT_SECONDS", 10))

#: Number of MyApps reconciled in parallel
WORKER_LIMIT = int(_getenv("WORKER_LIMIT", 4))

#: Restrict the controller to a single namespace; empty watches all namespaces
WATCH_NAMESPACE = _getenv("WATCH_NAMESPACE", "") or None

#: Admission webhook server
WEBHOOK_PORT = int(_getenv("WEBHOOK_PORT", 8443))
WEBHOOK_HOST = _getenv("WEBHOOK_HOST", "") or None
WEBHOOK_CERTFILE = _getenv("WEBHOOK_CERTFILE", "") or None
WEBHOOK_KEYFILE = _getenv("WEBHOOK_KEYFILE", "") or None

#: Let the API server admit objects when the validating webhook is unreachable
VALIDATE_FAIL_OPEN = bool(_getenv("VALIDATE_FAIL_OPEN", False))

#: Let the API server admit objects when the mutating webhook is unreachable
MUTATE_FAIL_OPEN = bool(_getenv("MUTATE_FAIL_OPEN", False))

#: Port of the Prometheus metrics endpoint
METRICS_PORT = int(_getenv("METRICS_PORT", 8080))


class Settings:
    """Operator settings"""

    drift_interval_seconds: float = DRIFT_INTERVAL_SECONDS
    finalizer_requeue_seconds: float = FINALIZER_REQUEUE_SECONDS
    backoff_base_seconds: float = BACKOFF_BASE_SECONDS
    backoff_cap_seconds: float = BACKOFF_CAP_SECONDS
    backoff_jitter: float = BACKOFF_JITTER
    validation_retry_seconds: float = VALIDATION_RETRY_SECONDS
    permanent_error_retry_seconds: float = PERMANENT_ERROR_RETRY_SECONDS
    store_timeout_seconds: float = STORE_TIMEOUT_SECONDS
    worker_limit: int = WORKER_LIMIT
    watch_namespace: Optional[str] = WATCH_NAMESPACE
    webhook_port: int = WEBHOOK_PORT
    webhook_host: Optional[str] = WEBHOOK_HOST
    webhook_certfile: Optional[str] = WEBHOOK_CERTFILE
    webhook_keyfile: Optional[str] = WEBHOOK_KEYFILE
    validate_fail_open: bool = VALIDATE_FAIL_OPEN
    mutate_fail_open: bool = MUTATE_FAIL_OPEN
    metrics_port: int = METRICS_PORT

    def __init__(self, **kwargs: Any):
        for key, value in kwargs.items():
            if not hasattr(type(self), key):
                raise TypeError(f"Unknown setting: {key}")
            if value is not None:
                setattr(self, key, value)
