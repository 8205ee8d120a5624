import json
import asyncio
import aiohttp
import kubernetes_asyncio

_ALREADY_EXISTS = "alreadyexists"
_NOT_FOUND = "notfound"
_CONFLICT = "conflict"


class ValidationFailure(Exception):
    """MyApp spec violates domain constraints; only a spec edit can clear it."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class StoreError(Exception):
    """Base class for failures talking to the object store."""

    #: short label used for logs and metrics
    error_type = "store_error"


class ConflictError(StoreError):
    """Optimistic concurrency collision; retry immediately with a fresh read."""

    error_type = "conflict"


class TransientStoreError(StoreError):
    """Timeout or unavailable store; retry with exponential backoff."""

    error_type = "transient_store_error"


class PermanentStoreError(StoreError):
    """Store rejected the call in a way that cannot self-heal (e.g. forbidden)."""

    error_type = "permanent_store_error"


class OwnershipConflict(PermanentStoreError):
    """A child object is controlled by another owner and is never adopted."""

    error_type = "ownership_conflict"


def _reason(ex: kubernetes_asyncio.client.ApiException) -> str:
    try:
        err = json.loads(ex.body) if ex.body else {}
    except (json.JSONDecodeError, TypeError):
        return ""
    return (err.get("reason") or "").lower()


def already_exists_error(ex: Exception) -> bool:
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        return False
    return ex.status == 409 and _reason(ex) == _ALREADY_EXISTS


def not_found_error(ex: Exception) -> bool:
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        return False
    return ex.status == 404 or _reason(ex) == _NOT_FOUND


def conflict_error(ex: Exception) -> bool:
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        return False
    return ex.status == 409 and _reason(ex) in (_CONFLICT, "")


def convert_api_exception(ex: Exception) -> StoreError:
    """
    Convert a kubernetes ApiException (or a transport failure) into a store error.

    Args:
        ex: The exception raised by the kubernetes client

    Returns:
        ConflictError for 409 conflicts, TransientStoreError for timeouts,
        throttling, server errors and connection failures, PermanentStoreError
        for any other 4xx.
    """
    if isinstance(ex, StoreError):
        return ex
    if isinstance(ex, (asyncio.TimeoutError, aiohttp.ClientError)):
        return TransientStoreError(f"Kubernetes API unreachable: {ex!r}")
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        raise ex

    error_msg = f"Kubernetes API error ({ex.status}): {ex.reason}"
    try:
        if ex.body:
            body = json.loads(ex.body)
            if "message" in body:
                error_msg = f"{error_msg} - {body['message']}"
    except (json.JSONDecodeError, AttributeError, TypeError):
        pass

    if conflict_error(ex):
        return ConflictError(error_msg)
    # 4xx errors (except 408, 429) are permanent
    if ex.status is not None and 400 <= ex.status < 500 and ex.status not in [408, 429]:
        return PermanentStoreError(error_msg)
    return TransientStoreError(error_msg)
