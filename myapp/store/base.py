import abc
from enum import Enum
from typing import Any, AsyncIterator, Dict, NamedTuple, Optional, Tuple


class Kind(Enum):
    """Object kinds the controller reads and writes."""

    MYAPP = ("example.com/v1", "MyApp", "myapps")
    DEPLOYMENT = ("apps/v1", "Deployment", "deployments")
    SERVICE = ("v1", "Service", "services")

    def __init__(self, api_version: str, kind_name: str, plural: str):
        self.api_version = api_version
        self.kind_name = kind_name
        self.plural = plural

    @property
    def group(self) -> str:
        return self.api_version.rpartition("/")[0]

    @property
    def version(self) -> str:
        return self.api_version.rpartition("/")[2]

    @classmethod
    def of(cls, obj: Dict[str, Any]) -> "Kind":
        """Kind of a document, based on its apiVersion and kind."""
        for kind in cls:
            if (
                kind.api_version == obj.get("apiVersion")
                and kind.kind_name == obj.get("kind")
            ):
                return kind
        raise ValueError(f"Unsupported object {obj.get('apiVersion')}/{obj.get('kind')}")


class WatchEventType(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class WatchEvent(NamedTuple):
    type: WatchEventType
    object: Dict[str, Any]

    @property
    def key(self) -> Tuple[str, str]:
        metadata = self.object.get("metadata") or {}
        return (metadata.get("namespace"), metadata.get("name"))


class ObjectStore(abc.ABC):
    """Capability to read and write cluster objects.

    NotFound and AlreadyExists are regular outcomes and come back as return
    values. Failures raise one of the `myapp.utils.errors.StoreError` types.
    """

    @abc.abstractmethod
    async def get(self, kind: Kind, namespace: str, name: str) -> Optional[Dict]:
        """Return the object, or None when it does not exist."""

    @abc.abstractmethod
    async def create(self, obj: Dict) -> Optional[Dict]:
        """Create the object; None when an object with that name already exists."""

    @abc.abstractmethod
    async def patch(
        self,
        kind: Kind,
        namespace: str,
        name: str,
        patch: Dict,
        subresource: Optional[str] = None,
    ) -> Optional[Dict]:
        """Apply a JSON merge patch; None when the object does not exist.

        A `metadata.resourceVersion` in the patch is a precondition: the store
        raises `ConflictError` when it no longer matches.
        """

    @abc.abstractmethod
    async def delete(self, kind: Kind, namespace: str, name: str) -> bool:
        """Request deletion; False when the object does not exist."""

    @abc.abstractmethod
    def watch(
        self, kind: Kind, namespace: Optional[str] = None
    ) -> AsyncIterator[WatchEvent]:
        """Stream changes of objects of `kind`, starting with the current objects."""

    async def close(self) -> None:
        """Release resources held by the store."""
