from typing import Any, Dict, List, Optional
from myapp.types.base import BaseModel
from myapp.types.models.myapp_spec import MyAppSpec
from myapp.types.models.myapp_status import MyAppStatus


class MyApp(BaseModel):
    """A MyApp object as observed in the store: metadata, spec and status.

    `spec` is None when the stored spec could not be parsed; `spec_error` then
    carries a one-line description of the problem.
    """

    GROUP_NAME = "example.com"
    GROUP_VERSION = "v1"
    API_VERSION = f"{GROUP_NAME}/{GROUP_VERSION}"
    KIND = "MyApp"
    PLURAL_NAME = "myapps"
    SHORT_NAME = "ma"

    api_version: str
    kind: str
    metadata: Dict[str, Any]
    spec: Optional[MyAppSpec]
    spec_error: Optional[str]
    status: Optional[MyAppStatus]

    @property
    def name(self) -> str:
        return self.metadata.get("name")

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace")

    @property
    def uid(self) -> Optional[str]:
        return self.metadata.get("uid")

    @property
    def generation(self) -> int:
        return self.metadata.get("generation") or 0

    @property
    def resource_version(self) -> Optional[str]:
        return self.metadata.get("resourceVersion")

    @property
    def finalizers(self) -> List[str]:
        return list(self.metadata.get("finalizers") or [])

    @property
    def deletion_timestamp(self) -> Optional[str]:
        return self.metadata.get("deletionTimestamp")

    @property
    def is_terminating(self) -> bool:
        return self.deletion_timestamp is not None

    def has_finalizer(self, marker: str) -> bool:
        return marker in self.finalizers

    def owner_reference(self) -> Dict[str, Any]:
        """Owner reference that children carry so the store garbage-collects them."""
        return {
            "apiVersion": self.api_version or self.API_VERSION,
            "kind": self.kind or self.KIND,
            "name": self.name,
            "uid": self.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }
