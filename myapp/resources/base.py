import mmh3
import hashlib
from typing import Any, Dict, Union
from myapp.utils.helpers import canonicalize_dict
from myapp.common.models.labels import Labels


class BaseResource:
    """Base resource model."""

    MYAPP_OPERATOR_NAME = "myapp-controller"
    HASH_ANNOTATION = "example.com/resource-hash"

    _name: str
    _namespace: str
    _labels: Labels

    def __init__(self, name: str, namespace: str, labels: Labels):
        self._name = name
        self._namespace = namespace
        self._labels = labels

    @property
    def name(self) -> str:
        return self._name

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def labels(self) -> Labels:
        return self._labels

    def compute_hash(self, data: Any) -> str:
        """Compute a murmur3 hash."""
        if isinstance(data, dict):
            _data = canonicalize_dict(data)
        elif isinstance(data, str):
            _data = data.encode()
        else:
            raise ValueError(f"Hash of {type(data)} is not supported.")
        mumur_str = str(mmh3.hash128(_data))

        hash_obj = hashlib.sha256(mumur_str.encode("utf-8"))
        full_hash = hash_obj.hexdigest()

        # First 16 characters keep annotations readable
        return full_hash[:16]

    def prepare_hash_annotation(self, hash: Union[str, int]) -> Dict[str, str]:
        """Prepare hash annotation for k8s resources."""
        return {self.HASH_ANNOTATION: str(hash)}

    def prepare_metadata(
        self, name: str, annotations: Dict[str, str] = None
    ) -> Dict[str, Any]:
        """Metadata shared by every child object."""
        metadata = {
            "name": name,
            "namespace": self.namespace,
            "labels": self.labels.as_dict(),
        }
        if annotations:
            metadata["annotations"] = dict(annotations)
        return metadata
