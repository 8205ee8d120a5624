from .base import Kind, ObjectStore, WatchEvent, WatchEventType
from .in_memory import InMemoryObjectStore
from .kubernetes import KubernetesObjectStore

__all__ = [
    "Kind",
    "ObjectStore",
    "WatchEvent",
    "WatchEventType",
    "InMemoryObjectStore",
    "KubernetesObjectStore",
]
