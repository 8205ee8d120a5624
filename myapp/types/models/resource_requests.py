from typing import Optional
from myapp.types.base import BaseModel


class ResourceRequests(BaseModel):
    """Container resource requests; cpu and memory are set together."""

    cpu: Optional[str]
    memory: Optional[str]
