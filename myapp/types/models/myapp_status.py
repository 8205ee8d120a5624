from typing import List, Optional
from myapp.types.base import BaseModel


class Condition(BaseModel):
    """A single status condition; at most one is kept per type."""

    type: str
    status: str
    reason: str
    message: str
    last_transition_time: Optional[str]


class MyAppStatus(BaseModel):
    """MyApp status subresource"""

    state: Optional[str]
    observed_generation: Optional[int]
    conditions: List[Condition]
    last_updated: Optional[str]
