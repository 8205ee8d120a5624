from typing import Dict, Optional
from myapp.types.base import BaseModel


class SchedulingConfig(BaseModel):
    """Scheduling hints copied onto the workload's pod template."""

    node_selector: Optional[Dict[str, str]]
    priority_class: Optional[str]
    scheduler_name: Optional[str]
