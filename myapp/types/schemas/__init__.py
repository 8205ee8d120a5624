from .resource_requests import ResourceRequestsSchema
from .scheduling import SchedulingConfigSchema
from .myapp_spec import MyAppSpecSchema
from .myapp_status import ConditionSchema, MyAppStatusSchema
from .myapp import load_myapp, dump_myapp, format_validation_error
