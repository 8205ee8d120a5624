from .resource_requests import ResourceRequests
from .scheduling import SchedulingConfig
from .myapp_spec import MyAppSpec
from .myapp_status import Condition, MyAppStatus
from .myapp_resources import MyAppResources
from .myapp import MyApp
