from marshmallow import fields
from myapp.types.base import BaseSchema
from myapp.types.models.scheduling import SchedulingConfig


class SchedulingConfigSchema(BaseSchema):
    __model__ = SchedulingConfig
    node_selector = fields.Dict(
        keys=fields.Str(),
        values=fields.Str(),
        data_key="nodeSelector",
        load_default=dict,
    )
    priority_class = fields.Str(
        data_key="priorityClass", allow_none=True, load_default=None
    )
    scheduler_name = fields.Str(
        data_key="schedulerName", allow_none=True, load_default=None
    )
