from marshmallow import fields
from myapp.types.base import BaseSchema, EXCLUDE
from myapp.types.models.myapp_status import Condition, MyAppStatus


class ConditionSchema(BaseSchema):
    __model__ = Condition

    type = fields.Str(data_key="type", required=True)
    status = fields.Str(data_key="status", required=True)
    reason = fields.Str(data_key="reason", load_default="")
    message = fields.Str(data_key="message", load_default="")
    last_transition_time = fields.Str(
        data_key="lastTransitionTime", allow_none=True, load_default=None
    )


class MyAppStatusSchema(BaseSchema):
    __model__ = MyAppStatus

    state = fields.Str(data_key="state", allow_none=True, load_default=None)
    observed_generation = fields.Int(
        data_key="observedGeneration", allow_none=True, load_default=None
    )
    conditions = fields.List(
        fields.Nested(ConditionSchema(unknown=EXCLUDE)),
        data_key="conditions",
        load_default=list,
    )
    last_updated = fields.Str(data_key="lastUpdated", allow_none=True, load_default=None)
