from marshmallow import fields
from myapp.types.base import BaseSchema
from myapp.types.models.resource_requests import ResourceRequests


class ResourceRequestsSchema(BaseSchema):
    __model__ = ResourceRequests
    cpu = fields.Str(data_key="cpu", required=True)
    memory = fields.Str(data_key="memory", required=True)
