from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Wire models use camelCase keys; Python code uses snake_case names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorItem(BaseModel):
    type: str
    message: str
