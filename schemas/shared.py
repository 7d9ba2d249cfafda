from pydantic import BaseModel, ConfigDict, validator
from pydantic.alias_generators import to_camel
from typing import Optional

from database_schemas import is_valid_key


class CamelModel(BaseModel):
    """Base for every wire model: snake_case in Python, camelCase in JSON."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AuthorIn(BaseModel):
    name: str = ""
    email: str = ""

    @validator('name', 'email')
    def strip_value(cls, v):
        return v.strip()


class UserOut(BaseModel):
    id: Optional[str] = None
    name: str = ""
    email: str = ""


def require_text(v, field: str):
    if v is None or not v.strip():
        raise ValueError(f'{field} cannot be empty')
    return v.strip()


def require_key(v, field: str):
    v = require_text(v, field)
    if not is_valid_key(v):
        raise ValueError(f'{field} contains characters that are not allowed in keys')
    return v
