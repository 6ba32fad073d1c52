import logging

import pydantic
from packaging.version import parse
from pydantic.version import VERSION

logger = logging.getLogger(__name__)

version_parsed = parse(str(VERSION))

if version_parsed.major >= 2:
    PydanticVersion = 2
else:
    PydanticVersion = 1
logger.debug(f"Using Pydantic V{PydanticVersion} ({VERSION})")


BaseModel: type = pydantic.BaseModel
Field: type = pydantic.Field
PrivateAttr = pydantic.PrivateAttr


# Pydantic V1: __fields__; Pydantic V2: model_fields
def get_model_fields(cls: type) -> dict:
    if PydanticVersion == 1:
        return getattr(cls, "__fields__", {})
    return getattr(cls, "model_fields", {})  # type: ignore[attr-defined]


def model_dump_compat(instance, **kwargs) -> dict:
    """``model_dump`` on V2, ``dict`` on V1, same keyword arguments."""
    if PydanticVersion == 1:
        return instance.dict(**kwargs)
    return instance.model_dump(**kwargs)


def model_validate_compat(cls: type, data: dict):
    if PydanticVersion == 1:
        return cls.parse_obj(data)
    return cls.model_validate(data)


def model_copy_compat(instance, update: dict = None):
    """
    Copy a model, carrying private attributes along.

    ``update`` values are keyed by field name, not alias.
    """
    if PydanticVersion == 1:
        return instance.copy(update=update or {}, deep=True)
    return instance.model_copy(update=update or {}, deep=True)


__all__ = [
    "BaseModel",
    "Field",
    "PrivateAttr",
    "get_model_fields",
    "model_dump_compat",
    "model_validate_compat",
    "model_copy_compat",
    "PydanticVersion",
]
