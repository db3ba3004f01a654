from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, get_args, get_origin

from pydantic import BaseModel, ConfigDict
from pydantic_core import PydanticUndefined


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DBSerializableModel(BaseModel):
    """
    Base Pydantic model that knows how to:
    - Serialize itself for DB persistence
    - Provide a backend-agnostic DB schema description derived from fields

    The schema generator turns the description into SQL DDL or a document
    validator offline; nothing here touches the database.
    """

    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    # Logical collection / table name; subclasses should override
    collection_name: ClassVar[str]

    primary_key: ClassVar[Optional[str]] = "id"

    def serialize_for_db(self) -> Dict[str, Any]:
        """
        Convert to a dict suitable for DB persistence.
        """
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def db_schema(cls) -> Dict[str, Any]:
        """
        Return a backend-agnostic schema description derived from model fields.
        """
        fields: Mapping[str, Any] = cls.model_fields

        properties: Dict[str, Any] = {}
        required: list[str] = []

        for name, field in fields.items():
            default = None if field.default is PydanticUndefined else field.default
            if isinstance(default, Enum):
                default = default.value
            properties[name] = {
                "type": cls._map_type(field.annotation),
                "nullable": not field.is_required(),
                "default": default,
                "description": field.description,
            }
            if field.is_required():
                required.append(name)

        return {
            "collection_name": cls.collection_name,
            "primary_key": cls.primary_key,
            "properties": properties,
            "required": required,
        }

    @staticmethod
    def _map_type(annotation: Any) -> str:
        """
        Map a Python / Pydantic type annotation to a generic logical type.
        """
        origin: Any = get_origin(annotation)
        if origin is list or origin is tuple or origin is set:
            return "array"
        if origin is dict:
            return "object"

        # Optional[X] collapses to X
        args = [a for a in get_args(annotation) if a is not type(None)]
        if origin is not None and len(args) == 1:
            annotation = args[0]

        if isinstance(annotation, type) and issubclass(annotation, Enum):
            return "string"
        if annotation in (bool,):
            return "boolean"
        if annotation in (int,):
            return "integer"
        if annotation in (float,):
            return "number"
        if annotation in (str,):
            return "string"

        name = getattr(annotation, "__name__", "object")
        return name.lower()
