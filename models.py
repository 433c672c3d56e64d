"""
Document models

Builds one pydantic model per resource from its FieldSpec mapping. The store
validates every write through these models before it reaches MongoDB.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Type, Union

from bson import ObjectId
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, StringConstraints, ValidationError, create_model

from schemas import FieldSpec, ResourceConfig, ValueType


def _to_object_id(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    raise ValueError("must be a valid ObjectId")


def _to_number(value: Any) -> Union[int, float]:
    if isinstance(value, bool):
        raise ValueError("must be a number")
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            pass
    raise ValueError("must be a number")


def _number_type(minimum: Optional[float], maximum: Optional[float]) -> Any:
    def check(value: Any) -> Union[int, float]:
        number = _to_number(value)
        if minimum is not None and number < minimum:
            raise ValueError(f"must be greater than or equal to {minimum:g}")
        if maximum is not None and number > maximum:
            raise ValueError(f"must be less than or equal to {maximum:g}")
        return number
    return Annotated[Any, BeforeValidator(check)]


def _to_text(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


ObjectIdField = Annotated[Any, BeforeValidator(_to_object_id)]

TextField = Annotated[str, BeforeValidator(_to_text)]

# required text must not be blank
RequiredTextField = Annotated[str, BeforeValidator(_to_text), StringConstraints(min_length=1)]

_BASE_TYPES = {
    ValueType.TEXT: TextField,
    ValueType.BOOLEAN: bool,
    ValueType.DATETIME: datetime,
    ValueType.REFERENCE: ObjectIdField,
}


class DocumentBase(BaseModel):
    model_config = ConfigDict(extra="ignore", arbitrary_types_allowed=True)


def _annotation(name: str, spec: FieldSpec) -> Any:
    if spec.enum_values:
        return Literal[spec.enum_values]
    if spec.value_type == ValueType.ARRAY:
        if spec.items is None:
            return List[Any]
        return List[_annotation(name, spec.items)]
    if spec.value_type == ValueType.OBJECT:
        if not spec.properties:
            return Dict[str, Any]
        return _build_model(f"{name}_object", spec.properties, partial=False)
    if spec.value_type == ValueType.NUMBER:
        return _number_type(spec.min, spec.max)
    if spec.value_type == ValueType.TEXT and spec.required:
        return RequiredTextField
    return _BASE_TYPES.get(spec.value_type, Any)


def _field_definition(name: str, spec: FieldSpec, partial: bool) -> Tuple[Any, Any]:
    annotation = _annotation(name, spec)
    if partial:
        # absent fields are never dumped; an explicit null on a required field must fail
        return (annotation if spec.required else Optional[annotation]), Field(None)
    if spec.default is not None:
        return (annotation if spec.required else Optional[annotation]), Field(spec.default)
    if spec.required:
        return annotation, Field(...)
    if spec.value_type == ValueType.ARRAY:
        return Optional[annotation], Field(default_factory=list)
    return Optional[annotation], Field(None)


def _build_model(name: str, fields: Dict[str, FieldSpec], partial: bool) -> Type[BaseModel]:
    definitions = {key: _field_definition(key, spec, partial) for key, spec in fields.items()}
    return create_model(name, __base__=DocumentBase, **definitions)


class DocumentModels:
    """Full and partial validators for one resource."""

    def __init__(self, resource: ResourceConfig):
        self.resource = resource
        self.full = _build_model(resource.name.capitalize(), resource.schema_fields, partial=False)
        self.partial = _build_model(f"{resource.name.capitalize()}Patch", resource.schema_fields, partial=True)

    def validate_full(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Validate a complete document. Defaults are applied; absent optional fields are left out."""
        instance = self.full.model_validate(body)
        document = instance.model_dump()
        explicit = instance.model_fields_set
        return {
            key: value for key, value in document.items()
            if key in explicit or value is not None
        }

    def validate_partial(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Validate only the fields present in body; nothing is required."""
        instance = self.partial.model_validate(body)
        return instance.model_dump(include=instance.model_fields_set)


def validation_details(exc: ValidationError) -> List[Dict[str, str]]:
    return [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())),
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
