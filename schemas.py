"""
Resource Schemas

Resource definitions arrive from configuration in a Mongoose-style syntax:

    {
        "name": "students",
        "schema": {
            "name": {"type": "String", "required": true},
            "age": {"type": "Number", "min": 10, "max": 100},
            "tags": ["String"],
            "address": {"city": "String", "zip": "String"},
            "avatar": {"type": "File", "maxSize": 2, "accept": "image/*"}
        },
        "searchBy": ["name"],
        "filterBy": ["age"]
    }

Each raw field definition is resolved once, at registration, into a FieldSpec
with a closed ValueType. The request path only ever sees ResourceConfig.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from errors import ConfigurationError


class ValueType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    REFERENCE = "reference"
    OBJECT = "object"
    ARRAY = "array"
    FILE = "file"


_TYPE_ALIASES = {
    "string": ValueType.TEXT,
    "str": ValueType.TEXT,
    "text": ValueType.TEXT,
    "number": ValueType.NUMBER,
    "int": ValueType.NUMBER,
    "integer": ValueType.NUMBER,
    "float": ValueType.NUMBER,
    "decimal": ValueType.NUMBER,
    "decimal128": ValueType.NUMBER,
    "boolean": ValueType.BOOLEAN,
    "bool": ValueType.BOOLEAN,
    "date": ValueType.DATETIME,
    "datetime": ValueType.DATETIME,
    "objectid": ValueType.REFERENCE,
    "ref": ValueType.REFERENCE,
    "reference": ValueType.REFERENCE,
    "mixed": ValueType.OBJECT,
    "object": ValueType.OBJECT,
    "map": ValueType.OBJECT,
    "dict": ValueType.OBJECT,
    "array": ValueType.ARRAY,
    "list": ValueType.ARRAY,
    "file": ValueType.FILE,
}

DEFAULT_MAX_FILE_SIZE_MB = 10


class FieldSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    value_type: ValueType
    required: bool = False
    default: Any = None
    enum_values: Optional[Tuple[Any, ...]] = None
    min: Optional[float] = None
    max: Optional[float] = None
    unique: bool = False
    ref: Optional[str] = None
    items: Optional["FieldSpec"] = None
    properties: Optional[Dict[str, "FieldSpec"]] = None
    max_size_mb: Optional[float] = None
    accept: Optional[str] = None


class FileFieldSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    field_name: str
    required: bool = False
    max_size_mb: float = DEFAULT_MAX_FILE_SIZE_MB
    accept: Optional[str] = None


class ResourceDefinition(BaseModel):
    """
    One resource as written in the configuration file.
    """
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Resource name, becomes collection and URL segment")
    schema_: Dict[str, Any] = Field(..., alias="schema", description="Field definitions")
    search_by: List[str] = Field(default_factory=list, alias="searchBy")
    filter_by: List[str] = Field(default_factory=list, alias="filterBy")

    @field_validator("search_by", "filter_by", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return [] if value is None else value


class ResourceConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    schema_fields: Dict[str, FieldSpec]
    searchable_fields: Tuple[str, ...] = ()
    filterable_fields: Tuple[str, ...] = ()
    file_fields: Tuple[FileFieldSpec, ...] = ()

    @property
    def has_file_fields(self) -> bool:
        return len(self.file_fields) > 0

    @property
    def upload_limit_mb(self) -> float:
        """Largest file part accepted before per-field validation runs."""
        return max([DEFAULT_MAX_FILE_SIZE_MB] + [spec.max_size_mb for spec in self.file_fields])

    @property
    def unique_fields(self) -> List[str]:
        return [name for name, spec in self.schema_fields.items() if spec.unique]

    def is_filterable(self, field: str) -> bool:
        # An empty filterBy list allows no filters at all.
        return field in self.filterable_fields

    def field_spec(self, path: str) -> Optional[FieldSpec]:
        """Resolve a dotted path ("address.city") to its FieldSpec, if declared."""
        fields = self.schema_fields
        spec = None
        for part in path.split("."):
            if fields is None or part not in fields:
                return None
            spec = fields[part]
            while spec.value_type == ValueType.ARRAY and spec.items is not None:
                spec = spec.items
            fields = spec.properties
        return spec


# -----------------
# Parsing raw definitions
# -----------------

def _resolve_type(raw_type: Any, field_name: str) -> ValueType:
    if isinstance(raw_type, type):
        raw_type = raw_type.__name__
    if not isinstance(raw_type, str):
        raise ConfigurationError(f'Field "{field_name}" has an invalid type: {raw_type!r}')
    value_type = _TYPE_ALIASES.get(raw_type.strip().lower())
    if value_type is None:
        raise ConfigurationError(f'Field "{field_name}" has an unknown type "{raw_type}"')
    return value_type


def _option(definition: Dict[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if name in definition:
            return definition[name]
    return default


def parse_field(field_name: str, definition: Any) -> FieldSpec:
    # "String" / "File"
    if isinstance(definition, (str, type)):
        return FieldSpec(value_type=_resolve_type(definition, field_name))

    # ["String"] / [{"type": "Number"}] / []
    if isinstance(definition, list):
        items = parse_field(field_name, definition[0]) if definition else None
        return FieldSpec(value_type=ValueType.ARRAY, items=items)

    if not isinstance(definition, dict):
        raise ConfigurationError(f'Field "{field_name}" has an invalid definition: {definition!r}')

    # {"street": "String", "city": "String"} - nested sub-document
    if "type" not in definition:
        properties = {key: parse_field(f"{field_name}.{key}", value) for key, value in definition.items()}
        return FieldSpec(value_type=ValueType.OBJECT, properties=properties)

    raw_type = definition["type"]
    if isinstance(raw_type, list):
        array_spec = parse_field(field_name, raw_type)
        return array_spec.model_copy(update={"required": bool(definition.get("required", False))})
    if isinstance(raw_type, dict):
        nested = parse_field(field_name, raw_type)
        return nested.model_copy(update={"required": bool(definition.get("required", False))})

    value_type = _resolve_type(raw_type, field_name)
    enum_values = definition.get("enum")
    if enum_values is not None and not isinstance(enum_values, (list, tuple)):
        raise ConfigurationError(f'Field "{field_name}" enum must be a list')

    return FieldSpec(
        value_type=value_type,
        required=definition.get("required") is True,
        default=definition.get("default"),
        enum_values=tuple(enum_values) if enum_values is not None else None,
        min=definition.get("min"),
        max=definition.get("max"),
        unique=definition.get("unique") is True,
        ref=definition.get("ref"),
        max_size_mb=_option(definition, "maxSize", "max_size", "max_size_mb"),
        accept=definition.get("accept"),
    )


def extract_file_fields(schema_fields: Dict[str, FieldSpec]) -> List[FileFieldSpec]:
    file_fields = []
    for name, spec in schema_fields.items():
        if spec.value_type != ValueType.FILE:
            continue
        file_fields.append(FileFieldSpec(
            field_name=name,
            required=spec.required,
            max_size_mb=spec.max_size_mb if spec.max_size_mb is not None else DEFAULT_MAX_FILE_SIZE_MB,
            accept=spec.accept,
        ))
    return file_fields


def convert_file_fields(schema_fields: Dict[str, FieldSpec]) -> Dict[str, FieldSpec]:
    """Return a copy where File fields become text fields holding the blob URL.

    The required flag is dropped too: a required upload is enforced on the
    multipart request, not on the stored URL.
    """
    converted = {}
    for name, spec in schema_fields.items():
        if spec.value_type == ValueType.FILE:
            spec = FieldSpec(value_type=ValueType.TEXT)
        converted[name] = spec
    return converted


def build_resource(definition: ResourceDefinition) -> ResourceConfig:
    if not definition.name or not definition.name.strip():
        raise ConfigurationError("Each resource must have a 'name'.")
    if not isinstance(definition.schema_, dict) or not definition.schema_:
        raise ConfigurationError(f'Resource "{definition.name}" must have a \'schema\' object.')

    schema_fields = {name: parse_field(name, raw) for name, raw in definition.schema_.items()}
    file_fields = extract_file_fields(schema_fields)

    return ResourceConfig(
        name=definition.name.strip().lower(),
        schema_fields=convert_file_fields(schema_fields),
        searchable_fields=tuple(definition.search_by),
        filterable_fields=tuple(definition.filter_by),
        file_fields=tuple(file_fields),
    )
