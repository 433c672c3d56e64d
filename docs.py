"""
OpenAPI helpers

FastAPI renders the Swagger UI and the OpenAPI document itself. The generated
routes read their bodies and query strings from the raw request, so the
request-body schema and the list parameters of each resource are described
here and attached to the routes through openapi_extra.
"""

from typing import Any, Dict, List

from filters import OPERATORS
from schemas import FieldSpec, ResourceConfig, ValueType

_TYPE_SCHEMAS = {
    ValueType.TEXT: {"type": "string"},
    ValueType.NUMBER: {"type": "number"},
    ValueType.BOOLEAN: {"type": "boolean"},
    ValueType.DATETIME: {"type": "string", "format": "date-time"},
    ValueType.REFERENCE: {"type": "string"},
    ValueType.OBJECT: {"type": "object"},
    ValueType.FILE: {"type": "string", "description": "URL of uploaded file"},
}


def field_schema(spec: FieldSpec) -> Dict[str, Any]:
    if spec.value_type == ValueType.ARRAY:
        items = field_schema(spec.items) if spec.items else {"type": "string"}
        return {"type": "array", "items": items}
    if spec.value_type == ValueType.OBJECT and spec.properties:
        return object_schema(spec.properties)

    schema = dict(_TYPE_SCHEMAS[spec.value_type])
    if spec.enum_values:
        schema["enum"] = list(spec.enum_values)
    if spec.default is not None:
        schema["default"] = spec.default
    if spec.value_type == ValueType.NUMBER:
        if spec.min is not None:
            schema["minimum"] = spec.min
        if spec.max is not None:
            schema["maximum"] = spec.max
    if spec.ref:
        schema["description"] = f"Reference to {spec.ref}"
    return schema


def object_schema(fields: Dict[str, FieldSpec], with_required: bool = True) -> Dict[str, Any]:
    schema = {
        "type": "object",
        "properties": {name: field_schema(spec) for name, spec in fields.items()},
    }
    required = [name for name, spec in fields.items() if spec.required]
    if with_required and required:
        schema["required"] = required
    return schema


def document_schema(resource: ResourceConfig) -> Dict[str, Any]:
    schema = object_schema(resource.schema_fields, with_required=False)
    schema["properties"] = {
        "_id": {"type": "string", "description": "MongoDB ObjectId"},
        **schema["properties"],
        "createdAt": {"type": "string", "format": "date-time"},
        "updatedAt": {"type": "string", "format": "date-time"},
    }
    return schema


def _multipart_schema(resource: ResourceConfig, with_required: bool) -> Dict[str, Any]:
    schema = object_schema(resource.schema_fields, with_required=False)
    required = [name for name, spec in resource.schema_fields.items() if spec.required]
    for file_field in resource.file_fields:
        description = ["File upload"]
        if file_field.max_size_mb:
            description.append(f"Max: {file_field.max_size_mb:g}MB")
        if file_field.accept:
            description.append(f"Accepts: {file_field.accept}")
        schema["properties"][file_field.field_name] = {
            "type": "string",
            "format": "binary",
            "description": ". ".join(description),
        }
        if file_field.required:
            required.append(file_field.field_name)
    if with_required and required:
        schema["required"] = required
    return schema


def request_body(resource: ResourceConfig, for_create: bool) -> Dict[str, Any]:
    content = {
        "application/json": {"schema": object_schema(resource.schema_fields, with_required=for_create)},
    }
    if resource.has_file_fields:
        content["multipart/form-data"] = {"schema": _multipart_schema(resource, with_required=for_create)}
    return {"requestBody": {"required": True, "content": content}}


def _filter_param_schema(spec: FieldSpec) -> Dict[str, Any]:
    full = field_schema(spec)
    schema = {"type": full.get("type", "string")}
    if "enum" in full:
        schema["enum"] = full["enum"]
    elif schema["type"] == "boolean":
        schema["enum"] = [True, False]
    if "format" in full:
        schema["format"] = full["format"]
    return schema


def list_parameters(resource: ResourceConfig) -> Dict[str, Any]:
    parameters: List[Dict[str, Any]] = [
        {"name": "page", "in": "query", "schema": {"type": "integer", "default": 1}, "description": "Page number"},
        {"name": "limit", "in": "query", "schema": {"type": "integer", "default": 10, "maximum": 100}, "description": "Items per page (max 100)"},
        {"name": "sort", "in": "query", "schema": {"type": "string", "default": "-createdAt"}, "description": "Sort field, prefix with - for descending"},
        {"name": "fields", "in": "query", "schema": {"type": "string"}, "description": "Comma-separated fields to return"},
    ]
    if resource.searchable_fields:
        parameters.append({
            "name": "search",
            "in": "query",
            "schema": {"type": "string"},
            "description": f"Case-insensitive search across: {', '.join(resource.searchable_fields)}",
        })
    for name in resource.filterable_fields:
        spec = resource.field_spec(name) or FieldSpec(value_type=ValueType.TEXT)
        schema = _filter_param_schema(spec)
        parameters.append({"name": name, "in": "query", "schema": schema, "description": f"Filter by {name} (exact, or /pattern/)"})
        if schema["type"] in ("number", "string") and "enum" not in schema:
            for operator in OPERATORS:
                parameters.append({
                    "name": f"{name}_{operator}",
                    "in": "query",
                    "schema": {"type": schema["type"]},
                    "description": f"Filter {name} with ${operator}",
                })
    return {"parameters": parameters}
