"""
Filter compiler

Turns list-request query parameters into a MongoDB filter document:

    ?grade=A                  {"grade": "A"}
    ?name=/jo/                {"name": {"$regex": "jo", "$options": "i"}}
    ?age_gte=18&age_lte=30    {"age": {"$gte": 18, "$lte": 30}}
    ?status_ne=archived       {"status": {"$ne": "archived"}}

Only fields listed in the resource's filterBy are compiled. Anything else is
dropped without an error.
"""

import re
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from bson import ObjectId

from schemas import FieldSpec, ResourceConfig, ValueType

RESERVED_PARAMS = frozenset({"page", "limit", "sort", "fields", "search"})

OPERATORS = ("gt", "gte", "lt", "lte", "ne")

_OPERATOR_KEY = re.compile(r"^(.+)_(gt|gte|lt|lte|ne)$")

_TRUE = {"true", "1", "yes"}
_FALSE = {"false", "0", "no"}


def is_reserved(key: str) -> bool:
    return key in RESERVED_PARAMS or key.startswith("_")


def parse_number(raw: str) -> Optional[Any]:
    text = raw.strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    # "nan" and "inf" parse as floats but are not numeric literals
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def _parse_datetime(raw: str) -> Optional[datetime]:
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def coerce_value(raw: str, spec: Optional[FieldSpec]) -> Any:
    """Convert a query-string value according to the field's declared type.

    Undeclared fields fall back to shape: numeric-looking strings become
    numbers. Values that do not parse under the declared type stay strings.
    """
    if spec is None:
        number = parse_number(raw)
        return raw if number is None else number

    value_type = spec.value_type
    if value_type == ValueType.NUMBER:
        number = parse_number(raw)
        return raw if number is None else number
    if value_type == ValueType.BOOLEAN:
        lowered = raw.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        return raw
    if value_type == ValueType.DATETIME:
        parsed = _parse_datetime(raw)
        return raw if parsed is None else parsed
    if value_type == ValueType.REFERENCE:
        return ObjectId(raw) if ObjectId.is_valid(raw) else raw
    return raw


def _field_spec(resource: ResourceConfig, field: str) -> Optional[FieldSpec]:
    spec = resource.field_spec(field)
    if spec is not None:
        return spec
    if field in ("createdAt", "updatedAt"):
        return FieldSpec(value_type=ValueType.DATETIME)
    if field == "_id":
        return FieldSpec(value_type=ValueType.REFERENCE)
    return None


def _is_pattern(raw: str) -> bool:
    return len(raw) >= 2 and raw.startswith("/") and raw.endswith("/")


def _is_operator_node(value: Any) -> bool:
    return isinstance(value, dict) and bool(value) and all(key.startswith("$") for key in value)


def compile_filters(params: Mapping[str, str], resource: ResourceConfig) -> Dict[str, Any]:
    predicate: Dict[str, Any] = {}

    for key, raw in params.items():
        if is_reserved(key):
            continue
        raw = str(raw)

        match = _OPERATOR_KEY.match(key)
        if match:
            field, operator = match.groups()
            if not resource.is_filterable(field):
                continue
            value = coerce_value(raw, _field_spec(resource, field))
            node = predicate.get(field)
            if node is None:
                node = {}
            elif not _is_operator_node(node):
                node = {"$eq": node}
            node[f"${operator}"] = value
            predicate[field] = node
            continue

        if not resource.is_filterable(key):
            continue

        if _is_pattern(raw):
            clause = {"$regex": raw[1:-1], "$options": "i"}
        else:
            clause = coerce_value(raw, _field_spec(resource, key))

        existing = predicate.get(key)
        if _is_operator_node(existing):
            if isinstance(clause, dict):
                existing.update(clause)
            else:
                existing["$eq"] = clause
        else:
            predicate[key] = clause

    return predicate
