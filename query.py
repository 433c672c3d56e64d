"""
List queries

parse_list_params() reads the reserved parameters (page, limit, sort, fields,
search) and QueryExecutor runs the page + count pair against a DocumentStore.
"""

import math
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from filters import compile_filters, is_reserved
from schemas import ResourceConfig

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100
DEFAULT_SORT = "-createdAt"


class ParsedQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT
    sort: str = DEFAULT_SORT
    projection_fields: Optional[Tuple[str, ...]] = None
    search_term: Optional[str] = None
    filter_params: Dict[str, str] = Field(default_factory=dict)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    totalPages: int
    hasNext: bool
    hasPrev: bool

    @classmethod
    def build(cls, total: int, page: int, limit: int) -> "Pagination":
        total_pages = math.ceil(total / limit) if limit else 0
        return cls(
            total=total,
            page=page,
            limit=limit,
            totalPages=total_pages,
            hasNext=page < total_pages,
            hasPrev=page > 1,
        )


class ListResult(BaseModel):
    documents: List[Dict[str, Any]]
    pagination: Pagination


def _parse_int(raw: Any, default: int) -> int:
    if raw is None:
        return default
    match = re.match(r"^\s*([+-]?\d+)", str(raw))
    if not match:
        return default
    return int(match.group(1))


def clamp_page(page: int) -> int:
    return max(1, page)


def clamp_limit(limit: int) -> int:
    return min(MAX_LIMIT, max(1, limit))


def parse_list_params(params: Mapping[str, str]) -> ParsedQuery:
    page = clamp_page(_parse_int(params.get("page"), DEFAULT_PAGE))
    limit = clamp_limit(_parse_int(params.get("limit"), DEFAULT_LIMIT))
    sort = (params.get("sort") or "").strip() or DEFAULT_SORT

    projection_fields = None
    if params.get("fields"):
        projection_fields = tuple(
            name.strip() for name in str(params["fields"]).split(",") if name.strip()
        ) or None

    search = params.get("search")
    search_term = search.strip() if search and search.strip() else None

    filter_params = {key: value for key, value in params.items() if not is_reserved(key)}

    return ParsedQuery(
        page=page,
        limit=limit,
        sort=sort,
        projection_fields=projection_fields,
        search_term=search_term,
        filter_params=filter_params,
    )


def build_sort(sort: str) -> List[Tuple[str, int]]:
    """"-price,name" or "-price name" -> [("price", -1), ("name", 1)]."""
    keys = []
    for token in re.split(r"[,\s]+", sort.strip()):
        if not token or token in ("-", "+"):
            continue
        if token.startswith("-"):
            keys.append((token[1:], -1))
        else:
            keys.append((token.lstrip("+"), 1))
    return keys


def build_projection(fields: Optional[Tuple[str, ...]]) -> Optional[Dict[str, int]]:
    if not fields:
        return None
    included = [name for name in fields if not name.startswith("-")]
    if included:
        return {name: 1 for name in included}
    return {name[1:]: 0 for name in fields if name[1:] and name[1:] != "_id"} or None


def search_clause(term: Optional[str], searchable_fields) -> Optional[Dict[str, Any]]:
    if not term or not searchable_fields:
        return None
    pattern = re.escape(term)
    return {"$or": [{field: {"$regex": pattern, "$options": "i"}} for field in searchable_fields]}


class QueryExecutor:
    def __init__(self, store, resource: ResourceConfig):
        self.store = store
        self.resource = resource

    def build_predicate(self, query: ParsedQuery) -> Dict[str, Any]:
        predicate = compile_filters(query.filter_params, self.resource)
        search = search_clause(query.search_term, self.resource.searchable_fields)
        if search is None:
            return predicate
        if not predicate:
            return search
        return {"$and": [predicate, search]}

    def list(self, query: ParsedQuery) -> ListResult:
        predicate = self.build_predicate(query)
        documents = self.store.find(
            predicate,
            projection=build_projection(query.projection_fields),
            sort=build_sort(query.sort),
            skip=query.skip,
            limit=query.limit,
        )
        total = self.store.count(predicate)
        return ListResult(
            documents=documents,
            pagination=Pagination.build(total, query.page, query.limit),
        )
