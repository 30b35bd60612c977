from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Optional, Union

from entity_query.schemas.metadata import EntityMetadata
from entity_query.schemas.query import QueryRequest

COMPARISON_OPERATORS = {
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "not": "!=",
}
LIST_OPERATORS = {"in"}
SORT_ORDERS = {"ASC", "DESC"}
FALLBACK_SORT_FIELD = "id"
FALLBACK_SORT_ORDER = "DESC"


@dataclass(frozen=True)
class Equals:
    value: Any


@dataclass(frozen=True)
class Operators:
    comparisons: dict[str, Any]


FilterValue = Union[Equals, Operators]


@dataclass
class ClauseResult:
    clause: Optional[str]
    params: list[Any]
    param_offset: int


@dataclass
class CompiledQuery:
    where_clause: Optional[str]
    params: list[Any]
    order_by_clause: str


class ParamBuilder:
    """Collects bound values and hands out the matching ``$n`` placeholders."""

    def __init__(self, offset: int = 0):
        self.offset = int(offset or 0)
        self.values: list[Any] = []

    def add(self, value: Any) -> str:
        self.values.append(value)
        self.offset += 1
        return f"${self.offset}"


def _qualify(field: str, table_prefix: Optional[str]) -> str:
    return f"{table_prefix}.{field}" if table_prefix else field


def build_search_clause(
    term: Any,
    searchable_fields: Iterable[str] | None,
    param_offset: int = 0,
    table_prefix: Optional[str] = None,
) -> ClauseResult:
    text = str(term).strip() if term is not None else ""
    fields = list(searchable_fields or [])
    if not text or not fields:
        return ClauseResult(clause=None, params=[], param_offset=int(param_offset or 0))

    pattern = f"%{text}%"
    builder = ParamBuilder(param_offset)
    conditions = [f"{_qualify(field, table_prefix)} ILIKE {builder.add(pattern)}" for field in fields]
    return ClauseResult(clause=f"({' OR '.join(conditions)})", params=builder.values, param_offset=builder.offset)


def _split_in_values(raw: Any) -> list[Any]:
    if isinstance(raw, str):
        return [part.strip() for part in raw.split(",") if part.strip()]
    if isinstance(raw, (list, tuple, set, frozenset)):
        return [item for item in raw if item is not None]
    if raw is None:
        return []
    return [raw]


def _normalize_filter_value(value: Any) -> Optional[FilterValue]:
    if isinstance(value, Mapping):
        comparisons: dict[str, Any] = {}
        for op, raw in value.items():
            if op in LIST_OPERATORS:
                items = _split_in_values(raw)
                if items:
                    comparisons[op] = items
            elif op in COMPARISON_OPERATORS:
                # Only "not" has a NULL form (IS NOT NULL); ordering against NULL never matches.
                if raw is None and op != "not":
                    continue
                comparisons[op] = raw
        return Operators(comparisons) if comparisons else None
    if isinstance(value, (list, tuple, set, frozenset)):
        return None
    return Equals(value)


def normalize_filters(filters: Mapping[str, Any] | None, filterable_fields: Iterable[str] | None) -> dict[str, FilterValue]:
    """Whitelisted filters as tagged values; unknown fields and operators are dropped silently."""
    allowed = set(filterable_fields or [])
    normalized: dict[str, FilterValue] = {}
    if not filters or not allowed:
        return normalized
    for field, value in filters.items():
        if field not in allowed:
            continue
        item = _normalize_filter_value(value)
        if item is not None:
            normalized[field] = item
    return normalized


def authorized_filters(filters: Mapping[str, Any] | None, filterable_fields: Iterable[str] | None) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for field, item in normalize_filters(filters, filterable_fields).items():
        result[field] = item.value if isinstance(item, Equals) else dict(item.comparisons)
    return result


def _filter_conditions(field: str, item: FilterValue, builder: ParamBuilder, table_prefix: Optional[str]) -> list[str]:
    column = _qualify(field, table_prefix)
    if isinstance(item, Equals):
        if item.value is None:
            return [f"{column} IS NULL"]
        return [f"{column} = {builder.add(item.value)}"]

    conditions: list[str] = []
    for op, raw in item.comparisons.items():
        if op == "in":
            placeholders = ", ".join(builder.add(value) for value in raw)
            conditions.append(f"{column} IN ({placeholders})")
        elif op == "not" and raw is None:
            conditions.append(f"{column} IS NOT NULL")
        else:
            conditions.append(f"{column} {COMPARISON_OPERATORS[op]} {builder.add(raw)}")
    return conditions


def build_filter_clause(
    filters: Mapping[str, Any] | None,
    filterable_fields: Iterable[str] | None,
    param_offset: int = 0,
    table_prefix: Optional[str] = None,
) -> ClauseResult:
    builder = ParamBuilder(param_offset)
    conditions: list[str] = []
    for field, item in normalize_filters(filters, filterable_fields).items():
        conditions.extend(_filter_conditions(field, item, builder, table_prefix))
    if not conditions:
        return ClauseResult(clause=None, params=[], param_offset=int(param_offset or 0))
    return ClauseResult(clause=" AND ".join(conditions), params=builder.values, param_offset=builder.offset)


def _normalize_order(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip().upper()
    return text if text in SORT_ORDERS else None


def _default_sort_parts(default_sort: Any) -> tuple[Optional[str], Optional[str]]:
    if default_sort is None:
        return None, None
    if isinstance(default_sort, Mapping):
        field = default_sort.get("field")
        order = default_sort.get("order")
    else:
        field = getattr(default_sort, "field", None)
        order = getattr(default_sort, "order", None)
    return (field or None), _normalize_order(order)


def resolve_sort(
    sort_by: Any,
    sort_order: Any,
    sortable_fields: Iterable[str] | None,
    default_sort: Any = None,
) -> tuple[str, str]:
    """Pick the ``(field, order)`` pair; the field is always whitelisted or comes from the descriptor.

    An unknown field with a default sort falls back to the default field and
    order together. Otherwise the order falls back on its own.
    """
    fields = list(sortable_fields or [])
    default_field, default_order = _default_sort_parts(default_sort)
    requested_order = _normalize_order(sort_order)

    if isinstance(sort_by, str) and sort_by in fields:
        return sort_by, requested_order or default_order or FALLBACK_SORT_ORDER
    if default_field:
        return default_field, default_order or FALLBACK_SORT_ORDER
    field = fields[0] if fields else FALLBACK_SORT_FIELD
    return field, requested_order or default_order or FALLBACK_SORT_ORDER


def build_sort_clause(
    sort_by: Any,
    sort_order: Any,
    sortable_fields: Iterable[str] | None,
    default_sort: Any = None,
    table_prefix: Optional[str] = None,
) -> str:
    field, order = resolve_sort(sort_by, sort_order, sortable_fields, default_sort)
    return f"{_qualify(field, table_prefix)} {order}"


def combine_where_clauses(clauses: Iterable[Optional[str]] | None) -> Optional[str]:
    valid = [clause for clause in (clauses or []) if clause and clause.strip()]
    if not valid:
        return None
    return " AND ".join(valid)


def combine_params(*param_lists: Iterable[Any] | None) -> list[Any]:
    combined: list[Any] = []
    for params in param_lists:
        if params is None:
            continue
        combined.extend(value for value in params if value is not None)
    return combined


def _as_request(request: Any) -> QueryRequest:
    if isinstance(request, QueryRequest):
        return request
    return QueryRequest.model_validate(request or {})


def _whitelists(metadata: Any) -> tuple[list[str], list[str], list[str], Any]:
    if isinstance(metadata, EntityMetadata):
        return metadata.searchable_fields, metadata.filterable_fields, metadata.sortable_fields, metadata.default_sort
    data = metadata or {}

    def _pick(snake: str, camel: str, default: Any) -> Any:
        if snake in data:
            return data[snake]
        return data.get(camel, default)

    return (
        list(_pick("searchable_fields", "searchableFields", []) or []),
        list(_pick("filterable_fields", "filterableFields", []) or []),
        list(_pick("sortable_fields", "sortableFields", []) or []),
        _pick("default_sort", "defaultSort", None),
    )


def build_query(request: Any, metadata: Any, table_prefix: Optional[str] = None) -> CompiledQuery:
    req = _as_request(request)
    searchable, filterable, sortable, default_sort = _whitelists(metadata)

    search = build_search_clause(req.search, searchable, 0, table_prefix)
    filters = build_filter_clause(req.filters, filterable, search.param_offset, table_prefix)
    order_by_clause = build_sort_clause(req.sort_by, req.sort_order, sortable, default_sort, table_prefix)

    return CompiledQuery(
        where_clause=combine_where_clauses([search.clause, filters.clause]),
        params=combine_params(search.params, filters.params),
        order_by_clause=order_by_clause,
    )
