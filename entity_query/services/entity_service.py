from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Optional

from fastapi import HTTPException

from entity_query.db.session import QueryExecutor, get_executor
from entity_query.schemas.metadata import EntityMetadata
from entity_query.schemas.query import AppliedFilters, QueryRequest, ResultEnvelope
from entity_query.services.entity_registry import EntityRegistry, load_registry
from entity_query.services.pagination import build_limit_clause, generate_metadata, validate_params
from entity_query.services.query_builder import (
    authorized_filters,
    build_query,
    normalize_filters,
    resolve_sort,
)

_LOG = logging.getLogger("entity_query.entity_service")


def _as_request(options: Any) -> QueryRequest:
    if isinstance(options, QueryRequest):
        return options
    return QueryRequest.model_validate(options or {})


def _with_active_default(request: QueryRequest, metadata: EntityMetadata) -> QueryRequest:
    active_field = metadata.active_field
    if not active_field or request.include_inactive:
        return request
    # a malformed value on the active column is dropped by the compiler, so it does not count as explicit
    if active_field in normalize_filters(request.filters, metadata.filterable_fields):
        return request
    filters = dict(request.filters or {})
    filters[active_field] = True
    return request.model_copy(update={"filters": filters})


def _coerce_identifier(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        raise HTTPException(status_code=400, detail="Invalid identifier")
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise HTTPException(status_code=400, detail="Invalid identifier")
        if not text.lstrip("-").isdigit():
            return text
        value = int(text)
    if isinstance(value, int) and value < 1:
        raise HTTPException(status_code=400, detail="Invalid identifier")
    return value


class EntityService:
    """Metadata-driven list and lookup queries for any registered entity."""

    def __init__(
        self,
        registry: EntityRegistry,
        executor: QueryExecutor,
        *,
        default_limit: Optional[int] = None,
        max_limit: Optional[int] = None,
    ):
        self.registry = registry
        self.executor = executor
        self.default_limit = default_limit
        self.max_limit = max_limit

    async def find_all(self, entity_name: str, options: QueryRequest | Mapping[str, Any] | None = None) -> ResultEnvelope:
        metadata = self.registry.get(entity_name)
        request = _with_active_default(_as_request(options), metadata)
        pagination = validate_params(request, default_limit=self.default_limit, max_limit=self.max_limit)

        compiled = build_query(request, metadata)
        where_sql = compiled.where_clause or "TRUE"
        table = metadata.table_name

        _LOG.debug(
            "find_all entity=%s table=%s page=%s limit=%s where=%s order_by=%s",
            entity_name,
            table,
            pagination.page,
            pagination.limit,
            where_sql,
            compiled.order_by_clause,
        )

        # count and data run as two statements without a transaction; totals may drift under concurrent writes
        count_result = await self.executor.execute(
            f"SELECT COUNT(*) AS total FROM {table} WHERE {where_sql}",
            compiled.params,
        )
        total = int(count_result.rows[0]["total"]) if count_result.rows else 0

        data_result = await self.executor.execute(
            f"SELECT * FROM {table} WHERE {where_sql} "
            f"ORDER BY {compiled.order_by_clause} {build_limit_clause(pagination.limit, pagination.offset)}",
            compiled.params,
        )
        rows = list(data_result.rows)

        sort_by, sort_order = resolve_sort(
            request.sort_by,
            request.sort_order,
            metadata.sortable_fields,
            metadata.default_sort,
        )
        search = (request.search or "").strip() or None
        return ResultEnvelope(
            data=rows,
            count=len(rows),
            pagination=generate_metadata(pagination.page, pagination.limit, total),
            applied_filters=AppliedFilters(
                search=search if metadata.searchable_fields else None,
                filters=authorized_filters(request.filters, metadata.filterable_fields),
                sort_by=sort_by,
                sort_order=sort_order,
            ),
        )

    async def find_by_field(self, entity_name: str, field: str, value: Any) -> Optional[dict[str, Any]]:
        metadata = self.registry.get(entity_name)
        if field != metadata.primary_key and field not in metadata.filterable_fields:
            raise HTTPException(
                status_code=400,
                detail=f'Field "{field}" is not filterable for entity {entity_name}',
            )

        if value is None:
            clause, params = f"{field} IS NULL", []
        else:
            clause, params = f"{field} = $1", [value]
        result = await self.executor.execute(
            f"SELECT * FROM {metadata.table_name} WHERE {clause} LIMIT 1",
            params,
        )
        return result.rows[0] if result.rows else None

    async def find_by_id(self, entity_name: str, entity_id: Any) -> Optional[dict[str, Any]]:
        metadata = self.registry.get(entity_name)
        return await self.find_by_field(entity_name, metadata.primary_key, _coerce_identifier(entity_id))


def get_entity_service() -> EntityService:
    return EntityService(load_registry(), get_executor())
