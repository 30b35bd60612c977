from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QueryRequest(_CamelModel):
    """Raw list request; every field may be missing or invalid."""

    page: Any = None
    limit: Any = None
    search: Optional[str] = None
    filters: Optional[dict[str, Any]] = None
    sort_by: Optional[str] = None
    sort_order: Optional[str] = None
    include_inactive: bool = False

    @field_validator("search", "sort_by", "sort_order", mode="before")
    @classmethod
    def _as_text(cls, value):
        if value is None:
            return None
        return str(value)


class PaginationMeta(_CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class AppliedFilters(_CamelModel):
    search: Optional[str] = None
    filters: dict[str, Any] = {}
    sort_by: str
    sort_order: str


class ResultEnvelope(_CamelModel):
    data: list[dict[str, Any]]
    count: int
    pagination: PaginationMeta
    applied_filters: AppliedFilters
