from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional

from entity_query.core.config import settings
from entity_query.schemas.query import PaginationMeta

DEFAULT_PAGE = 1


@dataclass(frozen=True)
class PaginationParams:
    page: int
    limit: int
    offset: int


@dataclass(frozen=True)
class PaginationResult:
    params: PaginationParams
    metadata: PaginationMeta


def _coerce_int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        if isinstance(value, float):
            return int(value)
        text = str(value).strip()
        try:
            return int(text)
        except ValueError:
            return int(float(text))
    except (TypeError, ValueError, OverflowError):
        return default


def _option(options: Any, key: str) -> Any:
    if options is None:
        return None
    if isinstance(options, Mapping):
        return options.get(key)
    return getattr(options, key, None)


def validate_params(
    options: Any = None,
    *,
    default_page: int = DEFAULT_PAGE,
    default_limit: Optional[int] = None,
    max_limit: Optional[int] = None,
) -> PaginationParams:
    """Clamp page/limit into range; malformed input falls back to defaults instead of raising."""
    default_limit = settings.QUERY_DEFAULT_LIMIT if default_limit is None else default_limit
    max_limit = max(1, settings.QUERY_MAX_LIMIT if max_limit is None else int(max_limit))

    page = max(1, _coerce_int(_option(options, "page"), default_page))
    limit = min(max(1, _coerce_int(_option(options, "limit"), default_limit)), max_limit)
    return PaginationParams(page=page, limit=limit, offset=(page - 1) * limit)


def generate_metadata(page: int, limit: int, total: int) -> PaginationMeta:
    # hasNext/hasPrev follow the requested page; a page past the end is not an error
    total_pages = max(1, -(-total // limit)) if limit > 0 else 1
    return PaginationMeta(
        page=page,
        limit=limit,
        total=total,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1,
    )


def build_limit_clause(limit: int, offset: int) -> str:
    return f"LIMIT {int(limit)} OFFSET {int(offset)}"


def paginate(options: Any, total: int, **limits: Any) -> PaginationResult:
    params = validate_params(options, **limits)
    return PaginationResult(params=params, metadata=generate_metadata(params.page, params.limit, total))
