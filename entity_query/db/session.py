from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Protocol

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from starlette.concurrency import run_in_threadpool

from entity_query.core.config import settings

_POSITIONAL_PARAM_RE = re.compile(r"\$(\d+)")


@dataclass
class QueryRows:
    rows: list[dict[str, Any]] = field(default_factory=list)


class QueryExecutor(Protocol):
    async def execute(self, sql: str, params: Sequence[Any]) -> QueryRows:
        ...


def to_named_binds(sql: str, params: Sequence[Any]) -> tuple[str, dict[str, Any]]:
    """Rewrite ``$n`` placeholders into SQLAlchemy ``:p<n>`` binds."""
    converted = _POSITIONAL_PARAM_RE.sub(lambda match: f":p{match.group(1)}", sql)
    binds = {f"p{index}": value for index, value in enumerate(params, start=1)}
    return converted, binds


class SqlAlchemyExecutor:
    def __init__(self, engine: Engine):
        self.engine = engine

    def _execute_sync(self, sql: str, params: Sequence[Any]) -> QueryRows:
        statement, binds = to_named_binds(sql, params)
        with self.engine.connect() as connection:
            result = connection.execute(text(statement), binds)
            rows = [dict(row) for row in result.mappings()]
        return QueryRows(rows=rows)

    async def execute(self, sql: str, params: Sequence[Any]) -> QueryRows:
        return await run_in_threadpool(self._execute_sync, sql, list(params or []))


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_engine(
        settings.DATABASE_URL,
        pool_size=settings.DB_POOL_SIZE,
        pool_pre_ping=True,
        echo=settings.DB_ECHO,
        future=True,
    )


def get_executor() -> SqlAlchemyExecutor:
    return SqlAlchemyExecutor(get_engine())
