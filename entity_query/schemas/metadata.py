from __future__ import annotations

import re
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel

SortOrder = Literal["ASC", "DESC"]

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def _check_identifier(value: str) -> str:
    text = str(value or "").strip()
    if not IDENTIFIER_RE.match(text):
        raise ValueError(f'invalid column name "{value}"')
    return text


class DefaultSort(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    order: Optional[SortOrder] = None

    @field_validator("field")
    @classmethod
    def _field_is_identifier(cls, value: str) -> str:
        return _check_identifier(value)

    @field_validator("order", mode="before")
    @classmethod
    def _normalize_order(cls, value):
        if value is None:
            return None
        return str(value).strip().upper()


class EntityMetadata(BaseModel):
    """Per-entity whitelists consumed by the query compiler.

    Field lists are trusted to name real columns of ``table_name``; only their
    shape is checked here because they are interpolated into SQL verbatim.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    table_name: str
    primary_key: str = "id"
    searchable_fields: list[str] = []
    filterable_fields: list[str] = []
    sortable_fields: list[str] = []
    default_sort: Optional[DefaultSort] = None
    active_field: Optional[str] = None

    @field_validator("table_name")
    @classmethod
    def _table_name_shape(cls, value: str) -> str:
        text = str(value or "").strip()
        if not TABLE_NAME_RE.match(text):
            raise ValueError(f'invalid table name "{value}"')
        return text

    @field_validator("primary_key", "active_field")
    @classmethod
    def _single_identifier(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _check_identifier(value)

    @field_validator("searchable_fields", "filterable_fields", "sortable_fields")
    @classmethod
    def _identifier_lists(cls, value: list[str]) -> list[str]:
        return [_check_identifier(item) for item in value]

    @model_validator(mode="after")
    def _active_field_is_filterable(self) -> "EntityMetadata":
        if self.active_field is not None and self.active_field not in self.filterable_fields:
            raise ValueError(f'active_field "{self.active_field}" must be listed in filterable_fields')
        return self
