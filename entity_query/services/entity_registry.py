from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path
from typing import Any

from fastapi import HTTPException

from entity_query.core.config import settings
from entity_query.schemas.metadata import EntityMetadata

_LOG = logging.getLogger("entity_query.entity_registry")


def _normalize_entity_name(entity_name: Any) -> str:
    if not isinstance(entity_name, str) or not entity_name.strip():
        raise HTTPException(status_code=400, detail="Entity name is required and must be a string")
    # snake_case names are kept verbatim: "work_order", not "workorder"
    return entity_name.strip()


class EntityRegistry:
    def __init__(self, entities: Mapping[str, EntityMetadata | Mapping[str, Any]] | None = None):
        self._entities: dict[str, EntityMetadata] = {}
        for name, metadata in (entities or {}).items():
            self.register(name, metadata)

    def register(self, entity_name: str, metadata: EntityMetadata | Mapping[str, Any]) -> EntityMetadata:
        name = _normalize_entity_name(entity_name)
        descriptor = metadata if isinstance(metadata, EntityMetadata) else EntityMetadata.model_validate(metadata)
        self._entities[name] = descriptor
        return descriptor

    def get(self, entity_name: Any) -> EntityMetadata:
        name = _normalize_entity_name(entity_name)
        descriptor = self._entities.get(name)
        if descriptor is None:
            valid = self.names()
            _LOG.warning("Unknown entity requested: %s (valid entities: %s)", name, ", ".join(valid))
            raise HTTPException(
                status_code=400,
                detail=f"Unknown entity: {name}. Valid entities: {', '.join(valid)}",
            )
        return descriptor

    def names(self) -> list[str]:
        return sorted(self._entities)

    def __contains__(self, entity_name: object) -> bool:
        return isinstance(entity_name, str) and entity_name.strip() in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    @classmethod
    def from_mapping(cls, entities: Mapping[str, Any]) -> "EntityRegistry":
        return cls(entities)

    @classmethod
    def from_json_file(cls, path: str | Path) -> "EntityRegistry":
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError(f"Entity metadata file {path} must contain a JSON object")
        return cls.from_mapping(raw)


@lru_cache(maxsize=1)
def load_registry() -> EntityRegistry:
    path = str(settings.ENTITY_METADATA_FILE or "").strip()
    if not path:
        return EntityRegistry()
    registry = EntityRegistry.from_json_file(path)
    _LOG.info("Loaded %s entity descriptors from %s", len(registry), path)
    return registry
