"""
Entity and association registry.

Built once from the SQLAlchemy mappers. Entity kinds are mapped class names;
each kind lists its associations as ``{name, target_kind, alias}`` where
``alias`` defaults to the target class name and can be overridden with
``relationship(..., info={"alias": ...})``.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional, Tuple

from lifecycle_api.core.errors import UnknownEntityKind
from lifecycle_api.db.base import Base


@dataclass(frozen=True)
class Association:
    name: str
    target_kind: str
    alias: str
    uselist: bool


class EntityRegistry:
    """Entity kinds and their associations, queried by name."""

    def __init__(self, base: type = Base) -> None:
        self._models: Dict[str, type] = {}
        self._associations: Dict[str, Tuple[Association, ...]] = {}
        for mapper in base.registry.mappers:
            cls = mapper.class_
            kind = cls.__name__
            self._models[kind] = cls
            self._associations[kind] = tuple(
                Association(
                    name=rel.key,
                    target_kind=rel.mapper.class_.__name__,
                    alias=rel.info.get("alias", rel.mapper.class_.__name__),
                    uselist=bool(rel.uselist),
                )
                for rel in mapper.relationships
            )

    def kinds(self) -> list[str]:
        return sorted(self._models)

    def model(self, kind: str) -> type:
        try:
            return self._models[kind]
        except KeyError:
            raise UnknownEntityKind(kind) from None

    # PUBLIC_INTERFACE
    def resolve_kind(self, kind: str) -> type:
        """Resolve an API kind ("grant", "Grant") to its mapped class by upper-casing the first letter."""
        if not kind or not isinstance(kind, str):
            raise UnknownEntityKind(str(kind), "Invalid entity kind")
        return self.model(kind[0].upper() + kind[1:])

    def associations(self, kind: str) -> Tuple[Association, ...]:
        return self._associations.get(kind, ())

    def _direct(self, kind: str, name: str) -> Optional[Association]:
        for assoc in self.associations(kind):
            if assoc.name == name or assoc.alias == name:
                return assoc
        return None

    # PUBLIC_INTERFACE
    def resolve_association(self, kind: str, name: str) -> Optional[Association]:
        """
        Find the association of ``kind`` that ``name`` refers to.

        First looks for a relation of ``kind`` named or aliased ``name``. Failing
        that, looks for any kind exposing ``name`` as an alias and picks the
        relation of ``kind`` that targets the same kind. Returns None when
        neither succeeds.
        """
        direct = self._direct(kind, name)
        if direct is not None:
            return direct
        for associations in self._associations.values():
            for assoc in associations:
                if assoc.alias != name:
                    continue
                for candidate in self.associations(kind):
                    if candidate.target_kind == assoc.target_kind:
                        return candidate
        return None


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_entity_registry() -> EntityRegistry:
    """Return the registry for every model imported from lifecycle_api.db.models."""
    from lifecycle_api.db import models  # noqa: F401

    return EntityRegistry(Base)
