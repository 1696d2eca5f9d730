from __future__ import annotations

from typing import Any, List, Mapping, Optional
from uuid import UUID

from sqlalchemy import or_, select

from lifecycle_api.db.models.equity import Grant, Plan, Schedule, Vest
from lifecycle_api.db.models.records import Attribute
from lifecycle_api.repositories.query import encode_attribute_value
from .base import BaseRepository


class PlanRepository(BaseRepository[Plan]):
    model = Plan


class GrantRepository(BaseRepository[Grant]):
    model = Grant

    async def add_vests(self, grant: Grant, tranches: List[Mapping[str, Any]]) -> None:
        """Attach a vesting schedule; ``tranches`` are {vest_date, quantity} mappings."""
        vests = [
            Vest(
                grant_id=grant.id,
                tenant_id=grant.tenant_id,
                vest_date=t["vest_date"],
                quantity=t["quantity"],
                status=t.get("status", "scheduled"),
            )
            for t in tranches
        ]
        await self.add_all(vests)
        await self.session.refresh(grant, attribute_names=["vests"])


class ScheduleRepository(BaseRepository[Schedule]):
    """Vesting schedules. ``get`` sees the tenant's own rows, ``get_visible`` shared ones too."""

    model = Schedule

    async def get_visible(self, schedule_id: UUID) -> Optional[Schedule]:
        """A schedule of the tenant or a shared one."""
        stmt = select(Schedule).where(Schedule.id == schedule_id)
        if not self.context.tenant_unsafe:
            stmt = stmt.where(or_(Schedule.tenant_id == self.context.tenant_id, Schedule.tenant_id.is_(None)))
        return await self.scalar_one_or_none(stmt)


class AttributeRepository(BaseRepository[Attribute]):
    """Sparse attributes keyed by (entity kind, entity id, key)."""

    model = Attribute

    async def for_entity(self, entity_kind: str, entity_id: UUID) -> List[Attribute]:
        stmt = (
            self.scoped()
            .where(Attribute.entity_kind == entity_kind, Attribute.entity_id == entity_id)
            .order_by(Attribute.key)
        )
        return list(await self.scalars(stmt))

    async def upsert(self, entity_kind: str, entity_id: UUID, values: Mapping[str, Any]) -> List[Attribute]:
        """Insert or overwrite attributes; a None value removes the key."""
        existing = {a.key: a for a in await self.for_entity(entity_kind, entity_id)}
        for key, value in values.items():
            current = existing.get(key)
            if value is None:
                if current is not None:
                    await self.session.delete(current)
                    existing.pop(key)
                continue
            if current is None:
                existing[key] = Attribute(
                    **self.context.stamp(
                        {
                            "entity_kind": entity_kind,
                            "entity_id": entity_id,
                            "key": key,
                            "value": encode_attribute_value(value),
                        },
                        Attribute,
                    )
                )
                self.session.add(existing[key])
            else:
                current.value = encode_attribute_value(value)
        await self.session.flush()
        return [existing[k] for k in sorted(existing)]
