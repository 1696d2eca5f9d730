from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from lifecycle_api.db.models.records import StateMachine, Version
from .base import BaseRepository


class StateMachineRepository(BaseRepository[StateMachine]):
    model = StateMachine


class VersionRepository(BaseRepository[Version]):
    model = Version

    async def record(
        self,
        *,
        entity_kind: str,
        entity_id: UUID,
        action: str,
        from_status: Optional[str],
        to_status: Optional[str],
        actor_id: Optional[UUID],
        attachment_key: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> Version:
        """Append the audit row for one applied transition."""
        return await self.create(
            entity_kind=entity_kind,
            entity_id=entity_id,
            action=action,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            attachment_key=attachment_key,
            payload=payload or {},
        )
