from __future__ import annotations

import logging
from uuid import UUID

from lifecycle_api.db.models.equity import Schedule
from lifecycle_api.repositories.equity import ScheduleRepository
from lifecycle_api.repositories.query import QueryBuilder, QueryResult
from lifecycle_api.schemas.equity import ScheduleCreate, ScheduleUpdate
from lifecycle_api.schemas.query import QueryOptions
from lifecycle_api.services.tenant import TenantService

logger = logging.getLogger(__name__)


class ScheduleService(TenantService):
    """
    Vesting schedule templates.

    Listing includes shared schedules (no tenant). Only the organisation's own
    schedules can be changed or deleted.
    """

    def __init__(self, context, caller) -> None:
        super().__init__(context, caller)
        self.schedules = ScheduleRepository(context)

    # PUBLIC_INTERFACE
    async def create_schedule(self, payload: ScheduleCreate) -> Schedule:
        async with self.context.atomic():
            schedule = await self.schedules.create(
                title=payload.title,
                description=payload.description,
                cliff=payload.cliff,
                periods=[p.model_dump() for p in payload.periods],
            )
            logger.info("Created schedule %s", schedule.id)
        return schedule

    # PUBLIC_INTERFACE
    async def get_schedules(self, options: QueryOptions) -> QueryResult:
        """Schedules of the organisation plus shared ones, oldest first unless a sort is given."""
        context = self.context
        if not context.tenant_unsafe:
            options = options.merged(filters={"or": [{"tenant_id": self.tenant_id}, {"tenant_id": None}]})
            context = context.unsafe()
        if not options.sort_specs():
            options = options.merged(sort_by="created_at")
        return await QueryBuilder(Schedule, context).execute(options)

    # PUBLIC_INTERFACE
    async def update_schedule(self, schedule_id: UUID, payload: ScheduleUpdate) -> Schedule:
        """
        Change fields of one of the organisation's schedules.

        Raises:
            NotFound: when the schedule is missing, shared or another tenant's.
        """
        values = payload.model_dump(exclude_unset=True)
        if values.get("periods") is not None:
            values["periods"] = [p.model_dump() for p in payload.periods]
        async with self.context.atomic():
            schedule = await self.schedules.get_or_raise(schedule_id)
            await self.schedules.update(schedule, values)
        return schedule

    # PUBLIC_INTERFACE
    async def delete_schedule(self, schedule_id: UUID) -> None:
        async with self.context.atomic():
            schedule = await self.schedules.get_or_raise(schedule_id)
            await self.schedules.delete(schedule)
            logger.info("Deleted schedule %s", schedule_id)
