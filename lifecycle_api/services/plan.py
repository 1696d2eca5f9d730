from __future__ import annotations

import logging
from typing import Any, Dict
from uuid import UUID

from lifecycle_api.db.models.equity import Grant, Plan
from lifecycle_api.repositories.equity import PlanRepository
from lifecycle_api.repositories.query import QueryBuilder, QueryResult
from lifecycle_api.schemas.equity import PlanCreate, PlanUpdate
from lifecycle_api.schemas.query import QueryOptions
from lifecycle_api.services.tenant import TenantService

logger = logging.getLogger(__name__)

SUMMARY_ATTRIBUTES = [
    "count(id) as grants",
    "sum(granted) as granted",
    "sum(vested) as vested",
    "sum(cancelled) as cancelled",
    "count(distinct user_id) as grantees",
]


class PlanService(TenantService):
    """Equity plans of the tenant."""

    def __init__(self, context, caller) -> None:
        super().__init__(context, caller)
        self.plans = PlanRepository(context)

    # PUBLIC_INTERFACE
    async def get_plans(self, options: QueryOptions) -> QueryResult:
        return await self.plans.find_all(options)

    # PUBLIC_INTERFACE
    async def create_plan(self, payload: PlanCreate) -> Plan:
        async with self.context.atomic():
            plan = await self.plans.create(**payload.model_dump(), status="draft")
            logger.info("Created plan %s", plan.id)
        return plan

    # PUBLIC_INTERFACE
    async def update_plan(self, plan_id: UUID, payload: PlanUpdate) -> Plan:
        async with self.context.atomic():
            plan = await self.plans.get_or_raise(plan_id)
            await self.plans.update(plan, payload.model_dump(exclude_unset=True))
        return plan

    # PUBLIC_INTERFACE
    async def delete_plan(self, plan_id: UUID) -> None:
        async with self.context.atomic():
            plan = await self.plans.get_or_raise(plan_id)
            await self.plans.delete(plan)
            logger.info("Deleted plan %s", plan_id)

    # PUBLIC_INTERFACE
    async def get_plan_with_summary(self, plan_id: UUID) -> Dict[str, Any]:
        """
        Plan plus totals over its non-rejected grants.

        Returns:
            {"plan": Plan, "summary": {grants, granted, vested, cancelled, grantees, available}}
        """
        plan = await self.plans.get_or_raise(plan_id)
        options = QueryOptions(
            attributes=SUMMARY_ATTRIBUTES,
            filters={"plan_id": plan.id, "status": {"notIn": ["rejected", "cancelled"]}},
        )
        result = await QueryBuilder(Grant, self.context).execute(options)
        totals = result.rows[0] if result.rows else {}
        summary = {
            "grants": int(totals.get("grants") or 0),
            "granted": float(totals.get("granted") or 0),
            "vested": float(totals.get("vested") or 0),
            "cancelled": float(totals.get("cancelled") or 0),
            "grantees": int(totals.get("grantees") or 0),
        }
        summary["available"] = float(plan.size) - summary["granted"]
        return {"plan": plan, "summary": summary}
