from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from lifecycle_api.api.routes.common import to_page
from lifecycle_api.core.capabilities import Caller
from lifecycle_api.core.deps import get_caller, get_tenant_context, parse_query_options
from lifecycle_api.core.tenancy import TenantContext
from lifecycle_api.schemas.common import SuccessEnvelope, success
from lifecycle_api.schemas.equity import PlanCreate, PlanRead, PlanSummary, PlanUpdate
from lifecycle_api.schemas.query import QueryOptions
from lifecycle_api.services.plan import PlanService

router = APIRouter(prefix="/plans", tags=["Plans"])


# PUBLIC_INTERFACE
@router.get("", response_model=SuccessEnvelope, summary="List plans")
async def get_plans(
    options: QueryOptions = Depends(parse_query_options),
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    result = await PlanService(context, caller).get_plans(options)
    return success("Plans retrieved successfully", to_page(result, options))


# PUBLIC_INTERFACE
@router.post("", response_model=SuccessEnvelope, status_code=201, summary="Create plan")
async def create_plan(
    payload: PlanCreate,
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    plan = await PlanService(context, caller).create_plan(payload)
    return success("Plan created successfully", PlanRead.model_validate(plan))


# PUBLIC_INTERFACE
@router.patch("/{plan_id}", response_model=SuccessEnvelope, summary="Update plan")
async def update_plan(
    plan_id: UUID,
    payload: PlanUpdate,
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    plan = await PlanService(context, caller).update_plan(plan_id, payload)
    return success("Plan updated successfully", PlanRead.model_validate(plan))


# PUBLIC_INTERFACE
@router.delete("/{plan_id}", response_model=SuccessEnvelope, summary="Delete plan")
async def delete_plan(
    plan_id: UUID,
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    await PlanService(context, caller).delete_plan(plan_id)
    return success("Plan deleted successfully")


# PUBLIC_INTERFACE
@router.get("/{plan_id}/summary", response_model=SuccessEnvelope, summary="Plan with grant totals")
async def get_plan_summary(
    plan_id: UUID,
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    summary = await PlanService(context, caller).get_plan_with_summary(plan_id)
    data = PlanSummary(plan=PlanRead.model_validate(summary["plan"]), summary=summary["summary"])
    return success("Plan retrieved successfully", data)
