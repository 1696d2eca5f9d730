from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from lifecycle_api.api.routes.common import to_page
from lifecycle_api.core.capabilities import Caller
from lifecycle_api.core.deps import get_caller, get_tenant_context, parse_query_options
from lifecycle_api.core.tenancy import TenantContext
from lifecycle_api.schemas.common import SuccessEnvelope, success
from lifecycle_api.schemas.equity import ScheduleCreate, ScheduleRead, ScheduleUpdate
from lifecycle_api.schemas.query import QueryOptions
from lifecycle_api.services.schedule import ScheduleService

router = APIRouter(prefix="/schedules", tags=["Schedules"])


# PUBLIC_INTERFACE
@router.get("", response_model=SuccessEnvelope, summary="List schedules")
async def get_schedules(
    options: QueryOptions = Depends(parse_query_options),
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    """Vesting schedules of the organisation plus shared ones."""
    result = await ScheduleService(context, caller).get_schedules(options)
    return success("Schedules retrieved successfully", to_page(result, options))


# PUBLIC_INTERFACE
@router.post("", response_model=SuccessEnvelope, status_code=201, summary="Create schedule")
async def create_schedule(
    payload: ScheduleCreate,
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    schedule = await ScheduleService(context, caller).create_schedule(payload)
    return success("Schedule created successfully", ScheduleRead.model_validate(schedule))


# PUBLIC_INTERFACE
@router.patch("/{schedule_id}", response_model=SuccessEnvelope, summary="Update schedule")
async def update_schedule(
    schedule_id: UUID,
    payload: ScheduleUpdate,
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    schedule = await ScheduleService(context, caller).update_schedule(schedule_id, payload)
    return success("Schedule updated successfully", ScheduleRead.model_validate(schedule))


# PUBLIC_INTERFACE
@router.delete("/{schedule_id}", response_model=SuccessEnvelope, summary="Delete schedule")
async def delete_schedule(
    schedule_id: UUID,
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    await ScheduleService(context, caller).delete_schedule(schedule_id)
    return success("Schedule deleted successfully")
