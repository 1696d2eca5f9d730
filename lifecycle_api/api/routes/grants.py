from __future__ import annotations

from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Body, Depends

from lifecycle_api.api.routes.common import serialize, to_page
from lifecycle_api.core.capabilities import Caller
from lifecycle_api.core.deps import get_caller, get_tenant_context, parse_query_options
from lifecycle_api.core.tenancy import TenantContext
from lifecycle_api.schemas.common import SuccessEnvelope, success
from lifecycle_api.schemas.equity import GrantCreate, GrantRead, GrantUpdate
from lifecycle_api.schemas.query import QueryOptions
from lifecycle_api.services.grant import GrantService

router = APIRouter(tags=["Grants"])


# PUBLIC_INTERFACE
@router.get("/grants", response_model=SuccessEnvelope, summary="List grants")
async def get_grants(
    options: QueryOptions = Depends(parse_query_options),
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    """
    List grants with declarative filters, e.g.
    ``filters={"or":[{"status":"approved"},{"Attributes.region":"EU"}]}&sortBy=Plan.name``.
    """
    result = await GrantService(context, caller).get_grants(options)
    return success("Grants retrieved successfully", to_page(result, options))


# PUBLIC_INTERFACE
@router.post("/grants", response_model=SuccessEnvelope, status_code=201, summary="Create grant")
async def create_grant(
    payload: GrantCreate,
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    grant = await GrantService(context, caller).create_grant(payload)
    return success("Grant created successfully", GrantRead.model_validate(grant))


# PUBLIC_INTERFACE
@router.get("/grants/{grant_id}", response_model=SuccessEnvelope, summary="Get grant")
async def get_grant(
    grant_id: UUID,
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    grant = await GrantService(context, caller).get_grant_by_id(grant_id)
    return success("Grant retrieved successfully", GrantRead.model_validate(grant))


# PUBLIC_INTERFACE
@router.patch("/grants/{grant_id}", response_model=SuccessEnvelope, summary="Update grant")
async def update_grant(
    grant_id: UUID,
    payload: GrantUpdate,
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    grant = await GrantService(context, caller).update_grant(grant_id, payload)
    return success("Grant updated successfully", GrantRead.model_validate(grant))


# PUBLIC_INTERFACE
@router.put("/grants/{grant_id}/attributes", response_model=SuccessEnvelope, summary="Set grant attributes")
async def set_grant_attributes(
    grant_id: UUID,
    values: Dict[str, Any] = Body(..., description="Attribute values; null removes a key"),
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    attributes = await GrantService(context, caller).set_attributes(grant_id, values)
    return success("Attributes updated successfully", serialize(attributes))


# PUBLIC_INTERFACE
@router.get("/my/grants", response_model=SuccessEnvelope, summary="List my grants")
async def get_my_grants(
    options: QueryOptions = Depends(parse_query_options),
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    """Grants held by the current user, drafts excluded."""
    result = await GrantService(context, caller).get_my_grants(options)
    return success("Grants retrieved successfully", to_page(result, options))
