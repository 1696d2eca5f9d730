from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycle_api.api.routes.common import to_page
from lifecycle_api.core.capabilities import Caller
from lifecycle_api.core.deps import get_caller, get_tenant_context, parse_query_options
from lifecycle_api.core.tenancy import TenantContext
from lifecycle_api.db.session import get_async_session
from lifecycle_api.schemas.auth import OrganisationCreate, OrganisationRead, OrganisationUpdate, UserRead
from lifecycle_api.schemas.common import SuccessEnvelope, success
from lifecycle_api.schemas.query import QueryOptions
from lifecycle_api.services.organisation import OrganisationService, provision_organisation

router = APIRouter(prefix="/organisations", tags=["Organisations"])


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=SuccessEnvelope,
    status_code=201,
    summary="Create organisation",
    description="Sign-up: creates an organisation and its active administrator in one transaction.",
)
async def create_organisation(payload: OrganisationCreate, session: AsyncSession = Depends(get_async_session)):
    organisation, admin = await provision_organisation(TenantContext(session, tenant_unsafe=True), payload)
    return success(
        "Organisation created successfully",
        {"organisation": OrganisationRead.model_validate(organisation), "admin": UserRead.model_validate(admin)},
    )


# PUBLIC_INTERFACE
@router.get("", response_model=SuccessEnvelope, summary="List organisations")
async def get_organisations(
    options: QueryOptions = Depends(parse_query_options),
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    """Organisations visible to the caller; a tenant-scoped request sees its own only."""
    result = await OrganisationService(context, caller).get_organisations(options)
    return success("Organisations retrieved successfully", to_page(result, options))


# PUBLIC_INTERFACE
@router.patch("/{organisation_id}", response_model=SuccessEnvelope, summary="Update organisation")
async def update_organisation(
    organisation_id: UUID,
    payload: OrganisationUpdate,
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    organisation = await OrganisationService(context, caller).update_organisation(
        organisation_id, payload.model_dump(exclude_unset=True)
    )
    return success("Organisation updated successfully", OrganisationRead.model_validate(organisation))


# PUBLIC_INTERFACE
@router.delete("/{organisation_id}", response_model=SuccessEnvelope, summary="Delete organisation")
async def delete_organisation(
    organisation_id: UUID,
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    await OrganisationService(context, caller).delete_organisation(organisation_id)
    return success("Organisation deleted successfully")
