from __future__ import annotations

from fastapi import APIRouter, Depends

from lifecycle_api.core.capabilities import Caller
from lifecycle_api.core.deps import get_caller, get_tenant_context
from lifecycle_api.core.tenancy import TenantContext
from lifecycle_api.schemas.auth import RoleRead
from lifecycle_api.schemas.common import SuccessEnvelope, success
from lifecycle_api.services.role import RoleService

router = APIRouter(prefix="/roles", tags=["Roles"])


# PUBLIC_INTERFACE
@router.get("", response_model=SuccessEnvelope, summary="List roles")
async def get_roles(
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    """Roles the organisation can assign to its users."""
    roles = await RoleService(context, caller).get_roles()
    return success("Roles retrieved successfully", [RoleRead.model_validate(r) for r in roles])
