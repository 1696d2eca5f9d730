from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from lifecycle_api.api.routes.common import to_page
from lifecycle_api.core.capabilities import Caller
from lifecycle_api.core.deps import get_caller, get_tenant_context
from lifecycle_api.core.tenancy import TenantContext
from lifecycle_api.schemas.auth import UserCreate, UserRead, UserUpdate
from lifecycle_api.schemas.common import SuccessEnvelope, success
from lifecycle_api.schemas.query import QueryOptions
from lifecycle_api.services.user import UserService

router = APIRouter(prefix="/users", tags=["Users"])


# PUBLIC_INTERFACE
@router.get("", response_model=SuccessEnvelope, summary="List users")
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=1000),
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    result = await UserService(context, caller).get_users(page, limit)
    return success("Users retrieved successfully", to_page(result, QueryOptions(page=page, limit=limit)))


# PUBLIC_INTERFACE
@router.post("", response_model=SuccessEnvelope, status_code=201, summary="Create user")
async def create_user(
    payload: UserCreate,
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    """Create a pending user; it becomes active through the APPROVE action."""
    user = await UserService(context, caller).create_user(payload)
    return success("User created successfully", UserRead.model_validate(user))


# PUBLIC_INTERFACE
@router.get("/{user_id}", response_model=SuccessEnvelope, summary="Get user")
async def get_user(
    user_id: UUID,
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    user = await UserService(context, caller).get_user_by_id(user_id)
    return success("User retrieved successfully", UserRead.model_validate(user))


# PUBLIC_INTERFACE
@router.patch("/{user_id}", response_model=SuccessEnvelope, summary="Update user")
async def update_user(
    user_id: UUID,
    payload: UserUpdate,
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    user = await UserService(context, caller).update_user(user_id, payload)
    return success("User updated successfully", UserRead.model_validate(user))


# PUBLIC_INTERFACE
@router.delete("/{user_id}", response_model=SuccessEnvelope, summary="Delete user")
async def delete_user(
    user_id: UUID,
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    await UserService(context, caller).delete_user(user_id)
    return success("User deleted successfully")
