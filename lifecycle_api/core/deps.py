from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Query, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycle_api.core.capabilities import Caller
from lifecycle_api.core.errors import InvalidQuery, Unauthenticated
from lifecycle_api.core.logging import bind_caller
from lifecycle_api.core.security import decode_token
from lifecycle_api.core.tenancy import TenantContext
from lifecycle_api.db.models.security import User
from lifecycle_api.db.session import get_async_session
from lifecycle_api.repositories.security import SecurityRepository
from lifecycle_api.schemas.query import QueryOptions

logger = logging.getLogger(__name__)

# OAuth2 bearer (used by docs); login endpoint path referenced here
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


# PUBLIC_INTERFACE
async def get_token_claims(token: Optional[str] = Depends(oauth2_scheme)) -> Dict[str, Any]:
    """
    Decode the bearer access token.

    Raises:
        Unauthenticated: when the token is missing, invalid, expired or not an access token.
    """
    if not token:
        raise Unauthenticated("Not authenticated")
    try:
        claims = decode_token(token)
    except JWTError:
        raise Unauthenticated("Invalid token") from None
    if claims.get("type") != "access" or not claims.get("sub") or not claims.get("tenant_id"):
        raise Unauthenticated("Invalid token")
    return claims


# PUBLIC_INTERFACE
async def get_current_user(
    claims: Dict[str, Any] = Depends(get_token_claims),
    session: AsyncSession = Depends(get_async_session),
) -> User:
    """Load the active user the token was issued to, within the organisation it names."""
    try:
        user_id, tenant_id = UUID(str(claims["sub"])), UUID(str(claims["tenant_id"]))
    except ValueError:
        raise Unauthenticated("Invalid token") from None
    stmt = select(User).where(User.id == user_id, User.tenant_id == tenant_id)
    user = (await session.execute(stmt)).scalar_one_or_none()
    if user is None:
        raise Unauthenticated("User not found")
    if not user.is_active:
        raise Unauthenticated("User is inactive")
    return user


# PUBLIC_INTERFACE
async def get_caller(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> Caller:
    """Build the request's Caller: the user plus one Policy per role it holds."""
    # Roles may be global, so policy loading is not tenant-filtered.
    policies = await SecurityRepository(TenantContext(session, tenant_unsafe=True)).load_policies(user.id)
    bind_caller(str(user.id), str(user.tenant_id))
    return Caller(user_id=user.id, tenant_id=user.tenant_id, policies=policies)


# PUBLIC_INTERFACE
async def get_tenant_context(
    x_tenant_id: Optional[str] = Header(default=None, alias="X-Tenant-ID"),
    caller: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_async_session),
) -> TenantContext:
    """
    TenantContext for the request.

    The tenant is the X-Tenant-ID header when present, else the caller's own
    organisation. A header naming another organisation is rejected when the
    service is constructed.
    """
    if not x_tenant_id:
        return TenantContext(session=session, tenant_id=caller.tenant_id)
    try:
        return TenantContext(session=session, tenant_id=UUID(x_tenant_id))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header must be a valid UUID string.",
        )


def _json_param(name: str, raw: Optional[str]) -> Any:
    if raw is None or raw == "":
        return None
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise InvalidQuery(f"Query parameter '{name}' must be URL-encoded JSON: {exc}") from exc


# PUBLIC_INTERFACE
def parse_query_options(
    attributes: Optional[str] = Query(None, description="JSON array of projected fields or expressions"),
    filters: Optional[str] = Query(None, description="JSON filter object"),
    group_by: Optional[str] = Query(None, alias="groupBy", description="JSON array of grouping fields"),
    sort_by: Optional[str] = Query(None, alias="sortBy", description="Field, alias or association path"),
    sort_order: str = Query("ASC", alias="sortOrder", description="ASC or DESC"),
    page: Optional[int] = Query(None, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    with_attributes: bool = Query(False, alias="withAttributes"),
    nest: bool = Query(True),
) -> QueryOptions:
    """Build QueryOptions from list endpoint query parameters."""
    values = {
        "attributes": _json_param("attributes", attributes),
        "filters": _json_param("filters", filters),
        "group_by": _json_param("groupBy", group_by),
        "sort_by": sort_by,
        "sort_order": sort_order,
        "page": page,
        "limit": limit,
        "with_attributes": with_attributes,
        "nest": nest,
    }
    try:
        return QueryOptions.model_validate(values)
    except ValidationError as exc:
        raise InvalidQuery(f"Invalid list parameters: {exc.errors()[0].get('msg')}") from exc
