from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycle_api.core.deps import get_current_user
from lifecycle_api.core.errors import Unauthenticated
from lifecycle_api.core.security import create_access_token, verify_password
from lifecycle_api.core.settings import get_app_settings
from lifecycle_api.db.models.security import User
from lifecycle_api.db.session import get_async_session
from lifecycle_api.schemas.auth import LoginRequest, TokenPair, UserRead
from lifecycle_api.schemas.common import SuccessEnvelope, success

router = APIRouter(prefix="/auth", tags=["Auth"])


# PUBLIC_INTERFACE
@router.post(
    "/login",
    response_model=SuccessEnvelope,
    summary="Login",
    description="Authenticate with email and password and receive an access token.",
)
async def login(payload: LoginRequest, session: AsyncSession = Depends(get_async_session)):
    """Authenticate user and issue an access token for the user's organisation."""
    stmt = select(User).where(User.email == payload.email)
    if payload.organisation_id is not None:
        stmt = stmt.where(User.tenant_id == payload.organisation_id)
    users = list((await session.execute(stmt.order_by(User.created_at))).scalars())
    user = next((u for u in users if verify_password(payload.password, u.hashed_password)), None)
    if user is None:
        raise Unauthenticated("Invalid credentials")
    if not user.is_active:
        raise Unauthenticated("User is inactive")

    settings = get_app_settings()
    token = create_access_token(subject=str(user.id), tenant_id=str(user.tenant_id))
    pair = TokenPair(access_token=token, expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60)
    return success("Login successful", pair)


# PUBLIC_INTERFACE
@router.get("/me", response_model=SuccessEnvelope, summary="Get current user")
async def me(user: User = Depends(get_current_user)):
    """Return the authenticated user's profile."""
    return success("User retrieved successfully", UserRead.model_validate(user))
