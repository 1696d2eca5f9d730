from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator


class LoginRequest(BaseModel):
    """Credentials for password login."""
    email: EmailStr = Field(..., description="User email")
    password: str = Field(..., description="User password")
    organisation_id: Optional[UUID] = Field(
        None, description="Organisation to log into when the email exists in several"
    )


class TokenPair(BaseModel):
    """Access token issued at login."""
    token_type: str = Field("bearer", description="Token type, typically 'bearer'")
    access_token: str = Field(..., description="JWT access token")
    expires_in: int = Field(..., description="Lifetime in seconds")


class UserRead(BaseModel):
    """User read model."""
    id: UUID = Field(..., description="User ID")
    tenant_id: UUID = Field(..., description="Organisation ID")
    email: EmailStr = Field(..., description="User email")
    first_name: Optional[str] = Field(None)
    last_name: Optional[str] = Field(None)
    status: str = Field(..., description="Lifecycle status")
    is_active: bool = Field(..., description="Active flag")
    created_at: Optional[datetime] = Field(None, description="Created timestamp")
    updated_at: Optional[datetime] = Field(None, description="Updated timestamp")
    roles: List[str] = Field(default_factory=list, description="Role names assigned to the user")

    class Config:
        from_attributes = True

    @field_validator("roles", mode="before")
    @classmethod
    def _role_names(cls, v):
        return [getattr(r, "name", r) for r in (v or [])]


class UserCreate(BaseModel):
    """Create user payload; at least one role is required."""
    email: EmailStr = Field(..., description="Email")
    password: Optional[str] = Field(None, min_length=6, description="Password")
    first_name: Optional[str] = Field(None)
    last_name: Optional[str] = Field(None)
    roles: List[str] = Field(default_factory=list, description="Role names")


class UserUpdate(BaseModel):
    """Update user payload."""
    email: Optional[EmailStr] = Field(None)
    password: Optional[str] = Field(None, min_length=6)
    first_name: Optional[str] = Field(None)
    last_name: Optional[str] = Field(None)
    roles: Optional[List[str]] = Field(None)


class OrganisationCreate(BaseModel):
    """New organisation together with its first administrator."""
    name: str = Field(..., min_length=1, description="Organisation name")
    context: Optional[dict] = Field(None, description="Free-form organisation settings")
    admin: UserCreate = Field(..., description="Administrator created with the organisation")


class OrganisationRead(BaseModel):
    id: UUID
    name: str
    context: Optional[dict] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RoleRead(BaseModel):
    """Role read model; a null tenant marks a global role."""
    id: UUID
    tenant_id: Optional[UUID] = None
    name: str
    description: Optional[str] = None

    class Config:
        from_attributes = True


class OrganisationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    context: Optional[dict] = Field(None)
