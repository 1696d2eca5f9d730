from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class PlanRead(BaseModel):
    """Plan read model."""
    id: UUID = Field(..., description="Plan id")
    name: str = Field(..., description="Plan name")
    description: Optional[str] = Field(None)
    size: float = Field(..., description="Number of shares in the pool")
    type: str = Field(..., description="Plan type, e.g. ESOP")
    status: str = Field(..., description="Lifecycle status")
    created_at: Optional[datetime] = Field(None, description="Created at")
    updated_at: Optional[datetime] = Field(None, description="Updated at")

    class Config:
        from_attributes = True


class PlanCreate(BaseModel):
    """Create plan payload."""
    name: str = Field(..., min_length=1, description="Plan name")
    description: Optional[str] = Field(None)
    size: float = Field(0, ge=0)
    type: str = Field("ESOP")


class PlanUpdate(BaseModel):
    """Update plan payload."""
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None)
    size: Optional[float] = Field(None, ge=0)
    type: Optional[str] = Field(None)


class PlanSummary(BaseModel):
    """Plan with totals over its grants."""
    plan: PlanRead
    summary: Dict[str, Any] = Field(default_factory=dict)


class VestRead(BaseModel):
    id: UUID
    vest_date: date
    quantity: float
    status: str

    class Config:
        from_attributes = True


class VestCreate(BaseModel):
    vest_date: date = Field(..., description="Date the tranche vests")
    quantity: float = Field(..., gt=0)


class SchedulePeriod(BaseModel):
    """One vesting step: ``percentage`` vests over ``period`` months in ``frequency``-month slices."""
    period: int = Field(..., gt=0, description="Length in months")
    percentage: float = Field(..., gt=0, le=100)
    frequency: int = Field(1, gt=0, description="Months between tranches")


class ScheduleRead(BaseModel):
    """Schedule read model; a null tenant marks a shared schedule."""
    id: UUID
    tenant_id: Optional[UUID] = None
    title: str
    description: Optional[str] = None
    cliff: int = 0
    periods: List[SchedulePeriod] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ScheduleCreate(BaseModel):
    title: str = Field(..., min_length=1, description="Schedule title")
    description: Optional[str] = Field(None)
    cliff: int = Field(0, ge=0, description="Cliff in months")
    periods: List[SchedulePeriod] = Field(default_factory=list)


class ScheduleUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None)
    cliff: Optional[int] = Field(None, ge=0)
    periods: Optional[List[SchedulePeriod]] = Field(None)


class GrantRead(BaseModel):
    """Grant read model."""
    id: UUID = Field(..., description="Grant id")
    user_id: UUID = Field(..., description="Grantee")
    plan_id: UUID = Field(..., description="Plan the grant draws from")
    grant_date: Optional[date] = Field(None)
    strike_price: Optional[float] = Field(None)
    granted: float = Field(..., description="Options granted")
    vested: float = Field(0)
    cancelled: float = Field(0)
    status: str = Field(..., description="Lifecycle status")
    comments: Optional[str] = Field(None)
    schedule_id: Optional[UUID] = Field(None, description="Vesting schedule template")
    schedule: Optional[ScheduleRead] = Field(None)
    attachment_key: Optional[str] = Field(None)
    attachment_url: Optional[str] = Field(None, description="Temporary download link of the attachment")
    vests: List[VestRead] = Field(default_factory=list)
    created_at: Optional[datetime] = Field(None, description="Created at")
    updated_at: Optional[datetime] = Field(None, description="Updated at")

    class Config:
        from_attributes = True


class GrantCreate(BaseModel):
    """Create grant payload; grants always start as drafts."""
    user_id: UUID = Field(..., description="Grantee")
    plan_id: UUID = Field(..., description="Plan")
    schedule_id: Optional[UUID] = Field(None, description="Vesting schedule template")
    grant_date: Optional[date] = Field(None)
    strike_price: Optional[float] = Field(None, ge=0)
    granted: float = Field(..., gt=0)
    vests: List[VestCreate] = Field(default_factory=list, description="Vesting schedule")
    attributes: Optional[Dict[str, Any]] = Field(None, description="Sparse attributes to attach")


class GrantUpdate(BaseModel):
    """Update grant payload."""
    schedule_id: Optional[UUID] = Field(None)
    grant_date: Optional[date] = Field(None)
    strike_price: Optional[float] = Field(None, ge=0)
    granted: Optional[float] = Field(None, gt=0)
    comments: Optional[str] = Field(None)
    attributes: Optional[Dict[str, Any]] = Field(None)