from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class IDModel(BaseModel):
    """Base schema exposing a UUID primary key."""
    id: UUID = Field(..., description="Unique identifier")


class Timestamps(BaseModel):
    """Common created/updated timestamp fields."""
    created_at: Optional[datetime] = Field(None, description="Creation timestamp (UTC)")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp (UTC)")


class MessageResponse(BaseModel):
    """Standard message response."""
    message: str = Field(..., description="Human readable message")
    details: Optional[dict] = Field(default=None, description="Optional extra data")


# PUBLIC_INTERFACE
class SuccessEnvelope(BaseModel):
    """Envelope wrapping every successful API response."""
    status: str = Field("success", description="Always 'success'")
    message: str = Field(..., description="Human readable message")
    data: Any = Field(default=None, description="Response payload")


# PUBLIC_INTERFACE
class ErrorEnvelope(BaseModel):
    """Envelope returned by exception handlers."""
    status: str = Field("error", description="Always 'error'")
    message: str = Field(..., description="Human readable message")
    errors: List[Any] = Field(default_factory=list, description="Individual error messages or validation issues")
    correlation_id: Optional[str] = Field(default=None, description="Request correlation ID")


# PUBLIC_INTERFACE
def success(message: str, data: Any = None) -> dict:
    """Build a success envelope as a plain dict, ready for JSON encoding."""
    return SuccessEnvelope(message=message, data=data).model_dump(mode="json")
