from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class Action(BaseModel):
    """An action an entity's lifecycle currently offers."""
    event_type: str = Field(..., description="Action name used to trigger the transition")
    label: str = Field(..., description="Human readable label")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Extra data attached by hooks")


class TransitionRequest(BaseModel):
    """JSON body accepted by the transition endpoint when no file is uploaded."""
    action: str = Field(..., description="Action to apply")
    data: Dict[str, Any] = Field(default_factory=dict, description="Payload passed to the entity")


class StateMachineCreate(BaseModel):
    """Create state machine payload."""
    name: str = Field("", description="Display name")
    key: str = Field("", description="Entity kind this machine describes")
    config: Optional[Dict[str, Any]] = Field(None, description="States and transitions")


class StateMachineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    key: str
    config: Dict[str, Any]
    tenant_id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class VersionRead(BaseModel):
    """One recorded transition."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    entity_kind: str
    entity_id: UUID
    action: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    actor_id: Optional[UUID] = None
    attachment_key: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
