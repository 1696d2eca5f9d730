from __future__ import annotations

import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from lifecycle_api.api.routes.common import serialize, to_page
from lifecycle_api.core.capabilities import Caller
from lifecycle_api.core.deps import get_caller, get_tenant_context, parse_query_options
from lifecycle_api.core.errors import InvalidRequest
from lifecycle_api.core.tenancy import TenantContext
from lifecycle_api.schemas.common import SuccessEnvelope, success
from lifecycle_api.schemas.fsm import StateMachineCreate, StateMachineRead
from lifecycle_api.schemas.query import QueryOptions
from lifecycle_api.services.attachments import read_upload
from lifecycle_api.services.fsm import FsmService
from lifecycle_api.services.version import VersionService

router = APIRouter(prefix="/fsm", tags=["FSM"])


def _parse_data(data: Optional[str]) -> Dict[str, Any]:
    if not data:
        return {}
    try:
        parsed = json.loads(data)
    except ValueError as exc:
        raise InvalidRequest(f"'data' must be a JSON object: {exc}") from exc
    if not isinstance(parsed, dict):
        raise InvalidRequest("'data' must be a JSON object")
    return parsed


# PUBLIC_INTERFACE
@router.post("/machines", response_model=SuccessEnvelope, status_code=201, summary="Create state machine")
async def create_machine(
    payload: StateMachineCreate,
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    machine = await FsmService(context, caller).create_machine(payload.name, payload.key, payload.config)
    return success("State machine created successfully", StateMachineRead.model_validate(machine))


# PUBLIC_INTERFACE
@router.get("/machines", response_model=SuccessEnvelope, summary="List state machines")
async def get_machines(
    options: QueryOptions = Depends(parse_query_options),
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    """State machines of the organisation plus shared ones."""
    result = await FsmService(context, caller).get_machines(options)
    return success("State machines retrieved successfully", to_page(result, options))


# PUBLIC_INTERFACE
@router.get("/versions", response_model=SuccessEnvelope, summary="List transition history")
async def get_versions(
    options: QueryOptions = Depends(parse_query_options),
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    result = await VersionService(context, caller).get_versions(options)
    return success("Versions retrieved successfully", to_page(result, options))


# PUBLIC_INTERFACE
@router.get("/{kind}/{entity_id}/actions", response_model=SuccessEnvelope, summary="List permitted actions")
async def get_actions(
    kind: str,
    entity_id: str,
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    """Actions the caller may trigger on the entity in its current status."""
    actions = await FsmService(context, caller).get_actions(kind, entity_id)
    return success("Actions retrieved successfully", actions)


# PUBLIC_INTERFACE
@router.post("/{kind}/{entity_id}/transition", response_model=SuccessEnvelope, summary="Apply an action")
async def transition(
    kind: str,
    entity_id: str,
    action: str = Form(..., description="Action to apply"),
    data: Optional[str] = Form(None, description="JSON object passed to the entity and hooks"),
    file: Optional[UploadFile] = File(None, description="Optional attachment"),
    context: TenantContext = Depends(get_tenant_context),
    caller: Caller = Depends(get_caller),
):
    """
    Apply ``action`` to the entity.

    Sent as multipart form data so an attachment can accompany the action.
    """
    service = FsmService(context, caller)
    upload = None
    if file is not None and file.filename:
        upload = await read_upload(file, service.attachment_policy)
    result = await service.transition(kind, entity_id, action, _parse_data(data), upload)
    return success(f"{action} applied successfully", serialize(result))
