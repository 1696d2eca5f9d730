from __future__ import annotations

import logging
from typing import Any, List
from urllib.parse import urlencode

from lifecycle_api.core.settings import get_app_settings
from lifecycle_api.hooks import EntityHooks, HookContext
from lifecycle_api.schemas.fsm import Action
from lifecycle_api.services.grant import GrantService

logger = logging.getLogger(__name__)


async def get_actions(ctx: HookContext, grant: Any, actions: List[Action]) -> List[Action]:
    """Attach the signing URL the grantee follows to accept."""
    base_url = get_app_settings().SIGNING_BASE_URL
    if not base_url:
        return actions
    decorated = []
    for action in actions:
        if action.event_type == "ACCEPT":
            query = urlencode({"grant": str(grant.id), "tenant": str(grant.tenant_id)})
            action = action.model_copy(update={"metadata": {**action.metadata, "sign_url": f"{base_url}?{query}"}})
        decorated.append(action)
    return decorated


async def approve(ctx: HookContext):
    """Return the approved grant with its plan, grantee and vests loaded."""
    return await GrantService(ctx.context, ctx.caller).get_grant_by_id(ctx.entity_id)


async def reject(ctx: HookContext):
    await GrantService(ctx.context, ctx.caller).reject_grant(ctx.entity_id, ctx.payload.get("comments"))
    logger.info("Grant %s rejected", ctx.entity_id)
    return {"message": "Grant rejected"}


HOOKS = EntityHooks(
    get_actions=get_actions,
    post_transition={
        "APPROVE": approve,
        "REJECT": reject,
    },
)
