from __future__ import annotations

import logging

from lifecycle_api.hooks import EntityHooks, HookContext
from lifecycle_api.services.user import UserService

logger = logging.getLogger(__name__)


async def approve(ctx: HookContext):
    user = await UserService(ctx.context, ctx.caller).get_user_by_id(ctx.entity_id)
    if ctx.payload.get("notify"):
        # Delivery is handled by the mail integration; only the intent is recorded here.
        logger.info("Welcome notification requested for %s", user.email)
    return user


HOOKS = EntityHooks(post_transition={"APPROVE": approve})
