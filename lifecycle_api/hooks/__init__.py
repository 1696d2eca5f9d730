"""
Per-kind transition hooks.

Hooks are optional per entity kind. ``get_actions`` may decorate the already
authorized action list; ``post_transition[action]`` runs inside the transition's
transaction and its return value becomes the transition result.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import UUID

from lifecycle_api.core.capabilities import Caller
from lifecycle_api.core.tenancy import TenantContext
from lifecycle_api.schemas.fsm import Action


@dataclass
class HookContext:
    entity_kind: str
    entity_id: UUID
    context: TenantContext
    caller: Caller
    result: Any = None
    payload: Dict[str, Any] = field(default_factory=dict)


GetActionsHook = Callable[[HookContext, Any, List[Action]], Awaitable[List[Action]]]
PostTransitionHook = Callable[[HookContext], Awaitable[Any]]


@dataclass(frozen=True)
class EntityHooks:
    get_actions: Optional[GetActionsHook] = None
    post_transition: Dict[str, PostTransitionHook] = field(default_factory=dict)


NO_HOOKS = EntityHooks()


def _build_registry() -> Dict[str, EntityHooks]:
    from lifecycle_api.hooks import grant, user

    return {
        "Grant": grant.HOOKS,
        "User": user.HOOKS,
    }


HOOK_REGISTRY: Dict[str, EntityHooks] = _build_registry()


# PUBLIC_INTERFACE
def hooks_for(entity_kind: str) -> EntityHooks:
    """Hooks registered for a kind; kinds without hooks get an empty set."""
    return HOOK_REGISTRY.get(entity_kind, NO_HOOKS)
