"""
Policy and caller factories shared by the test modules.
"""

from lifecycle_api.core.capabilities import FsmGrant, Policy, capability_name
from lifecycle_api.db.lifecycle import Transitionable
from lifecycle_api.db.registry import get_entity_registry
from lifecycle_api.db.seed import registered_capabilities


def transitionable_kinds():
    registry = get_entity_registry()
    return [k for k in registry.kinds() if issubclass(registry.model(k), Transitionable)]


def all_actions(kind):
    model = get_entity_registry().model(kind)
    return {t.event_type for transitions in model.__transitions__.values() for t in transitions}


def admin_policy() -> Policy:
    """Every registered capability and every action on every lifecycle kind."""
    grants = [FsmGrant(kind, frozenset(all_actions(kind))) for kind in transitionable_kinds()]
    return Policy("Admin", capabilities=frozenset(registered_capabilities()), fsm_grants=tuple(grants))


def policy(*capabilities, grants=()) -> Policy:
    """Policy from (service, operation) pairs or full capability strings."""
    names = {c if isinstance(c, str) else capability_name(*c) for c in capabilities}
    return Policy("test", capabilities=frozenset(names), fsm_grants=tuple(grants))
