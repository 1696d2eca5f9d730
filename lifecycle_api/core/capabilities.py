"""
Capability registry.

A capability is the string "<ServiceName>:<operation_name>". Callers hold one
Policy per role; a capability or an FSM action is granted when any policy grants
it. Capabilities are compared by exact set membership, never by prefix.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional
from uuid import UUID

from lifecycle_api.core.errors import PermissionDenied

logger = logging.getLogger(__name__)

RESOURCE_ANY = "*"
RESOURCE_OWN = "own"


# PUBLIC_INTERFACE
def capability_name(service_name: str, operation: str) -> str:
    """Build the capability string for a service operation."""
    return f"{service_name}:{operation}"


@dataclass(frozen=True)
class FsmGrant:
    """Actions a policy allows on one entity kind, for any resource or owned ones only."""

    entity_kind: str
    actions: frozenset[str]
    resource_scope: str = RESOURCE_ANY

    def __post_init__(self) -> None:
        if self.resource_scope not in (RESOURCE_ANY, RESOURCE_OWN):
            raise ValueError(f"Unsupported resource scope: {self.resource_scope!r}")
        object.__setattr__(self, "actions", frozenset(self.actions))

    def applies_to(self, entity_kind: str, owns_resource: bool) -> bool:
        if self.entity_kind.lower() != entity_kind.lower():
            return False
        return self.resource_scope == RESOURCE_ANY or owns_resource


@dataclass(frozen=True)
class Policy:
    """Capabilities plus FSM grants carried by one role."""

    name: str
    capabilities: frozenset[str] = field(default_factory=frozenset)
    fsm_grants: tuple[FsmGrant, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "capabilities", frozenset(self.capabilities))
        object.__setattr__(self, "fsm_grants", tuple(self.fsm_grants))


@dataclass(frozen=True)
class Caller:
    """The authenticated principal of a request and the policies it holds."""

    user_id: Optional[UUID]
    tenant_id: Optional[UUID]
    policies: tuple[Policy, ...] = ()

    @classmethod
    def system(cls, policies: Iterable[Policy] = ()) -> "Caller":
        """A trusted caller without a tenant membership (seeding, provisioning)."""
        return cls(user_id=None, tenant_id=None, policies=tuple(policies))


class CapabilityRegistry:
    """Lookup view over the union of a caller's policies."""

    def __init__(self, policies: Iterable[Policy]) -> None:
        self._policies = tuple(policies)
        self._capabilities = frozenset().union(*(p.capabilities for p in self._policies))

    def has(self, capability: str) -> bool:
        return capability in self._capabilities

    def capabilities(self) -> frozenset[str]:
        return self._capabilities

    def allowed_actions(self, entity_kind: str, owns_resource: bool) -> set[str]:
        """Union of FSM grant actions matching the kind (case-insensitive) and scope."""
        allowed: set[str] = set()
        for policy in self._policies:
            for grant in policy.fsm_grants:
                if grant.applies_to(entity_kind, owns_resource):
                    allowed.update(grant.actions)
        return allowed


# PUBLIC_INTERFACE
def check_capability(policies: Iterable[Policy], capability: str) -> None:
    """
    Ensure at least one policy grants the capability.

    Raises:
        PermissionDenied: carrying the missing capability name.
    """
    if not CapabilityRegistry(policies).has(capability):
        logger.warning("Capability denied: %s", capability)
        raise PermissionDenied(capability)
