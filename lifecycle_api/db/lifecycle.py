"""
Entity lifecycle contract.

Each transitionable model declares its own status table: for every status, the
transitions that are legal from it. The dispatcher only asks for that list and
asks the entity to apply one; it never knows the rules itself.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Dict, Mapping, Optional, Sequence
from uuid import UUID

from lifecycle_api.core.errors import IllegalTransition
from lifecycle_api.schemas.fsm import Action

if TYPE_CHECKING:
    from lifecycle_api.core.tenancy import TenantContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    event_type: str
    target: str
    label: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_action(self) -> Action:
        label = self.label or self.event_type.replace("_", " ").title()
        return Action(event_type=self.event_type, label=label, metadata=dict(self.metadata))


class Transitionable:
    """Mixin for models whose ``status`` column follows a declared lifecycle."""

    __transitions__: ClassVar[Mapping[str, Sequence[Transition]]] = {}
    # Attribute naming the user that owns the record, for "own"-scoped grants.
    __owner_attribute__: ClassVar[Optional[str]] = "user_id"

    @classmethod
    def entity_kind(cls) -> str:
        return cls.__name__

    def owned_by(self, user_id: Optional[UUID]) -> bool:
        if user_id is None or self.__owner_attribute__ is None:
            return False
        return getattr(self, self.__owner_attribute__, None) == user_id

    def _transitions_from_current(self) -> Sequence[Transition]:
        return self.__transitions__.get(getattr(self, "status", None), ())

    async def list_legal_actions(self, context: "TenantContext") -> list[Action]:
        """Actions legal from the current status, regardless of who is asking."""
        return [t.to_action() for t in self._transitions_from_current()]

    async def apply_transition(
        self, action: str, payload: Dict[str, Any], context: "TenantContext"
    ) -> "Transitionable":
        """
        Move to the status the action leads to.

        Raises:
            IllegalTransition: when the action is not legal from the current status.
        """
        transition = next(
            (t for t in self._transitions_from_current() if t.event_type == action), None
        )
        if transition is None:
            raise IllegalTransition(self.entity_kind(), action, getattr(self, "status", None))

        await self.on_transition(transition, payload, context)
        previous = getattr(self, "status", None)
        setattr(self, "status", transition.target)
        await context.session.flush()
        logger.info(
            "%s %s: %s -> %s via %s",
            self.entity_kind(), getattr(self, "id", None), previous, transition.target, action,
        )
        return self

    async def on_transition(
        self, transition: Transition, payload: Dict[str, Any], context: "TenantContext"
    ) -> None:
        """Entity-specific field updates applied before the status changes."""
        return None
