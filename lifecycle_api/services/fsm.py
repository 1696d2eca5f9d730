"""
Transition dispatcher.

Resolves an entity kind, asks the entity which actions its current status
allows, intersects them with the caller's FSM grants and applies one inside a
single transaction together with the attachment upload, the audit row and the
kind's post-transition hook.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import select

from lifecycle_api.core.capabilities import CapabilityRegistry
from lifecycle_api.core.errors import (
    ActionNotPermitted,
    HookFailure,
    InvalidRequest,
    NotFound,
    UnknownEntityKind,
)
from lifecycle_api.core.settings import get_app_settings
from lifecycle_api.db.lifecycle import Transitionable
from lifecycle_api.db.models.records import StateMachine
from lifecycle_api.db.registry import EntityRegistry, get_entity_registry
from lifecycle_api.hooks import HookContext, hooks_for
from lifecycle_api.repositories.query import QueryBuilder, QueryResult
from lifecycle_api.repositories.records import StateMachineRepository, VersionRepository
from lifecycle_api.schemas.fsm import Action
from lifecycle_api.schemas.query import QueryOptions
from lifecycle_api.services.attachments import AttachmentPolicy, Upload, store_attachment
from lifecycle_api.services.storage import BinaryStore, get_binary_store
from lifecycle_api.services.tenant import TenantService

logger = logging.getLogger(__name__)


class FsmService(TenantService):
    """
    Lists and applies lifecycle actions on any transitionable entity kind.

    Permission to trigger an action is always derived from the caller's current
    policies at the time of the call, never from an earlier listing.
    """

    internal_operations = frozenset({"_load", "_permitted_actions"})

    def __init__(
        self,
        context,
        caller,
        *,
        store: Optional[BinaryStore] = None,
        attachment_policy: Optional[AttachmentPolicy] = None,
        bucket: Optional[str] = None,
        registry: Optional[EntityRegistry] = None,
    ) -> None:
        super().__init__(context, caller)
        self._store = store
        self.attachment_policy = attachment_policy or AttachmentPolicy.from_settings()
        self.bucket = bucket or get_app_settings().S3_BUCKET_NAME
        self.registry = registry or get_entity_registry()
        self.machines = StateMachineRepository(context)
        self.versions = VersionRepository(context)

    @property
    def store(self) -> BinaryStore:
        if self._store is None:
            self._store = get_binary_store()
        return self._store

    # PUBLIC_INTERFACE
    async def get_actions(self, kind: str, entity_id: Any) -> List[Action]:
        """
        Actions the caller may trigger on the entity now.

        Legal actions of the current status intersected with the caller's FSM
        grants; a kind's ``get_actions`` hook may then decorate the survivors.
        """
        model = self._resolve(kind)
        entity = await self._load(model, entity_id)
        actions = await self._permitted_actions(entity)

        hooks = hooks_for(model.entity_kind())
        if hooks.get_actions is None:
            return actions
        permitted = {a.event_type for a in actions}
        hook_context = HookContext(model.entity_kind(), entity.id, self.context, self.caller)
        try:
            decorated = await hooks.get_actions(hook_context, entity, actions)
        except Exception as exc:
            logger.exception("get_actions hook for %s failed", model.entity_kind())
            raise HookFailure(model.entity_kind(), "get_actions", exc) from exc
        # Hooks may decorate authorized actions but never add new ones.
        return [a for a in decorated if a.event_type in permitted]

    # PUBLIC_INTERFACE
    async def transition(
        self,
        kind: str,
        entity_id: Any,
        action: str,
        payload: Optional[Dict[str, Any]] = None,
        attachment: Optional[Upload] = None,
    ) -> Any:
        """
        Apply ``action`` to the entity and return the updated entity or the hook's result.

        Raises:
            UnknownEntityKind, NotFound, ActionNotPermitted, IllegalTransition,
            AttachmentRejected, HookFailure. Any failure rolls the whole
            transaction back.
        """
        payload = dict(payload or {})
        async with self.context.atomic():
            model = self._resolve(kind)
            entity_kind = model.entity_kind()
            entity = await self._load(model, entity_id)

            permitted = {a.event_type for a in await self._permitted_actions(entity)}
            if action not in permitted:
                logger.warning(
                    "Action %s on %s %s not permitted for caller %s",
                    action, entity_kind, entity.id, self.caller.user_id,
                )
                raise ActionNotPermitted(entity_kind, action)

            if attachment is not None:
                payload["attachment"] = await store_attachment(
                    self.store,
                    self.bucket,
                    self.attachment_policy,
                    attachment,
                    tenant_id=self.tenant_id,
                    entity_kind=entity_kind,
                    entity_id=entity.id,
                )

            previous = getattr(entity, "status", None)
            result: Any = await entity.apply_transition(action, payload, self.context)
            await self.versions.record(
                entity_kind=entity_kind,
                entity_id=entity.id,
                action=action,
                from_status=previous,
                to_status=getattr(entity, "status", None),
                actor_id=self.caller.user_id,
                attachment_key=(payload.get("attachment") or {}).get("key"),
                payload=jsonable_encoder(payload),
            )

            hook = hooks_for(entity_kind).post_transition.get(action)
            if hook is not None:
                hook_context = HookContext(
                    entity_kind, entity.id, self.context, self.caller, result=result, payload=payload
                )
                try:
                    result = await hook(hook_context)
                except Exception as exc:
                    logger.exception("%s hook for %s %s failed", action, entity_kind, entity.id)
                    raise HookFailure(entity_kind, action, exc) from exc
        return result

    # PUBLIC_INTERFACE
    async def create_machine(self, name: str, key: str, config: Optional[Dict[str, Any]]) -> StateMachine:
        """Store a state machine description for the tenant."""
        if not name or not key or not config:
            raise InvalidRequest("Name, key, and config are required fields")
        async with self.context.atomic():
            machine = await self.machines.create(name=name, key=key, config=config)
            logger.info("Created state machine %s (%s)", machine.id, key)
        return machine

    # PUBLIC_INTERFACE
    async def get_machines(self, options: QueryOptions) -> QueryResult:
        """
        Machines of the tenant plus shared ones (no tenant).

        Raises:
            NotFound: when nothing matches.
        """
        context = self.context
        if not context.tenant_unsafe:
            options = options.merged(filters={"or": [{"tenant_id": self.tenant_id}, {"tenant_id": None}]})
            context = context.unsafe()
        result = await QueryBuilder(StateMachine, context, registry=self.registry).execute(options)
        if result.count == 0:
            raise NotFound("State machines")
        return result

    def _resolve(self, kind: str) -> type:
        model = self.registry.resolve_kind(kind)
        if not issubclass(model, Transitionable):
            raise UnknownEntityKind(kind, f"Entity kind '{kind}' has no lifecycle")
        return model

    async def _load(self, model: type, entity_id: Any) -> Transitionable:
        try:
            key = entity_id if isinstance(entity_id, uuid.UUID) else uuid.UUID(str(entity_id))
        except ValueError:
            raise NotFound(model.entity_kind(), entity_id) from None
        stmt = select(model).where(model.id == key).execution_options(populate_existing=True)
        tenant = self.context.tenant_filter(model)
        if tenant is not None:
            stmt = stmt.where(tenant)
        entity = (await self.session.execute(stmt)).scalar_one_or_none()
        if entity is None:
            raise NotFound(model.entity_kind(), entity_id)
        return entity

    async def _permitted_actions(self, entity: Transitionable) -> List[Action]:
        legal = await entity.list_legal_actions(self.context)
        allowed = CapabilityRegistry(self.caller.policies).allowed_actions(
            entity.entity_kind(), entity.owned_by(self.caller.user_id)
        )
        return [a for a in legal if a.event_type in allowed]
