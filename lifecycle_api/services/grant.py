from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from lifecycle_api.core.errors import NotFound
from lifecycle_api.core.settings import get_app_settings
from lifecycle_api.db.models.equity import Grant
from lifecycle_api.db.models.records import Attribute
from lifecycle_api.repositories.equity import AttributeRepository, GrantRepository, PlanRepository, ScheduleRepository
from lifecycle_api.repositories.query import QueryResult
from lifecycle_api.repositories.security import UserRepository
from lifecycle_api.schemas.equity import GrantCreate, GrantUpdate
from lifecycle_api.schemas.query import QueryOptions
from lifecycle_api.services.attachments import attach_download_urls
from lifecycle_api.services.storage import BinaryStore, get_binary_store
from lifecycle_api.services.tenant import TenantService

logger = logging.getLogger(__name__)

# Fields update_grant may change; status only moves through transitions.
UPDATABLE_FIELDS = ("schedule_id", "grant_date", "strike_price", "granted", "comments")


class GrantService(TenantService):
    """
    Domain service for equity grants.

    Grants are created as drafts and then move through their lifecycle via the
    transition dispatcher; this service covers creation, reads and edits.
    Reads carry a temporary download link for the grant's attachment.
    """

    internal_operations = frozenset({"_load", "_check_schedule", "_with_urls"})

    def __init__(
        self,
        context,
        caller,
        *,
        store: Optional[BinaryStore] = None,
        bucket: Optional[str] = None,
    ) -> None:
        super().__init__(context, caller)
        self._store = store
        self.bucket = bucket or get_app_settings().S3_BUCKET_NAME
        self.grants = GrantRepository(context)
        self.plans = PlanRepository(context)
        self.users = UserRepository(context)
        self.schedules = ScheduleRepository(context)
        self.attributes = AttributeRepository(context)

    @property
    def store(self) -> BinaryStore:
        if self._store is None:
            self._store = get_binary_store()
        return self._store

    # PUBLIC_INTERFACE
    async def create_grant(self, payload: GrantCreate) -> Grant:
        """
        Create a draft grant with its vesting schedule and optional attributes.

        Raises:
            NotFound: when the plan or the grantee does not belong to the tenant,
                or the schedule is neither the tenant's nor shared.
        """
        async with self.context.atomic():
            await self.plans.get_or_raise(payload.plan_id)
            await self.users.get_or_raise(payload.user_id)
            await self._check_schedule(payload.schedule_id)
            grant = await self.grants.create(
                user_id=payload.user_id,
                plan_id=payload.plan_id,
                schedule_id=payload.schedule_id,
                grant_date=payload.grant_date,
                strike_price=payload.strike_price,
                granted=payload.granted,
                status="draft",
            )
            if payload.vests:
                await self.grants.add_vests(grant, [v.model_dump() for v in payload.vests])
            if payload.attributes:
                await self.attributes.upsert("Grant", grant.id, payload.attributes)
            logger.info("Created grant %s for user %s", grant.id, payload.user_id)
        return await self._load(grant.id)

    # PUBLIC_INTERFACE
    async def get_grants(self, options: QueryOptions) -> QueryResult:
        """List grants of the tenant."""
        result = await self.grants.find_all(options)
        await self._with_urls(result.rows)
        return result

    # PUBLIC_INTERFACE
    async def get_grant_by_id(self, grant_id: UUID) -> Grant:
        grant = await self._load(grant_id)
        await self._with_urls([grant])
        return grant

    # PUBLIC_INTERFACE
    async def update_grant(self, grant_id: UUID, payload: GrantUpdate) -> Grant:
        values = payload.model_dump(exclude_unset=True)
        attributes = values.pop("attributes", None)
        async with self.context.atomic():
            grant = await self._load(grant_id)
            if "schedule_id" in values:
                await self._check_schedule(values["schedule_id"])
            await self.grants.update(grant, {k: v for k, v in values.items() if k in UPDATABLE_FIELDS})
            if attributes:
                await self.attributes.upsert("Grant", grant.id, attributes)
        return await self._load(grant_id)

    # PUBLIC_INTERFACE
    async def get_my_grants(self, options: QueryOptions) -> QueryResult:
        """Grants held by the caller, drafts excluded."""
        mine = {"user_id": self.caller.user_id, "status": {"ne": "draft"}}
        result = await self.grants.find_all(options.merged(filters=mine))
        await self._with_urls(result.rows)
        return result

    # PUBLIC_INTERFACE
    async def reject_grant(self, grant_id: UUID, comments: Optional[str] = None) -> Grant:
        """Record rejection comments and cancel every tranche that has not vested."""
        async with self.context.atomic():
            grant = await self._load(grant_id)
            if comments:
                grant.comments = comments
            await grant.cancel_vests(self.context)
            logger.info("Cancelled outstanding vests of grant %s", grant.id)
        return grant

    # PUBLIC_INTERFACE
    async def set_attributes(self, grant_id: UUID, values: Dict[str, Any]) -> List[Attribute]:
        """Upsert sparse attributes on a grant; None values delete keys."""
        async with self.context.atomic():
            await self._load(grant_id)
            return await self.attributes.upsert("Grant", grant_id, values)

    async def _load(self, grant_id: UUID) -> Grant:
        grant = await self.grants.get(grant_id, fresh=True)
        if grant is None:
            raise NotFound("Grant", grant_id)
        return grant

    async def _check_schedule(self, schedule_id: Optional[UUID]) -> None:
        if schedule_id is not None and await self.schedules.get_visible(schedule_id) is None:
            raise NotFound("Schedule", schedule_id)

    async def _with_urls(self, grants: Iterable[Any]) -> None:
        keyed = [g for g in grants if getattr(g, "attachment_key", None)]
        if keyed:
            expires_in = get_app_settings().ATTACHMENT_URL_EXPIRES_SECONDS
            await attach_download_urls(self.store, self.bucket, keyed, expires_in)
