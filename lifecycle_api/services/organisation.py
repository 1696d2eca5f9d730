from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from lifecycle_api.core.capabilities import Caller, Policy, capability_name
from lifecycle_api.db.models.security import Organisation, User
from lifecycle_api.repositories.query import QueryResult
from lifecycle_api.repositories.security import OrganisationRepository
from lifecycle_api.schemas.auth import OrganisationCreate
from lifecycle_api.schemas.query import QueryOptions
from lifecycle_api.services.tenant import TenantService
from lifecycle_api.services.user import UserService

logger = logging.getLogger(__name__)

ADMIN_ROLE = "Admin"


class OrganisationService(TenantService):
    """Organisations (tenants). Listing across tenants needs an unsafe context."""

    def __init__(self, context, caller) -> None:
        super().__init__(context, caller)
        self.organisations = OrganisationRepository(context)

    # PUBLIC_INTERFACE
    async def create_organisation(self, name: str, context: Optional[Dict[str, Any]] = None) -> Organisation:
        async with self.context.atomic():
            organisation = await self.organisations.create(name=name, context=context)
            logger.info("Created organisation %s", organisation.id)
        return organisation

    # PUBLIC_INTERFACE
    async def get_organisations(self, options: QueryOptions) -> QueryResult:
        return await self.organisations.find_all(options)

    # PUBLIC_INTERFACE
    async def update_organisation(self, organisation_id: UUID, values: Dict[str, Any]) -> Organisation:
        allowed = {k: v for k, v in values.items() if k in ("name", "context")}
        async with self.context.atomic():
            organisation = await self.organisations.get_or_raise(organisation_id)
            await self.organisations.update(organisation, allowed)
        return organisation

    # PUBLIC_INTERFACE
    async def delete_organisation(self, organisation_id: UUID) -> None:
        """
        Delete an organisation. Its tenant-scoped rows go with it through the
        foreign key cascade.

        Raises:
            NotFound: when the organisation is missing or outside a scoped context.
        """
        async with self.context.atomic():
            organisation = await self.organisations.get_or_raise(organisation_id)
            await self.organisations.delete(organisation)
            logger.info("Deleted organisation %s", organisation_id)


# Capabilities granted to anonymous sign-up.
PROVISIONING_POLICY = Policy(
    name="provisioning",
    capabilities=frozenset(
        {
            capability_name("OrganisationService", "create_organisation"),
            capability_name("UserService", "create_user"),
        }
    ),
)


# PUBLIC_INTERFACE
async def provision_organisation(context, payload: OrganisationCreate) -> tuple[Organisation, User]:
    """
    Create an organisation and its administrator in one transaction.

    ``context`` must be tenant-unsafe: the organisation does not exist yet when
    the transaction starts. The administrator is created active with the global
    Admin role unless roles are named.
    """
    caller = Caller.system([PROVISIONING_POLICY])
    async with context.atomic():
        organisation = await OrganisationService(context, caller).create_organisation(
            payload.name, payload.context
        )
        admin_payload = payload.admin.model_copy(update={"roles": payload.admin.roles or [ADMIN_ROLE]})
        admin = await UserService(context.for_tenant(organisation.id), caller).create_user(
            admin_payload, status="active"
        )
    return organisation, admin
