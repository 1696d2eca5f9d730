"""
Database seeding for a fresh installation.

Seeds:
- A global Admin role holding every registered service capability and, for
  every transitionable entity kind, an FSM grant over all of its actions
- A default organisation
- An active administrator in that organisation

Usage:
  python -m lifecycle_api.db.seed
"""

from __future__ import annotations

import asyncio
import importlib
import logging
import pkgutil
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycle_api.core.capabilities import RESOURCE_ANY
from lifecycle_api.core.security import get_password_hash
from lifecycle_api.core.settings import get_app_settings
from lifecycle_api.core.tenancy import TenantContext
from lifecycle_api.db.lifecycle import Transitionable
from lifecycle_api.db.models.security import Organisation, Role, User
from lifecycle_api.db.registry import get_entity_registry
from lifecycle_api.db.session import get_async_session
from lifecycle_api.repositories.security import SecurityRepository

logger = logging.getLogger(__name__)

ADMIN_ROLE = "Admin"


def registered_capabilities() -> list[str]:
    """Every capability of every guarded service, importing all service modules first."""
    import lifecycle_api.services as services_pkg
    from lifecycle_api.services.secure import SERVICE_REGISTRY

    for module in pkgutil.iter_modules(services_pkg.__path__):
        importlib.import_module(f"{services_pkg.__name__}.{module.name}")
    capabilities = set()
    for service in SERVICE_REGISTRY.values():
        for op in service.operations().values():
            capability = getattr(op, "__capability__", None)
            if capability:
                capabilities.add(capability)
    return sorted(capabilities)


# PUBLIC_INTERFACE
async def seed_security(session: AsyncSession) -> Role:
    """Create or complete the global Admin role; safe to run repeatedly."""
    repo = SecurityRepository(TenantContext(session, tenant_unsafe=True))
    role = (
        await session.execute(
            select(Role)
            .where(Role.name == ADMIN_ROLE, Role.tenant_id.is_(None))
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if role is None:
        role = await repo.create_role(ADMIN_ROLE, "Full access to every operation")
        await session.refresh(role, attribute_names=["permissions", "fsm_grants"])

    held = {p.code for p in role.permissions}
    for code in registered_capabilities():
        if code not in held:
            await repo.add_permission_to_role(role, await repo.ensure_permission(code))

    granted = {g.entity_kind for g in role.fsm_grants}
    registry = get_entity_registry()
    for kind in registry.kinds():
        model = registry.model(kind)
        if kind in granted or not issubclass(model, Transitionable):
            continue
        actions = {t.event_type for transitions in model.__transitions__.values() for t in transitions}
        await repo.add_fsm_grant(role, kind, actions, RESOURCE_ANY)
    return role


async def seed_default_organisation(session: AsyncSession, role: Role) -> Optional[Organisation]:
    settings = get_app_settings()
    existing = (
        await session.execute(select(Organisation).where(Organisation.name == settings.DEFAULT_ORGANISATION_NAME))
    ).scalar_one_or_none()
    if existing is not None:
        return existing

    organisation = Organisation(name=settings.DEFAULT_ORGANISATION_NAME)
    session.add(organisation)
    await session.flush()
    admin = User(
        tenant_id=organisation.id,
        email=settings.DEFAULT_ADMIN_EMAIL,
        hashed_password=get_password_hash(settings.DEFAULT_ADMIN_PASSWORD),
        status="active",
        is_active=True,
    )
    session.add(admin)
    await session.flush()
    await SecurityRepository(TenantContext(session, tenant_unsafe=True)).assign_role_to_user(admin.id, role.id)
    logger.info("Seeded organisation %s with admin %s", organisation.id, admin.email)
    return organisation


# PUBLIC_INTERFACE
async def seed_all() -> None:
    """Seed roles, the default organisation and its administrator."""
    async for session in get_async_session():
        role = await seed_security(session)
        await seed_default_organisation(session, role)
        await session.commit()


# PUBLIC_INTERFACE
def main() -> None:
    """Entrypoint to run the asynchronous seeding."""
    asyncio.run(seed_all())


if __name__ == "__main__":
    main()
