from __future__ import annotations

import logging
from typing import List, Optional
from uuid import UUID

from lifecycle_api.core.errors import InvalidRequest, NotFound
from lifecycle_api.core.security import get_password_hash
from lifecycle_api.db.models.security import Role, User
from lifecycle_api.repositories.query import QueryResult
from lifecycle_api.repositories.security import SecurityRepository, UserRepository
from lifecycle_api.schemas.auth import UserCreate, UserUpdate
from lifecycle_api.schemas.query import QueryOptions
from lifecycle_api.services.role import HIDDEN_ROLES
from lifecycle_api.services.tenant import TenantService

logger = logging.getLogger(__name__)


class UserService(TenantService):
    """Users of the tenant and their role assignments."""

    internal_operations = frozenset({"get_roles", "_load"})

    def __init__(self, context, caller) -> None:
        super().__init__(context, caller)
        self.users = UserRepository(context)
        self.security = SecurityRepository(context)

    # PUBLIC_INTERFACE
    async def get_user_by_id(self, user_id: UUID) -> User:
        return await self._load(user_id)

    # PUBLIC_INTERFACE
    async def get_users(self, page: int = 1, limit: int = 20) -> QueryResult:
        """Page through users, newest first."""
        options = QueryOptions(page=page, limit=limit, sort=[{"field": "created_at", "order": "DESC"}])
        return await self.users.find_all(options)

    # PUBLIC_INTERFACE
    async def create_user(self, payload: UserCreate, *, status: str = "pending") -> User:
        """
        Create a user holding the named roles.

        Raises:
            InvalidRequest: when no role, or an unknown role, is named.
        """
        async with self.context.atomic():
            roles = await self.get_roles(payload.roles)
            user = await self.users.create(
                email=payload.email,
                first_name=payload.first_name,
                last_name=payload.last_name,
                hashed_password=get_password_hash(payload.password) if payload.password else None,
                status=status,
                is_active=status == "active",
            )
            await self.security.set_user_roles(user.id, roles)
            logger.info("Created user %s with roles %s", user.id, [r.name for r in roles])
        return await self._load(user.id)

    # PUBLIC_INTERFACE
    async def update_user(self, user_id: UUID, payload: UserUpdate) -> User:
        values = payload.model_dump(exclude_unset=True)
        role_names = values.pop("roles", None)
        password = values.pop("password", None)
        async with self.context.atomic():
            user = await self._load(user_id)
            if password:
                values["hashed_password"] = get_password_hash(password)
            await self.users.update(user, values)
            if role_names is not None:
                await self.security.set_user_roles(user.id, await self.get_roles(role_names))
        return await self._load(user_id)

    # PUBLIC_INTERFACE
    async def delete_user(self, user_id: UUID) -> None:
        async with self.context.atomic():
            user = await self._load(user_id)
            await self.users.delete(user)
            logger.info("Deleted user %s", user_id)

    async def get_roles(self, names: Optional[List[str]]) -> List[Role]:
        """Resolve role names visible to the tenant; every name must exist."""
        if not names:
            raise InvalidRequest("At least one role is required")
        roles = [r for r in await self.security.get_roles_by_names(names) if r.name not in HIDDEN_ROLES]
        missing = set(names) - {r.name for r in roles}
        if missing:
            raise InvalidRequest(f"Unknown roles: {', '.join(sorted(missing))}")
        return roles

    async def _load(self, user_id: UUID) -> User:
        user = await self.users.get(user_id, fresh=True)
        if user is None:
            raise NotFound("User", user_id)
        return user
