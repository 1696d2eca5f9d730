from __future__ import annotations

from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import delete, or_, select

from lifecycle_api.core.capabilities import FsmGrant, Policy
from lifecycle_api.db.models.security import (
    FsmGrantRecord,
    Organisation,
    Permission,
    Role,
    RolePermission,
    User,
    UserRole,
)
from .base import BaseRepository


class OrganisationRepository(BaseRepository[Organisation]):
    model = Organisation


class UserRepository(BaseRepository[User]):
    """Users of the current tenant."""

    model = User

    async def get_user_by_email(self, email: str) -> Optional[User]:
        stmt = self.scoped().where(User.email == email)
        return await self.scalar_one_or_none(stmt)

    async def list_users(self, limit: int = 100, offset: int = 0) -> List[User]:
        stmt = self.scoped().order_by(User.created_at.desc(), User.email).offset(offset).limit(limit)
        result = await self.scalars(stmt)
        return list(result)


class SecurityRepository(BaseRepository[Role]):
    """Roles, permissions and the policies derived from them."""

    model = Role

    def _visible_roles(self):
        # Global roles (tenant_id IS NULL) are visible to every tenant.
        stmt = select(Role)
        if not self.context.tenant_unsafe:
            stmt = stmt.where(or_(Role.tenant_id == self.context.tenant_id, Role.tenant_id.is_(None)))
        return stmt

    async def list_roles(self) -> List[Role]:
        res = await self.scalars(self._visible_roles().order_by(Role.name))
        return list(res)

    async def get_roles_by_names(self, names: Iterable[str]) -> List[Role]:
        names = list(names)
        if not names:
            return []
        res = await self.scalars(self._visible_roles().where(Role.name.in_(names)))
        return list(res)

    async def get_role_by_name(self, name: str) -> Optional[Role]:
        roles = await self.get_roles_by_names([name])
        return roles[0] if roles else None

    async def list_roles_for_user(self, user_id: UUID) -> List[Role]:
        stmt = (
            select(Role)
            .join(UserRole, Role.id == UserRole.role_id)
            .where(UserRole.user_id == user_id)
            .order_by(Role.name)
            .execution_options(populate_existing=True)
        )
        result = await self.scalars(stmt)
        return list(result)

    async def create_role(
        self,
        name: str,
        description: Optional[str] = None,
        *,
        tenant_id: Optional[UUID] = None,
    ) -> Role:
        role = Role(name=name, description=description, tenant_id=tenant_id)
        self.session.add(role)
        await self.session.flush()
        return role

    # Permissions
    async def ensure_permission(self, code: str, description: Optional[str] = None) -> Permission:
        stmt = select(Permission).where(Permission.code == code)
        perm = await self.scalar_one_or_none(stmt)
        if perm:
            return perm
        perm = Permission(code=code, description=description or code)
        self.session.add(perm)
        await self.session.flush()
        return perm

    async def add_permission_to_role(self, role: Role, permission: Permission) -> None:
        self.session.add(RolePermission(role_id=role.id, permission_id=permission.id))
        await self.session.flush()

    async def add_fsm_grant(
        self, role: Role, entity_kind: str, actions: Iterable[str], resource_scope: str = "*"
    ) -> FsmGrantRecord:
        record = FsmGrantRecord(
            role_id=role.id,
            entity_kind=entity_kind,
            actions=sorted(set(actions)),
            resource_scope=resource_scope,
        )
        self.session.add(record)
        await self.session.flush()
        return record

    # Associations
    async def set_user_roles(self, user_id: UUID, roles: Iterable[Role]) -> None:
        await self.execute(delete(UserRole).where(UserRole.user_id == user_id))
        self.session.add_all([UserRole(user_id=user_id, role_id=role.id) for role in roles])
        await self.session.flush()

    async def assign_role_to_user(self, user_id: UUID, role_id: UUID) -> None:
        self.session.add(UserRole(user_id=user_id, role_id=role_id))
        await self.session.flush()

    async def load_policies(self, user_id: UUID) -> tuple[Policy, ...]:
        """One Policy per role held by the user."""
        roles = await self.list_roles_for_user(user_id)
        return tuple(policy_from_role(role) for role in roles)


def policy_from_role(role: Role) -> Policy:
    return Policy(
        name=role.name,
        capabilities=frozenset(p.code for p in role.permissions),
        fsm_grants=tuple(
            FsmGrant(g.entity_kind, frozenset(g.actions or ()), g.resource_scope)
            for g in role.fsm_grants
        ),
    )
