from __future__ import annotations

import uuid
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifecycle_api.db.base import Base, UUIDPkMixin, TimestampMixin, TenantMixin
from lifecycle_api.db.lifecycle import Transition, Transitionable


class Organisation(UUIDPkMixin, TimestampMixin, Base):
    """A tenant. Rows of every tenant-scoped table point at one organisation."""
    __tablename__ = "organisations"
    __tenant_column__ = "id"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    context: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)


class User(UUIDPkMixin, TenantMixin, TimestampMixin, Transitionable, Base):
    """Application user within an organisation."""
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
    )
    __owner_attribute__ = "id"
    __transitions__ = {
        "pending": (
            Transition("APPROVE", "active", "Approve"),
            Transition("REJECT", "rejected", "Reject"),
        ),
        "active": (
            Transition("SUSPEND", "suspended", "Suspend"),
            Transition("EXIT", "exited", "Exit"),
        ),
        "suspended": (
            Transition("REINSTATE", "active", "Reinstate"),
            Transition("EXIT", "exited", "Exit"),
        ),
    }

    email: Mapped[str] = mapped_column(Text, nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hashed_password: Mapped[Optional[str]] = mapped_column(Text, nullable=True, info={"private": True})
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    roles: Mapped[list["Role"]] = relationship(
        "Role",
        secondary="user_roles",
        lazy="selectin",
    )
    grants: Mapped[list["Grant"]] = relationship(  # noqa: F821
        "Grant", viewonly=True, lazy="raise"
    )

    async def on_transition(self, transition, payload, context) -> None:
        self.is_active = transition.target == "active"


class Role(UUIDPkMixin, TimestampMixin, Base):
    """Role assigned to users; carries one policy. Roles without a tenant are global."""
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_roles_tenant_name"),
    )

    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("organisations.id", ondelete="CASCADE"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    permissions: Mapped[list["Permission"]] = relationship(
        "Permission",
        secondary="role_permissions",
        lazy="selectin",
    )
    fsm_grants: Mapped[list["FsmGrantRecord"]] = relationship(
        "FsmGrantRecord",
        lazy="selectin",
        cascade="all",
    )


class Permission(UUIDPkMixin, TimestampMixin, Base):
    """A capability code ("<ServiceName>:<operation>") attached to roles."""
    __tablename__ = "permissions"

    code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class FsmGrantRecord(UUIDPkMixin, TimestampMixin, Base):
    """Actions a role may trigger on an entity kind."""
    __tablename__ = "fsm_grants"

    role_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )
    entity_kind: Mapped[str] = mapped_column(Text, nullable=False)
    actions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    resource_scope: Mapped[str] = mapped_column(Text, nullable=False, default="*")


class UserRole(UUIDPkMixin, TimestampMixin, Base):
    """Association of users to roles."""
    __tablename__ = "user_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)


class RolePermission(UUIDPkMixin, TimestampMixin, Base):
    """Association of roles to permissions."""
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permissions_role_permission"),
    )

    role_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    permission_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False)
