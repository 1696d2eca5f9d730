from __future__ import annotations

import uuid
from typing import Any, Optional

from sqlalchemy import JSON, ForeignKey, Index, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifecycle_api.db.base import Base, UUIDPkMixin, TimestampMixin, TenantMixin


class Attribute(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """
    Sparse key/value attribute attached to any entity.

    ``value`` holds the JSON encoding of a scalar so numbers, booleans and strings
    keep their type; readers decode it.
    """
    __tablename__ = "attributes"
    __table_args__ = (
        UniqueConstraint("entity_kind", "entity_id", "key", name="uq_attributes_entity_key"),
        Index("ix_attributes_kind_key", "entity_kind", "key"),
    )

    entity_kind: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    key: Mapped[str] = mapped_column(Text, nullable=False)
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class StateMachine(UUIDPkMixin, TimestampMixin, Base):
    """Stored state machine description. Machines without a tenant are shared."""
    __tablename__ = "state_machines"
    __tenant_column__ = "tenant_id"

    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("organisations.id", ondelete="CASCADE"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    key: Mapped[str] = mapped_column(Text, nullable=False)
    config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)


class Version(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Audit record of one applied transition."""
    __tablename__ = "versions"

    entity_kind: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    to_status: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    attachment_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    actor: Mapped[Optional["User"]] = relationship(  # noqa: F821
        "User", lazy="selectin", info={"alias": "Actor"}
    )
