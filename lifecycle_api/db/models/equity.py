from __future__ import annotations

import uuid
from datetime import date
from typing import Any, Optional

from sqlalchemy import JSON, Date, Float, ForeignKey, Integer, Text, Uuid, func, select, update
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifecycle_api.db.base import Base, UUIDPkMixin, TimestampMixin, TenantMixin
from lifecycle_api.db.lifecycle import Transition, Transitionable


class Plan(UUIDPkMixin, TenantMixin, TimestampMixin, Transitionable, Base):
    """Equity plan (pool of shares) grants are drawn from."""
    __tablename__ = "plans"
    __owner_attribute__ = None
    __transitions__ = {
        "draft": (Transition("ACTIVATE", "active", "Activate"),),
        "active": (Transition("CLOSE", "closed", "Close"),),
    }

    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    size: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    type: Mapped[str] = mapped_column(Text, nullable=False, default="ESOP")
    status: Mapped[str] = mapped_column(Text, nullable=False, default="draft")

    grants: Mapped[list["Grant"]] = relationship("Grant", viewonly=True, lazy="raise")


class Grant(UUIDPkMixin, TenantMixin, TimestampMixin, Transitionable, Base):
    """Grant of options from a plan to a user."""
    __tablename__ = "grants"
    __transitions__ = {
        "draft": (
            Transition("APPROVE", "approved", "Approve"),
            Transition("REJECT", "rejected", "Reject"),
        ),
        "approved": (
            Transition("ACCEPT", "accepted", "Accept"),
            Transition("CANCEL", "cancelled", "Cancel"),
        ),
        "accepted": (Transition("CANCEL", "cancelled", "Cancel"),),
    }

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    plan_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("plans.id", ondelete="CASCADE"), nullable=False)
    grant_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    strike_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    granted: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    vested: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    cancelled: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="draft")
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    schedule_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("schedules.id", ondelete="SET NULL"), nullable=True
    )
    attachment_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Presigned download URL of the attachment, filled on reads; not persisted.
    attachment_url = None

    user: Mapped["User"] = relationship("User", lazy="selectin")  # noqa: F821
    plan: Mapped["Plan"] = relationship("Plan", lazy="selectin")
    schedule: Mapped[Optional["Schedule"]] = relationship("Schedule", lazy="selectin")
    vests: Mapped[list["Vest"]] = relationship(
        "Vest", lazy="selectin", order_by="Vest.vest_date", cascade="all"
    )

    async def on_transition(self, transition, payload, context) -> None:
        attachment = payload.get("attachment")
        if attachment:
            self.attachment_key = attachment["key"]
        if payload.get("comments"):
            self.comments = payload["comments"]

    async def refresh_numbers(self, context) -> None:
        """Recompute vested/cancelled totals from the vesting schedule."""
        result = await context.session.execute(
            select(Vest.status, func.coalesce(func.sum(Vest.quantity), 0.0))
            .where(Vest.grant_id == self.id)
            .group_by(Vest.status)
        )
        totals = {status: float(total) for status, total in result.all()}
        self.vested = totals.get("vested", 0.0)
        self.cancelled = totals.get("cancelled", 0.0)
        await context.session.flush()

    async def cancel_vests(self, context) -> None:
        """Cancel every tranche that has not vested yet."""
        await context.session.execute(
            update(Vest)
            .where(Vest.grant_id == self.id, Vest.status != "vested")
            .values(status="cancelled")
            .execution_options(synchronize_session="fetch")
        )
        await self.refresh_numbers(context)


class Vest(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """One tranche of a grant's vesting schedule."""
    __tablename__ = "vests"

    grant_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("grants.id", ondelete="CASCADE"), nullable=False)
    vest_date: Mapped[date] = mapped_column(Date, nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="scheduled")

    grant: Mapped["Grant"] = relationship("Grant", viewonly=True, lazy="raise")


class Schedule(UUIDPkMixin, TimestampMixin, Base):
    """
    Vesting schedule template grants can refer to.

    ``cliff`` is in months. ``periods`` lists ``{period, percentage, frequency}``
    steps. Schedules without a tenant are shared by every organisation.
    """
    __tablename__ = "schedules"
    __tenant_column__ = "tenant_id"

    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("organisations.id", ondelete="CASCADE"), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cliff: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    periods: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
