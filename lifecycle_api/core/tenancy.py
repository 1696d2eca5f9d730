"""
Tenant isolation boundary and the transaction carried with it.

A TenantContext travels with every tenant-scoped service call. Storage reads and
writes conjoin ``tenant_filter(model)`` to their predicates; only an explicitly
constructed ``tenant_unsafe`` context skips it.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction
from sqlalchemy.sql.elements import ColumnElement

logger = logging.getLogger(__name__)


@dataclass
class TransactionState:
    """Mutable holder so derived contexts share one transaction."""

    transaction: Optional[AsyncSessionTransaction] = None


@dataclass
class TenantContext:
    session: AsyncSession
    tenant_id: Optional[UUID] = None
    tenant_unsafe: bool = False
    _state: TransactionState = field(default_factory=TransactionState, repr=False)

    @property
    def active_transaction(self) -> Optional[AsyncSessionTransaction]:
        return self._state.transaction

    @property
    def is_configured(self) -> bool:
        return self.tenant_id is not None or self.tenant_unsafe

    # PUBLIC_INTERFACE
    def unsafe(self) -> "TenantContext":
        """
        Derive a context that bypasses the tenant predicate.

        The derived context shares the session and the active transaction.
        """
        return replace(self, tenant_unsafe=True)

    # PUBLIC_INTERFACE
    def for_tenant(self, tenant_id: UUID) -> "TenantContext":
        """Derive a context scoped to another tenant, sharing session and transaction."""
        return replace(self, tenant_id=tenant_id, tenant_unsafe=False)

    # PUBLIC_INTERFACE
    def tenant_filter(self, model: Any) -> Optional[ColumnElement[bool]]:
        """Return the tenant predicate for a mapped class, or None when it does not apply."""
        if self.tenant_unsafe:
            return None
        column_name = getattr(model, "__tenant_column__", None)
        if column_name is None:
            return None
        return getattr(model, column_name) == self.tenant_id

    def stamp(self, values: dict[str, Any], model: Any) -> dict[str, Any]:
        """Fill the tenant column of new rows when the caller did not provide one."""
        column_name = getattr(model, "__tenant_column__", None)
        if column_name and column_name != "id" and values.get(column_name) is None:
            values[column_name] = self.tenant_id
        return values

    async def start_transaction(self) -> AsyncSessionTransaction:
        """Begin a transaction; a no-op returning the current one if already active."""
        if self._state.transaction is not None:
            return self._state.transaction
        current = self.session.get_transaction()
        if current is not None:
            self._state.transaction = current
        else:
            self._state.transaction = await self.session.begin()
        return self._state.transaction

    async def commit(self) -> None:
        """Commit the active transaction; no-op without one."""
        transaction = self._state.transaction
        self._state.transaction = None
        if transaction is not None and transaction.is_active:
            await transaction.commit()

    async def rollback(self) -> None:
        """Roll back the active transaction; no-op without one."""
        transaction = self._state.transaction
        self._state.transaction = None
        if transaction is not None and transaction.is_active:
            await transaction.rollback()

    # PUBLIC_INTERFACE
    @asynccontextmanager
    async def atomic(self) -> AsyncIterator["TenantContext"]:
        """
        Run a block inside one transaction.

        Opens a transaction when none is active and commits it on success. Any
        exception rolls the transaction back and propagates. Nested blocks join
        the outer transaction and leave committing to it.
        """
        owner = self._state.transaction is None
        await self.start_transaction()
        try:
            yield self
        except BaseException:
            logger.debug("Rolling back transaction after failure")
            await self.rollback()
            raise
        if owner:
            await self.commit()
