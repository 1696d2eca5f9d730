"""
Tests for the tenant context, its transaction and tenant-bound services.
"""

import uuid

import pytest
from sqlalchemy import select

from lifecycle_api.core.capabilities import Caller
from lifecycle_api.core.errors import NotFound, TenantMismatch, TenantNotConfigured
from lifecycle_api.core.tenancy import TenantContext
from lifecycle_api.db.models import Grant, Permission, Plan
from lifecycle_api.repositories.equity import PlanRepository
from lifecycle_api.repositories.query import QueryBuilder
from lifecycle_api.schemas.equity import PlanCreate
from lifecycle_api.schemas.query import QueryOptions
from lifecycle_api.services.grant import GrantService
from lifecycle_api.services.plan import PlanService

from helpers import admin_policy


def test_tenant_filter(session):
    """Tenant tables get a predicate; global tables and unsafe contexts get none."""
    tenant = uuid.uuid4()
    context = TenantContext(session, tenant_id=tenant)
    assert context.tenant_filter(Plan) is not None
    assert context.tenant_filter(Permission) is None
    assert context.unsafe().tenant_filter(Plan) is None


def test_derived_contexts_share_transaction_state(session):
    context = TenantContext(session, tenant_id=uuid.uuid4())
    other = uuid.uuid4()
    derived = context.for_tenant(other)
    assert derived.tenant_id == other
    assert derived._state is context._state
    assert context.unsafe()._state is context._state
    assert context.unsafe().tenant_unsafe is True
    assert derived.tenant_unsafe is False


def test_stamp_fills_missing_tenant(session):
    tenant = uuid.uuid4()
    context = TenantContext(session, tenant_id=tenant)
    assert context.stamp({"name": "x"}, Plan)["tenant_id"] == tenant
    explicit = uuid.uuid4()
    assert context.stamp({"tenant_id": explicit}, Plan)["tenant_id"] == explicit
    assert "tenant_id" not in context.stamp({"code": "a"}, Permission)


async def test_commit_and_rollback_without_transaction_are_noops(session):
    context = TenantContext(session, tenant_id=uuid.uuid4())
    await context.commit()
    await context.rollback()
    assert context.active_transaction is None


async def test_start_transaction_is_idempotent(session):
    context = TenantContext(session, tenant_id=uuid.uuid4())
    first = await context.start_transaction()
    assert await context.start_transaction() is first
    await context.commit()
    assert context.active_transaction is None
    await context.commit()


async def test_atomic_rolls_back_on_error(session, world):
    context = TenantContext(session, tenant_id=world.org_a)
    with pytest.raises(RuntimeError):
        async with context.atomic():
            await PlanRepository(context).create(name="Doomed", size=1)
            raise RuntimeError("boom")
    assert context.active_transaction is None
    names = (await session.execute(select(Plan.name))).scalars().all()
    assert "Doomed" not in names


async def test_nested_atomic_commits_once(session, world):
    context = TenantContext(session, tenant_id=world.org_a)
    async with context.atomic():
        async with context.atomic():
            await PlanRepository(context).create(name="Nested", size=1)
        # The inner block leaves committing to the outer one.
        assert context.active_transaction is not None
    assert context.active_transaction is None
    names = (await session.execute(select(Plan.name))).scalars().all()
    assert "Nested" in names


async def test_service_requires_configured_tenant(session, world):
    caller = Caller(world.admin_a, world.org_a, (admin_policy(),))
    with pytest.raises(TenantNotConfigured):
        PlanService(TenantContext(session), caller)


async def test_service_rejects_foreign_tenant(session, world):
    """A caller from org A cannot address org B, even with every capability."""
    caller = Caller(world.admin_a, world.org_a, (admin_policy(),))
    with pytest.raises(TenantMismatch):
        GrantService(TenantContext(session, tenant_id=world.org_b), caller)
    # An explicitly unsafe context is the only bypass.
    GrantService(TenantContext(session, tenant_unsafe=True), caller)


async def test_queries_never_cross_tenants(session, world):
    context = TenantContext(session, tenant_id=world.org_a)
    result = await QueryBuilder(Grant, context).execute(QueryOptions(filters={"Attributes.region": "EU"}))
    assert [g.id for g in result.rows] == [world.draft]

    everything = await QueryBuilder(Grant, context.unsafe()).execute(QueryOptions(filters={"Attributes.region": "EU"}))
    assert {g.id for g in everything.rows} == {world.draft, world.grant_b}


async def test_lookup_by_id_is_tenant_scoped(session, world, admin_caller):
    service = GrantService(TenantContext(session, tenant_id=world.org_a), admin_caller)
    with pytest.raises(NotFound):
        await service.get_grant_by_id(world.grant_b)


async def test_created_rows_carry_the_context_tenant(session, world, admin_caller):
    plan = await PlanService(TenantContext(session, tenant_id=world.org_a), admin_caller).create_plan(
        PlanCreate(name="Delta", size=10)
    )
    assert plan.tenant_id == world.org_a
    assert plan.status == "draft"
