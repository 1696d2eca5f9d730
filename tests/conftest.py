"""
Shared fixtures: an in-memory SQLite database, two organisations with users,
plans, grants and sparse attributes, and an all-powerful caller.
"""

import uuid
from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from lifecycle_api.core.capabilities import Caller
from lifecycle_api.core.tenancy import TenantContext
from lifecycle_api.db.base import Base
from lifecycle_api.db.models import Attribute, Grant, Organisation, Plan, User, Vest
from lifecycle_api.db.session import make_session_maker
from lifecycle_api.services.attachments import AttachmentPolicy
from lifecycle_api.services.storage import MemoryBinaryStore

from helpers import admin_policy


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine):
    maker = make_session_maker(engine)
    async with maker() as session:
        yield session


def _attribute(tenant_id, entity_id, key, value):
    return Attribute(
        tenant_id=tenant_id, entity_kind="Grant", entity_id=entity_id, key=key, value=value
    )


@pytest.fixture
async def world(session):
    """
    Two organisations.

    Org A: admin and member users (active) plus a pending user; plans Alpha and
    Beta; a draft grant on Beta with three tranches, an approved grant on Alpha
    and a rejected grant on Alpha. Org B: one user, one plan, one approved grant.
    Only ids and plain values are exposed so tests never touch expired rows.
    """
    ids = SimpleNamespace(
        org_a=uuid.uuid4(), org_b=uuid.uuid4(),
        admin_a=uuid.uuid4(), member_a=uuid.uuid4(), pending_a=uuid.uuid4(), user_b=uuid.uuid4(),
        alpha=uuid.uuid4(), beta=uuid.uuid4(), plan_b=uuid.uuid4(),
        draft=uuid.uuid4(), approved=uuid.uuid4(), rejected=uuid.uuid4(), grant_b=uuid.uuid4(),
    )
    session.add_all([
        Organisation(id=ids.org_a, name="Org A"),
        Organisation(id=ids.org_b, name="Org B"),
    ])
    await session.flush()
    session.add_all([
        User(id=ids.admin_a, tenant_id=ids.org_a, email="admin@a.example.com", status="active", is_active=True),
        User(id=ids.member_a, tenant_id=ids.org_a, email="member@a.example.com", status="active", is_active=True),
        User(id=ids.pending_a, tenant_id=ids.org_a, email="pending@a.example.com", status="pending"),
        User(id=ids.user_b, tenant_id=ids.org_b, email="user@b.example.com", status="active", is_active=True),
        Plan(id=ids.alpha, tenant_id=ids.org_a, name="Alpha", size=1000, status="active"),
        Plan(id=ids.beta, tenant_id=ids.org_a, name="Beta", size=500, status="active"),
        Plan(id=ids.plan_b, tenant_id=ids.org_b, name="Gamma", size=100, status="active"),
    ])
    await session.flush()
    session.add_all([
        Grant(id=ids.draft, tenant_id=ids.org_a, user_id=ids.member_a, plan_id=ids.beta,
              granted=300, vested=100, status="draft"),
        Grant(id=ids.approved, tenant_id=ids.org_a, user_id=ids.member_a, plan_id=ids.alpha,
              granted=200, status="approved"),
        Grant(id=ids.rejected, tenant_id=ids.org_a, user_id=ids.admin_a, plan_id=ids.alpha,
              granted=50, status="rejected"),
        Grant(id=ids.grant_b, tenant_id=ids.org_b, user_id=ids.user_b, plan_id=ids.plan_b,
              granted=10, status="approved"),
    ])
    await session.flush()
    session.add_all([
        Vest(tenant_id=ids.org_a, grant_id=ids.draft, vest_date=date(2024, 1, 1), quantity=100, status="vested"),
        Vest(tenant_id=ids.org_a, grant_id=ids.draft, vest_date=date(2025, 1, 1), quantity=100),
        Vest(tenant_id=ids.org_a, grant_id=ids.draft, vest_date=date(2026, 1, 1), quantity=100),
        _attribute(ids.org_a, ids.draft, "region", '"EU"'),
        _attribute(ids.org_a, ids.draft, "score", "3"),
        _attribute(ids.org_a, ids.approved, "region", '"US"'),
        _attribute(ids.org_a, ids.approved, "score", "12"),
        _attribute(ids.org_b, ids.grant_b, "region", '"EU"'),
    ])
    await session.commit()
    return ids


@pytest.fixture
def admin_caller(world):
    return Caller(user_id=world.admin_a, tenant_id=world.org_a, policies=(admin_policy(),))


@pytest.fixture
def context_a(session, world):
    return TenantContext(session, tenant_id=world.org_a)


@pytest.fixture
def store():
    return MemoryBinaryStore()


@pytest.fixture
def attachment_policy():
    return AttachmentPolicy.of(["pdf", "png"], max_mb=1)
