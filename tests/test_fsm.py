"""
Tests for the transition dispatcher: permitted actions, transitions, attachments,
hooks, the audit trail and stored state machines.
"""

import io
import uuid

import pytest
from botocore.exceptions import ClientError
from fastapi import UploadFile
from sqlalchemy import func, select

from lifecycle_api.core.capabilities import Caller, FsmGrant
from lifecycle_api.core.errors import (
    ActionNotPermitted,
    AttachmentRejected,
    HookFailure,
    IllegalTransition,
    InvalidRequest,
    NotFound,
    PermissionDenied,
    UnknownEntityKind,
)
from lifecycle_api.core.settings import get_app_settings
from lifecycle_api.core.tenancy import TenantContext
from lifecycle_api.db.models import Grant, StateMachine, User, Version
from lifecycle_api.hooks import HOOK_REGISTRY, EntityHooks
from lifecycle_api.schemas.fsm import Action
from lifecycle_api.schemas.query import QueryOptions
from lifecycle_api.services.attachments import AttachmentPolicy, Upload, read_upload
from lifecycle_api.services.fsm import FsmService
from lifecycle_api.services.storage import MemoryBinaryStore, S3BinaryStore
from lifecycle_api.services.version import VersionService

from helpers import policy

FSM_CAPABILITIES = [("FsmService", "get_actions"), ("FsmService", "transition")]


@pytest.fixture
def fsm(session, world, store, attachment_policy):
    """Build an FsmService for org A around a caller."""

    def build(caller):
        return FsmService(
            TenantContext(session, tenant_id=world.org_a),
            caller,
            store=store,
            attachment_policy=attachment_policy,
            bucket="test-bucket",
        )

    return build


@pytest.fixture
def admin_fsm(fsm, admin_caller):
    return fsm(admin_caller)


@pytest.fixture
def signing_url(monkeypatch):
    monkeypatch.setenv("SIGNING_BASE_URL", "https://sign.example.com/start")
    get_app_settings.cache_clear()
    yield "https://sign.example.com/start"
    monkeypatch.delenv("SIGNING_BASE_URL")
    get_app_settings.cache_clear()


async def reload(session, model, entity_id):
    stmt = select(model).where(model.id == entity_id).execution_options(populate_existing=True)
    return (await session.execute(stmt)).scalar_one()


async def version_count(session):
    return (await session.execute(select(func.count()).select_from(Version))).scalar_one()


def event_types(actions):
    return [a.event_type for a in actions]


# -- listing ------------------------------------------------------------------

async def test_get_actions_lists_legal_actions(admin_fsm, session, world):
    assert event_types(await admin_fsm.get_actions("grant", world.draft)) == ["APPROVE", "REJECT"]
    assert event_types(await admin_fsm.get_actions("Grant", world.approved)) == ["ACCEPT", "CANCEL"]
    assert await admin_fsm.get_actions("Grant", world.rejected) == []


async def test_get_actions_is_idempotent(admin_fsm, session, world):
    first = await admin_fsm.get_actions("Grant", world.draft)
    second = await admin_fsm.get_actions("Grant", world.draft)
    assert first == second
    assert (await reload(session, Grant, world.draft)).status == "draft"
    assert await version_count(session) == 0


async def test_get_actions_intersects_with_fsm_grants(fsm, world):
    caller = Caller(
        world.admin_a, world.org_a,
        (policy(*FSM_CAPABILITIES, grants=[FsmGrant("Grant", {"APPROVE", "ACCEPT"})]),),
    )
    assert event_types(await fsm(caller).get_actions("Grant", world.draft)) == ["APPROVE"]


async def test_get_actions_requires_capability(fsm, world):
    caller = Caller(world.admin_a, world.org_a, (policy(grants=[FsmGrant("Grant", {"APPROVE"})]),))
    with pytest.raises(PermissionDenied):
        await fsm(caller).get_actions("Grant", world.draft)


async def test_unknown_kinds_and_missing_entities(admin_fsm, world):
    with pytest.raises(UnknownEntityKind):
        await admin_fsm.get_actions("widget", world.draft)
    with pytest.raises(UnknownEntityKind):
        await admin_fsm.get_actions("attribute", world.draft)
    with pytest.raises(NotFound):
        await admin_fsm.get_actions("Grant", uuid.uuid4())
    with pytest.raises(NotFound):
        await admin_fsm.get_actions("Grant", "not-a-uuid")
    with pytest.raises(NotFound):
        await admin_fsm.get_actions("Grant", world.grant_b)


async def test_own_scope_on_users(fsm, world):
    """A user may approve only itself under an "own" grant."""
    own = policy(*FSM_CAPABILITIES, grants=[FsmGrant("User", {"APPROVE"}, "own")])

    other = fsm(Caller(world.admin_a, world.org_a, (own,)))
    assert await other.get_actions("User", world.pending_a) == []
    with pytest.raises(ActionNotPermitted):
        await other.transition("User", world.pending_a, "APPROVE")

    itself = fsm(Caller(world.pending_a, world.org_a, (own,)))
    assert event_types(await itself.get_actions("User", world.pending_a)) == ["APPROVE"]


async def test_get_actions_hook_decorates_accept(admin_fsm, world, signing_url):
    actions = await admin_fsm.get_actions("Grant", world.approved)
    accept = next(a for a in actions if a.event_type == "ACCEPT")
    assert accept.metadata["sign_url"].startswith(signing_url + "?")
    assert f"grant={world.approved}" in accept.metadata["sign_url"]
    cancel = next(a for a in actions if a.event_type == "CANCEL")
    assert "sign_url" not in cancel.metadata


async def test_get_actions_hook_cannot_add_actions(admin_fsm, world, monkeypatch):
    async def generous(ctx, entity, actions):
        return actions + [Action(event_type="CANCEL", label="Cancel")]

    monkeypatch.setitem(HOOK_REGISTRY, "Grant", EntityHooks(get_actions=generous))
    assert event_types(await admin_fsm.get_actions("Grant", world.draft)) == ["APPROVE", "REJECT"]


async def test_get_actions_hook_failure(admin_fsm, world, monkeypatch):
    async def broken(ctx, entity, actions):
        raise KeyError("metadata")

    monkeypatch.setitem(HOOK_REGISTRY, "Grant", EntityHooks(get_actions=broken))
    with pytest.raises(HookFailure) as exc_info:
        await admin_fsm.get_actions("Grant", world.draft)
    assert exc_info.value.stage == "get_actions"
    assert isinstance(exc_info.value.__cause__, KeyError)


# -- transitions --------------------------------------------------------------

async def test_approve_grant(admin_fsm, session, world):
    result = await admin_fsm.transition("Grant", world.draft, "APPROVE", {"note": "ok"})
    assert isinstance(result, Grant)
    assert result.status == "approved"
    assert result.plan.name == "Beta"

    version = (await session.execute(select(Version))).scalar_one()
    assert version.entity_kind == "Grant"
    assert version.entity_id == world.draft
    assert (version.from_status, version.to_status) == ("draft", "approved")
    assert version.actor_id == world.admin_a
    assert version.payload == {"note": "ok"}


async def test_reject_grant_cancels_unvested_tranches(admin_fsm, session, world):
    result = await admin_fsm.transition("Grant", world.draft, "REJECT", {"comments": "over budget"})
    assert result == {"message": "Grant rejected"}

    grant = await reload(session, Grant, world.draft)
    assert grant.status == "rejected"
    assert grant.comments == "over budget"
    assert sorted(v.status for v in grant.vests) == ["cancelled", "cancelled", "vested"]
    assert grant.vested == 100
    assert grant.cancelled == 200


async def test_approve_user_activates_it(admin_fsm, session, world):
    result = await admin_fsm.transition("User", world.pending_a, "APPROVE", {"notify": True})
    assert isinstance(result, User)
    user = await reload(session, User, world.pending_a)
    assert user.status == "active"
    assert user.is_active is True


async def test_kind_without_hooks_returns_entity(admin_fsm, world):
    result = await admin_fsm.transition("Plan", world.alpha, "CLOSE")
    assert result.status == "closed"


async def test_revoked_grant_is_checked_at_transition_time(fsm, session, world):
    """Permission is re-derived on every transition, not taken from a prior listing."""
    granted = policy(*FSM_CAPABILITIES, grants=[FsmGrant("Grant", {"APPROVE"})])
    assert event_types(await fsm(Caller(world.admin_a, world.org_a, (granted,))).get_actions("Grant", world.draft)) == [
        "APPROVE"
    ]

    revoked = policy(*FSM_CAPABILITIES)
    with pytest.raises(ActionNotPermitted) as exc_info:
        await fsm(Caller(world.admin_a, world.org_a, (revoked,))).transition("Grant", world.draft, "APPROVE")
    assert exc_info.value.action == "APPROVE"
    assert (await reload(session, Grant, world.draft)).status == "draft"
    assert await version_count(session) == 0


async def test_illegal_action_is_not_permitted(admin_fsm, session, world):
    with pytest.raises(ActionNotPermitted):
        await admin_fsm.transition("Grant", world.rejected, "APPROVE")


async def test_entity_refuses_illegal_transition(session, world):
    grant = await reload(session, Grant, world.rejected)
    with pytest.raises(IllegalTransition) as exc_info:
        await grant.apply_transition("APPROVE", {}, TenantContext(session, tenant_id=world.org_a))
    assert exc_info.value.status == "rejected"


async def test_transition_with_attachment(admin_fsm, session, store, world):
    upload = Upload("offer letter.pdf", b"%PDF-1.4", "application/pdf")
    await admin_fsm.transition("Grant", world.draft, "APPROVE", attachment=upload)

    key = f"organisations/{world.org_a}/files/grant/{world.draft}/offer letter.pdf"
    assert store.objects[("test-bucket", key)] == b"%PDF-1.4"
    assert (await reload(session, Grant, world.draft)).attachment_key == key
    version = (await session.execute(select(Version))).scalar_one()
    assert version.attachment_key == key
    assert version.payload["attachment"]["size"] == 8


@pytest.mark.parametrize(
    "upload",
    [
        Upload("payload.exe", b"MZ"),
        Upload("huge.pdf", b"x" * (1024 * 1024 + 1)),
        Upload("", b"data"),
    ],
)
async def test_rejected_attachment_aborts_transition(admin_fsm, session, store, world, monkeypatch, upload):
    """A rejected file leaves status, hooks, storage and history untouched."""
    calls = []

    async def spy(ctx):
        calls.append(ctx.entity_id)

    monkeypatch.setitem(HOOK_REGISTRY, "Grant", EntityHooks(post_transition={"APPROVE": spy}))
    with pytest.raises(AttachmentRejected):
        await admin_fsm.transition("Grant", world.draft, "APPROVE", attachment=upload)

    assert (await reload(session, Grant, world.draft)).status == "draft"
    assert calls == []
    assert store.objects == {}
    assert await version_count(session) == 0


async def test_incoming_file_is_read_only_past_the_ceiling():
    """An oversized multipart file is cut one byte past the limit, which still fails validation."""
    policy = AttachmentPolicy(frozenset({"pdf"}), max_bytes=10)
    buffer = io.BytesIO(b"x" * 100)
    upload = await read_upload(UploadFile(buffer, filename="big.pdf"), policy, chunk_size=4)
    assert upload.size == 11
    assert buffer.tell() == 11
    with pytest.raises(AttachmentRejected):
        policy.validate(upload)

    upload = await read_upload(UploadFile(io.BytesIO(b"%PDF"), filename="small.pdf"), policy)
    assert (upload.filename, upload.content) == ("small.pdf", b"%PDF")
    policy.validate(upload)


class SigningClient:
    """Stands in for a boto3 S3 client; only presigning is used."""

    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        self.calls.append((operation, Params, ExpiresIn))
        if self.error is not None:
            raise self.error
        return f"https://{Params['Bucket']}.s3.amazonaws.com/{Params['Key']}?X-Amz-Expires={ExpiresIn}"


async def test_s3_download_links_are_presigned():
    client = SigningClient()
    url = await S3BinaryStore(client=client).url("files", "organisations/a/approval.pdf", 600)
    assert url == "https://files.s3.amazonaws.com/organisations/a/approval.pdf?X-Amz-Expires=600"
    assert client.calls == [("get_object", {"Bucket": "files", "Key": "organisations/a/approval.pdf"}, 600)]

    denied = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "GeneratePresignedUrl")
    assert await S3BinaryStore(client=SigningClient(denied)).url("files", "approval.pdf", 600) is None


async def test_memory_download_links_need_a_stored_object():
    store = MemoryBinaryStore()
    assert await store.url("files", "approval.pdf", 60) is None
    await store.put("files", "approval.pdf", b"%PDF")
    assert await store.url("files", "approval.pdf", 60) == "memory://files/approval.pdf?expires_in=60"


async def test_hook_failure_rolls_back(admin_fsm, session, world, monkeypatch):
    async def broken(ctx):
        raise ValueError("mail server down")

    monkeypatch.setitem(HOOK_REGISTRY, "Grant", EntityHooks(post_transition={"APPROVE": broken}))
    with pytest.raises(HookFailure) as exc_info:
        await admin_fsm.transition("Grant", world.draft, "APPROVE")

    assert exc_info.value.stage == "APPROVE"
    assert isinstance(exc_info.value.__cause__, ValueError)
    assert (await reload(session, Grant, world.draft)).status == "draft"
    assert await version_count(session) == 0


async def test_hook_result_replaces_entity(admin_fsm, world, monkeypatch):
    async def summarize(ctx):
        return {"status": ctx.result.status, "payload": ctx.payload}

    monkeypatch.setitem(HOOK_REGISTRY, "Grant", EntityHooks(post_transition={"APPROVE": summarize}))
    result = await admin_fsm.transition("Grant", world.draft, "APPROVE", {"a": 1})
    assert result == {"status": "approved", "payload": {"a": 1}}


# -- history ------------------------------------------------------------------

async def test_versions_are_listed_newest_first(admin_fsm, session, world, admin_caller):
    await admin_fsm.transition("Grant", world.draft, "APPROVE")
    await admin_fsm.transition("Grant", world.draft, "ACCEPT")

    versions = VersionService(TenantContext(session, tenant_id=world.org_a), admin_caller)
    result = await versions.get_versions(QueryOptions(filters={"entity_id": str(world.draft)}))
    assert result.count == 2
    assert [v.action for v in result.rows] == ["ACCEPT", "APPROVE"]

    by_actor = await versions.get_versions(QueryOptions(filters={"Actor.email": {"like": "admin@"}}))
    assert by_actor.count == 2


# -- state machines -----------------------------------------------------------

async def test_create_machine_requires_fields(admin_fsm):
    with pytest.raises(InvalidRequest) as exc_info:
        await admin_fsm.create_machine("", "Grant", {"states": []})
    assert exc_info.value.message == "Name, key, and config are required fields"
    with pytest.raises(InvalidRequest):
        await admin_fsm.create_machine("Grant flow", "Grant", None)


async def test_machines_include_shared_ones(admin_fsm, session, world):
    with pytest.raises(NotFound):
        await admin_fsm.get_machines(QueryOptions())

    session.add_all([
        StateMachine(name="Shared", key="Plan", config={"states": ["draft"]}),
        StateMachine(tenant_id=world.org_b, name="Foreign", key="Grant", config={"states": ["draft"]}),
    ])
    await session.commit()
    created = await admin_fsm.create_machine("Grant flow", "Grant", {"states": ["draft", "approved"]})
    assert created.tenant_id == world.org_a

    result = await admin_fsm.get_machines(QueryOptions(sortBy="name"))
    assert [m.name for m in result.rows] == ["Grant flow", "Shared"]
    assert result.count == 2


async def test_fsm_service_for_every_kind(admin_fsm, world):
    """Every lifecycle kind resolves through the same dispatcher."""
    service = admin_fsm
    for kind, entity_id in (("Grant", world.draft), ("User", world.pending_a), ("Plan", world.beta)):
        assert isinstance(await service.get_actions(kind, entity_id), list)
