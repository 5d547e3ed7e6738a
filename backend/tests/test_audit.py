# tests/test_audit.py — Audit trail completeness, ordering, filtering and immutability
from datetime import date, datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from pydantic import ValidationError as PydanticValidationError

from audit import AuditLogger
from entities import SYSTEM_ACTOR, Actor, Snapshot
from errors import InvalidAmbassador, PersistenceError
from models import AuditAction
from operations import OpsService
from snapshot_store import SnapshotStore

from tests.conftest import InMemoryRepository, get_auth_headers


@pytest.mark.asyncio
async def test_each_single_entry_mutation_adds_one_entry(ops, ambassador, acme, admin_actor):
    before = len((await ops.store.load()).audit_logs)
    start = datetime(2024, 5, 1, 9, tzinfo=timezone.utc)

    await ops.update_client(acme.id, {"industry": "apparel"}, actor=admin_actor)
    await ops.assign_client_to_ambassador(acme.id, ambassador.id, actor=admin_actor)
    commission = await ops.create_commission(
        ambassador.id, 500, date(2024, 5, 1), date(2024, 5, 31), actor=admin_actor
    )
    await ops.update_commission(commission.id, {"status": "paid"}, actor=admin_actor)
    await ops.create_appointment(ambassador.id, "Review", start, start + timedelta(hours=1), actor=admin_actor)
    await ops.update_ambassador(ambassador.id, {"name": "Carlos R."}, actor=admin_actor)

    assert len((await ops.store.load()).audit_logs) == before + 6


@pytest.mark.asyncio
async def test_newest_entry_first(ops, acme, admin_actor):
    await ops.update_client(acme.id, {"industry": "first"}, actor=admin_actor)
    await ops.update_client(acme.id, {"industry": "second"}, actor=admin_actor)
    entries = (await ops.store.load()).audit_logs
    assert entries[0].after["industry"] == "second"
    assert entries[1].after["industry"] == "first"
    assert entries[0].created_at >= entries[1].created_at


@pytest.mark.asyncio
async def test_rejected_mutation_leaves_no_entry(ops, acme, admin_actor):
    before = len((await ops.store.load()).audit_logs)
    with pytest.raises(InvalidAmbassador):
        await ops.assign_client_to_ambassador(acme.id, "ghost", actor=admin_actor)
    assert len((await ops.store.load()).audit_logs) == before


@pytest.mark.asyncio
async def test_failed_persist_leaves_no_entry():
    repo = InMemoryRepository()
    store = SnapshotStore(repo)
    await store.open()
    ops = OpsService(store)
    await ops.create_client("Before Outage", actor=SYSTEM_ACTOR)

    repo.fail_writes = True
    with pytest.raises(PersistenceError):
        await ops.create_client("During Outage", actor=SYSTEM_ACTOR)

    snapshot = await store.load()
    assert [c.name for c in snapshot.clients] == ["Before Outage"]
    assert len(snapshot.audit_logs) == 1


@pytest.mark.asyncio
async def test_actor_is_recorded(ops, acme):
    actor = Actor(user_id="user-42", role="ambassador")
    await ops.update_client(acme.id, {"notes_internal": "called"}, actor=actor)
    entry = (await ops.store.load()).audit_logs[0]
    assert entry.actor_user_id == "user-42"
    assert entry.actor_role == "ambassador"


def test_snapshots_are_deep_copies():
    snapshot = Snapshot()
    after = {"name": "Acme", "tags": ["a"]}
    entry = AuditLogger().append(snapshot, SYSTEM_ACTOR, AuditAction.CREATE, "client", "c1", None, after)
    after["tags"].append("b")
    after["name"] = "Changed"
    assert entry.after == {"name": "Acme", "tags": ["a"]}


def test_entries_are_frozen():
    snapshot = Snapshot()
    entry = AuditLogger().append(snapshot, SYSTEM_ACTOR, AuditAction.DELETE, "client", "c1", {"name": "x"}, None)
    with pytest.raises(PydanticValidationError):
        entry.entity_id = "c2"


def test_filters_and_limit():
    snapshot = Snapshot()
    logger = AuditLogger()
    alice = Actor(user_id="alice", role="admin")
    bob = Actor(user_id="bob", role="ambassador")
    logger.append(snapshot, alice, AuditAction.CREATE, "client", "c1", None, {"name": "one"})
    logger.append(snapshot, bob, AuditAction.UPDATE, "client", "c1", {"name": "one"}, {"name": "uno"})
    logger.append(snapshot, alice, AuditAction.CREATE, "commission", "m1", None, {"amount_cents": 5})
    logger.append(snapshot, alice, AuditAction.DELETE, "client", "c2", {"name": "two"}, None)

    assert [e.entity_id for e in AuditLogger.entries(snapshot, entity_type="client")] == ["c2", "c1", "c1"]
    assert [e.action for e in AuditLogger.entries(snapshot, entity_id="c1")] == [AuditAction.UPDATE, AuditAction.CREATE]
    assert len(AuditLogger.entries(snapshot, actor_user_id="alice")) == 3
    assert [e.entity_id for e in AuditLogger.entries(snapshot, action=AuditAction.CREATE)] == ["m1", "c1"]
    assert [e.entity_id for e in AuditLogger.entries(snapshot, action="DELETE")] == ["c2"]
    assert len(AuditLogger.entries(snapshot, limit=2)) == 2


def test_diff():
    snapshot = Snapshot()
    entry = AuditLogger().append(
        snapshot, SYSTEM_ACTOR, AuditAction.UPDATE, "client", "c1",
        {"name": "Acme", "status": "active", "notes": None},
        {"name": "Acme", "status": "paused", "industry": "textiles"},
    )
    assert AuditLogger.diff(entry) == {
        "industry": (None, "textiles"),
        "status": ("active", "paused"),
    }


# --- HTTP ---

@pytest.mark.asyncio
async def test_audit_endpoint_with_diff(client: AsyncClient, ops, admin_user, admin_actor, acme):
    await ops.update_client(acme.id, {"status": "paused"}, actor=admin_actor)
    resp = await client.get(
        f"/api/v1/audit?entity_id={acme.id}&include_diff=true", headers=get_auth_headers(admin_user)
    )
    assert resp.status_code == 200
    items = resp.json()
    assert [i["action"] for i in items] == ["UPDATE", "CREATE"]
    assert items[0]["diff"]["status"] == ["active", "paused"]
    assert items[0]["actor_user_id"] == admin_user.id


@pytest.mark.asyncio
async def test_audit_endpoint_is_admin_only(client: AsyncClient, ambassador_user):
    resp = await client.get("/api/v1/audit", headers=get_auth_headers(ambassador_user))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_stats_endpoint(client: AsyncClient, admin_user, acme):
    resp = await client.get("/api/v1/audit/stats", headers=get_auth_headers(admin_user))
    assert resp.status_code == 200
    assert resp.json()["unassigned_clients"] == 1
