# tests/test_snapshot_store.py — Snapshot store load/mutate/persist behaviour
import asyncio
import json
from datetime import date

import pytest

from entities import SYSTEM_ACTOR, Client, Snapshot
from errors import ConcurrentModification, PersistenceError
from models import AuditAction
from operations import OpsService
from snapshot_store import SnapshotStore

from tests.conftest import InMemoryRepository


@pytest.mark.asyncio
async def test_open_initialises_empty_document(store):
    """A fresh store holds every collection, all empty"""
    snapshot = await store.load()
    assert store.revision == 1
    assert all(count == 0 for count in snapshot.counts().values())
    assert set(snapshot.counts()) == {
        "users", "ambassadors", "clients", "commissions", "appointments",
        "audit_logs", "dashboard_projects", "ai_threads", "ai_messages", "client_users",
        "ambassador_applications",
    }


@pytest.mark.asyncio
async def test_mutate_persists_and_bumps_revision(store):
    def add_note(snapshot: Snapshot):
        snapshot.clients.append(Client(name="Persisted Co"))
        return "done"

    before = store.revision
    result = await store.mutate(add_note)
    assert result == "done"
    assert store.revision == before + 1

    reloaded = await store.load()
    assert [c.name for c in reloaded.clients] == ["Persisted Co"]


@pytest.mark.asyncio
async def test_reopen_keeps_revision(store):
    await store.mutate(lambda s: None)
    reopened = SnapshotStore(store.repository)
    await reopened.open()
    assert reopened.revision == store.revision


@pytest.mark.asyncio
async def test_failing_transform_writes_nothing(store):
    def broken(snapshot: Snapshot):
        snapshot.clients.append(Client(name="Ghost"))
        raise RuntimeError("boom")

    before = store.revision
    with pytest.raises(RuntimeError):
        await store.mutate(broken)
    assert store.revision == before
    assert (await store.load()).clients == []


@pytest.mark.asyncio
async def test_missing_document_loads_empty():
    repo = InMemoryRepository()
    store = SnapshotStore(repo)
    snapshot = await store.load()
    assert snapshot.users == []
    assert snapshot.audit_logs == []


@pytest.mark.asyncio
async def test_corrupted_document_loads_empty(caplog):
    store = SnapshotStore(InMemoryRepository(payload="{not valid json"))
    with caplog.at_level("ERROR", logger="opsdesk.store"):
        snapshot = await store.load()
    assert snapshot.counts()["users"] == 0
    assert any("corrupted" in r.message for r in caplog.records)


@pytest.mark.asyncio
async def test_old_document_without_new_collections_loads():
    """Collections missing from an older document come back empty"""
    legacy = {
        "users": [],
        "ambassadors": [],
        "clients": [{"id": "cli_1", "name": "Legacy Client", "status": "active"}],
        "audit_logs": [],
    }
    store = SnapshotStore(InMemoryRepository(payload=json.dumps(legacy)))
    snapshot = await store.load()
    assert snapshot.clients[0].id == "cli_1"
    assert snapshot.client_users == []
    assert snapshot.ai_messages == []
    assert snapshot.ambassador_applications == []


@pytest.mark.asyncio
async def test_unknown_collections_survive_rewrite():
    repo = InMemoryRepository(payload=json.dumps({"users": [], "legacy_notes": [{"text": "keep me"}]}))
    store = SnapshotStore(repo)
    ops = OpsService(store)
    await ops.create_client("Rewrite Co", actor=SYSTEM_ACTOR)

    stored = json.loads(repo.payload)
    assert stored["legacy_notes"] == [{"text": "keep me"}]
    assert stored["clients"][0]["name"] == "Rewrite Co"


@pytest.mark.asyncio
async def test_write_failure_raises_and_discards_changes():
    repo = InMemoryRepository()
    store = SnapshotStore(repo)
    await store.open()
    ops = OpsService(store)

    repo.fail_writes = True
    with pytest.raises(PersistenceError):
        await ops.create_client("Lost Co", actor=SYSTEM_ACTOR)

    repo.fail_writes = False
    snapshot = await store.load()
    assert snapshot.clients == []
    assert snapshot.audit_logs == []


@pytest.mark.asyncio
async def test_stale_revision_is_rejected(store):
    await store.mutate(lambda s: None)
    with pytest.raises(ConcurrentModification):
        await store.repository.write(Snapshot().model_dump_json(), expected_revision=1)


@pytest.mark.asyncio
async def test_second_writer_on_same_document_is_detected():
    repo = InMemoryRepository()
    store = SnapshotStore(repo)
    await store.open()

    def transform(snapshot: Snapshot):
        # Another process writes between our load and our persist
        repo.revision += 1

    with pytest.raises(ConcurrentModification):
        await store.mutate(transform)
    assert repo.writes == 1


@pytest.mark.asyncio
async def test_concurrent_mutations_are_serialized(ops, ambassador, admin_actor):
    """Parallel callers in one process never lose each other's writes"""
    await asyncio.gather(*[
        ops.create_commission(
            ambassador.id, 100 * (i + 1), date(2024, 1, 1), date(2024, 1, 31), actor=admin_actor
        )
        for i in range(8)
    ])
    snapshot = await ops.store.load()
    assert len(snapshot.commissions) == 8
    creates = [e for e in snapshot.audit_logs if e.entity_type == "commission"]
    assert len(creates) == 8
    assert all(e.action == AuditAction.CREATE for e in creates)
