# tests/test_appointments.py — Appointment windows, ordering and ownership
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from errors import InvalidReference, ValidationError
from models import AuditAction

from tests.conftest import get_auth_headers

NINE = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_create_appointment(ops, ambassador, acme, admin_actor):
    appointment = await ops.create_appointment(
        ambassador.id, "Kickoff", NINE, NINE + timedelta(hours=1), client_id=acme.id, actor=admin_actor
    )
    assert appointment.start_at == NINE
    entry = (await ops.store.load()).audit_logs[0]
    assert (entry.action, entry.entity_type) == (AuditAction.CREATE, "appointment")


@pytest.mark.asyncio
@pytest.mark.parametrize("end", [NINE, NINE - timedelta(minutes=1)])
async def test_end_must_follow_start(ops, ambassador, admin_actor, end):
    before = (await ops.store.load()).counts()
    with pytest.raises(ValidationError):
        await ops.create_appointment(ambassador.id, "Bad", NINE, end, actor=admin_actor)
    assert (await ops.store.load()).counts() == before


@pytest.mark.asyncio
async def test_naive_times_are_utc(ops, ambassador, admin_actor):
    appointment = await ops.create_appointment(
        ambassador.id, "Naive", "2024-03-04T09:00:00", "2024-03-04T10:00:00", actor=admin_actor
    )
    assert appointment.start_at == NINE


@pytest.mark.asyncio
async def test_update_checks_merged_window(ops, ambassador, admin_actor):
    appointment = await ops.create_appointment(
        ambassador.id, "Call", NINE, NINE + timedelta(hours=1), actor=admin_actor
    )
    before = (await ops.store.load()).counts()
    with pytest.raises(ValidationError):
        await ops.update_appointment(
            appointment.id, {"start_at": NINE + timedelta(hours=2)}, actor=admin_actor
        )
    assert (await ops.store.load()).counts() == before
    assert (await ops.get_appointment(appointment.id)).start_at == NINE


@pytest.mark.asyncio
async def test_update_and_delete(ops, ambassador, admin_actor):
    appointment = await ops.create_appointment(
        ambassador.id, "Call", NINE, NINE + timedelta(hours=1), actor=admin_actor
    )
    updated = await ops.update_appointment(appointment.id, {"status": "done", "notes": "went well"}, actor=admin_actor)
    assert updated.status.value == "done"

    await ops.delete_appointment(appointment.id, actor=admin_actor)
    snapshot = await ops.store.load()
    assert snapshot.appointments == []
    assert [e.action for e in snapshot.audit_logs[:2]] == [AuditAction.DELETE, AuditAction.UPDATE]


@pytest.mark.asyncio
async def test_unknown_ambassador_rejected(ops, admin_actor):
    with pytest.raises(InvalidReference):
        await ops.create_appointment("ghost", "Nobody", NINE, NINE + timedelta(hours=1), actor=admin_actor)


@pytest.mark.asyncio
async def test_list_is_sorted_and_windowed(ops, ambassador, admin_actor):
    for offset in (3, 1, 2):
        start = NINE + timedelta(days=offset)
        await ops.create_appointment(
            ambassador.id, f"Day {offset}", start, start + timedelta(hours=1), actor=admin_actor
        )
    titles = [a.title for a in await ops.list_appointments(ambassador.id)]
    assert titles == ["Day 1", "Day 2", "Day 3"]

    windowed = await ops.list_appointments(
        ambassador.id, start=NINE + timedelta(days=2), end=NINE + timedelta(days=2, hours=12)
    )
    assert [a.title for a in windowed] == ["Day 2"]


# --- HTTP ---

@pytest.mark.asyncio
async def test_ambassador_books_own_appointment(client: AsyncClient, ambassador, ambassador_user):
    headers = get_auth_headers(ambassador_user)
    resp = await client.post(
        "/api/v1/appointments",
        json={"title": "Demo", "start_at": "2024-03-04T09:00:00Z", "end_at": "2024-03-04T10:00:00Z"},
        headers=headers,
    )
    assert resp.status_code == 201
    assert resp.json()["ambassador_id"] == ambassador.id

    resp = await client.get("/api/v1/appointments", headers=headers)
    assert resp.status_code == 200
    assert [a["title"] for a in resp.json()] == ["Demo"]


@pytest.mark.asyncio
async def test_ambassador_cannot_touch_others(client: AsyncClient, ops, admin_actor, ambassador, ambassador_user):
    other = await ops.create_ambassador("Maria Garcia", "maria@demo.com", "secret-pass", actor=admin_actor)
    theirs = await ops.create_appointment(
        other.id, "Private", NINE, NINE + timedelta(hours=1), actor=admin_actor
    )
    headers = get_auth_headers(ambassador_user)

    resp = await client.get(f"/api/v1/appointments?ambassador_id={other.id}", headers=headers)
    assert resp.status_code == 403
    resp = await client.delete(f"/api/v1/appointments/{theirs.id}", headers=headers)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_invalid_window_returns_422(client: AsyncClient, admin_user, ambassador):
    resp = await client.post(
        "/api/v1/appointments",
        json={
            "ambassador_id": ambassador.id,
            "title": "Backwards",
            "start_at": "2024-03-04T10:00:00Z",
            "end_at": "2024-03-04T09:00:00Z",
        },
        headers=get_auth_headers(admin_user),
    )
    assert resp.status_code == 422
    assert resp.json()["kind"] == "ValidationError"


@pytest.mark.asyncio
async def test_client_user_cannot_list_appointments(client: AsyncClient, ops, admin_actor, ambassador):
    await ops.create_client("Portal", actor=admin_actor, login_email="p@portal.co", login_password="portal-pass")
    user = (await ops.store.load()).find_user_by_email("p@portal.co")
    resp = await client.get(
        f"/api/v1/appointments?ambassador_id={ambassador.id}", headers=get_auth_headers(user)
    )
    assert resp.status_code == 403
