# tests/test_commissions.py — Commission ledger, signed amounts and summaries
from datetime import date

import pytest
from httpx import AsyncClient

from audit import AuditLogger
from errors import InvalidReference, NotFound, ValidationError
from models import AuditAction, CommissionStatus

from tests.conftest import get_auth_headers

JAN_START = date(2024, 1, 1)
JAN_END = date(2024, 1, 31)


@pytest.mark.asyncio
async def test_create_commission(ops, ambassador, acme, admin_actor):
    commission = await ops.create_commission(
        ambassador.id, 12500, JAN_START, JAN_END, client_id=acme.id, note="January", actor=admin_actor
    )
    assert commission.status == CommissionStatus.PENDING
    entry = (await ops.store.load()).audit_logs[0]
    assert (entry.action, entry.entity_type) == (AuditAction.CREATE, "commission")
    assert entry.after["amount_cents"] == 12500


@pytest.mark.asyncio
async def test_deductions_reduce_paid_total_below_zero(ops, ambassador, admin_actor):
    await ops.create_commission(ambassador.id, 1000, JAN_START, JAN_END, status="paid", actor=admin_actor)
    await ops.create_commission(ambassador.id, -2500, JAN_START, JAN_END, status="paid", actor=admin_actor)
    await ops.create_commission(ambassador.id, 700, JAN_START, JAN_END, actor=admin_actor)

    summary = await ops.commission_summary(ambassador.id)
    assert summary.paid_cents == -1500
    assert summary.pending_cents == 700
    assert summary.count == 3


@pytest.mark.asyncio
async def test_period_must_not_be_reversed(ops, ambassador, admin_actor):
    before = (await ops.store.load()).counts()
    with pytest.raises(ValidationError):
        await ops.create_commission(ambassador.id, 100, JAN_END, JAN_START, actor=admin_actor)
    assert (await ops.store.load()).counts() == before


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [10.5, True, "lots"])
async def test_amount_must_be_integer_cents(ops, ambassador, admin_actor, amount):
    with pytest.raises(ValidationError):
        await ops.create_commission(ambassador.id, amount, JAN_START, JAN_END, actor=admin_actor)


@pytest.mark.asyncio
async def test_references_are_checked(ops, ambassador, admin_actor):
    with pytest.raises(InvalidReference):
        await ops.create_commission("ghost", 100, JAN_START, JAN_END, actor=admin_actor)
    with pytest.raises(InvalidReference):
        await ops.create_commission(ambassador.id, 100, JAN_START, JAN_END, client_id="ghost", actor=admin_actor)


@pytest.mark.asyncio
async def test_update_commission_status(ops, ambassador, admin_actor):
    commission = await ops.create_commission(ambassador.id, 900, JAN_START, JAN_END, actor=admin_actor)
    updated = await ops.update_commission(commission.id, {"status": "paid"}, actor=admin_actor)
    assert updated.status == CommissionStatus.PAID

    entry = (await ops.store.load()).audit_logs[0]
    assert entry.action == AuditAction.UPDATE
    assert AuditLogger.diff(entry) == {"status": ("pending", "paid")}


@pytest.mark.asyncio
async def test_update_checks_merged_period(ops, ambassador, admin_actor):
    commission = await ops.create_commission(ambassador.id, 900, JAN_START, JAN_END, actor=admin_actor)
    with pytest.raises(ValidationError):
        await ops.update_commission(commission.id, {"period_end": date(2023, 12, 1)}, actor=admin_actor)


@pytest.mark.asyncio
async def test_delete_commission(ops, ambassador, admin_actor):
    commission = await ops.create_commission(ambassador.id, 900, JAN_START, JAN_END, actor=admin_actor)
    await ops.delete_commission(commission.id, actor=admin_actor)
    snapshot = await ops.store.load()
    assert snapshot.commissions == []
    assert snapshot.audit_logs[0].action == AuditAction.DELETE
    assert snapshot.audit_logs[0].before["amount_cents"] == 900
    with pytest.raises(NotFound):
        await ops.delete_commission(commission.id, actor=admin_actor)


@pytest.mark.asyncio
async def test_admin_stats(ops, ambassador, acme, admin_actor):
    await ops.create_commission(ambassador.id, 1000, JAN_START, JAN_END, status="paid", actor=admin_actor)
    await ops.create_commission(ambassador.id, 300, JAN_START, JAN_END, actor=admin_actor)
    stats = await ops.admin_stats()
    assert stats["total_ambassadors"] == 1
    assert stats["total_clients"] == 1
    assert stats["unassigned_clients"] == 1
    assert stats["paid_commissions_cents"] == 1000
    assert stats["pending_commissions_cents"] == 300


# --- HTTP ---

@pytest.mark.asyncio
async def test_commission_endpoints(client: AsyncClient, admin_user, ambassador):
    headers = get_auth_headers(admin_user)
    resp = await client.post(
        "/api/v1/commissions",
        json={
            "ambassador_id": ambassador.id,
            "amount_cents": -400,
            "status": "paid",
            "period_start": "2024-02-01",
            "period_end": "2024-02-29",
        },
        headers=headers,
    )
    assert resp.status_code == 201
    commission_id = resp.json()["id"]

    resp = await client.get(f"/api/v1/ambassadors/{ambassador.id}/commissions", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["summary"]["paid_cents"] == -400

    resp = await client.patch(f"/api/v1/commissions/{commission_id}", json={"note": "clawback"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["note"] == "clawback"

    resp = await client.delete(f"/api/v1/commissions/{commission_id}", headers=headers)
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_float_amount_rejected_by_endpoint(client: AsyncClient, admin_user, ambassador):
    resp = await client.post(
        "/api/v1/commissions",
        json={
            "ambassador_id": ambassador.id,
            "amount_cents": 10.5,
            "period_start": "2024-02-01",
            "period_end": "2024-02-29",
        },
        headers=get_auth_headers(admin_user),
    )
    assert resp.status_code == 422
