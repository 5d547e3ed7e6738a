# routers/commissions.py — Commission ledger (admin)
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, StrictInt

from auth import CurrentUser, get_ops, require_admin
from models import CommissionStatus
from operations import OpsService

router = APIRouter(prefix="/api/v1/commissions", tags=["Commissions"])


# --- Schemas ---

class CommissionCreate(BaseModel):
    ambassador_id: str
    client_id: Optional[str] = None
    amount_cents: StrictInt = Field(..., description="Positive credits, negative deductions")
    status: CommissionStatus = CommissionStatus.PENDING
    period_start: date
    period_end: date
    note: Optional[str] = None


class CommissionUpdate(BaseModel):
    client_id: Optional[str] = None
    amount_cents: Optional[StrictInt] = None
    status: Optional[CommissionStatus] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    note: Optional[str] = None


# --- Endpoints ---

@router.get("")
async def list_commissions(
    ambassador_id: Optional[str] = Query(None),
    client_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    items = await ops.list_commissions(ambassador_id=ambassador_id, client_id=client_id, status=status)
    return [c.to_dict() for c in items]


@router.post("", status_code=201)
async def create_commission(
    body: CommissionCreate,
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    commission = await ops.create_commission(
        body.ambassador_id,
        body.amount_cents,
        body.period_start,
        body.period_end,
        actor=user.as_actor(),
        client_id=body.client_id,
        status=body.status,
        note=body.note,
    )
    return commission.to_dict()


@router.patch("/{commission_id}")
async def update_commission(
    commission_id: str,
    body: CommissionUpdate,
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    commission = await ops.update_commission(
        commission_id, body.model_dump(exclude_unset=True), actor=user.as_actor()
    )
    return commission.to_dict()


@router.delete("/{commission_id}")
async def delete_commission(
    commission_id: str,
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    await ops.delete_commission(commission_id, actor=user.as_actor())
    return {"status": "deleted", "id": commission_id}
