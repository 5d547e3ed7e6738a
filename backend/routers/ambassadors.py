# routers/ambassadors.py — Ambassador management (admin) + per-ambassador views
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, EmailStr, Field

from auth import CurrentUser, check_ambassador_access, get_current_user, get_ops, require_admin
from models import AmbassadorStatus
from operations import OpsService

router = APIRouter(prefix="/api/v1/ambassadors", tags=["Ambassadors"])


# --- Schemas ---

class AmbassadorCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    password: str
    status: AmbassadorStatus = AmbassadorStatus.ACTIVE
    commission_rule: Optional[Dict[str, Any]] = None


class AmbassadorUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    status: Optional[AmbassadorStatus] = None
    commission_rule: Optional[Dict[str, Any]] = None
    password: Optional[str] = None


# --- Endpoints ---

@router.get("")
async def list_ambassadors(
    status: Optional[AmbassadorStatus] = Query(None),
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    return await ops.list_ambassador_profiles(status=status)


@router.post("", status_code=201)
async def create_ambassador(
    body: AmbassadorCreate,
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    ambassador = await ops.create_ambassador(
        body.name,
        body.email,
        body.password,
        status=body.status,
        commission_rule=body.commission_rule,
        actor=user.as_actor(),
    )
    return await ops.get_ambassador_profile(ambassador.id)


@router.get("/{ambassador_id}")
async def get_ambassador(
    ambassador_id: str,
    user: CurrentUser = Depends(get_current_user),
    ops: OpsService = Depends(get_ops),
):
    await check_ambassador_access(user, ambassador_id, ops)
    return await ops.get_ambassador_profile(ambassador_id)


@router.patch("/{ambassador_id}")
async def update_ambassador(
    ambassador_id: str,
    body: AmbassadorUpdate,
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    await ops.update_ambassador(
        ambassador_id, body.model_dump(exclude_unset=True), actor=user.as_actor()
    )
    return await ops.get_ambassador_profile(ambassador_id)


@router.delete("/{ambassador_id}")
async def delete_ambassador(
    ambassador_id: str,
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    unassigned = await ops.delete_ambassador(ambassador_id, actor=user.as_actor())
    return {"status": "deleted", "unassigned_clients": unassigned}


@router.get("/{ambassador_id}/dashboard")
async def ambassador_dashboard(
    ambassador_id: str,
    user: CurrentUser = Depends(get_current_user),
    ops: OpsService = Depends(get_ops),
):
    await check_ambassador_access(user, ambassador_id, ops)
    return await ops.ambassador_dashboard(ambassador_id)


@router.get("/{ambassador_id}/commissions")
async def ambassador_commissions(
    ambassador_id: str,
    status: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    ops: OpsService = Depends(get_ops),
):
    await check_ambassador_access(user, ambassador_id, ops)
    await ops.get_ambassador(ambassador_id)
    summary = await ops.commission_summary(ambassador_id)
    items = await ops.list_commissions(ambassador_id=ambassador_id, status=status)
    return {"summary": summary.to_dict(), "items": [c.to_dict() for c in items]}


@router.get("/{ambassador_id}/appointments")
async def ambassador_appointments(
    ambassador_id: str,
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    ops: OpsService = Depends(get_ops),
):
    await check_ambassador_access(user, ambassador_id, ops)
    await ops.get_ambassador(ambassador_id)
    items = await ops.list_appointments(ambassador_id, start=start, end=end)
    return [a.to_dict() for a in items]


@router.get("/{ambassador_id}/clients")
async def ambassador_clients(
    ambassador_id: str,
    user: CurrentUser = Depends(get_current_user),
    ops: OpsService = Depends(get_ops),
):
    await check_ambassador_access(user, ambassador_id, ops)
    await ops.get_ambassador(ambassador_id)
    return [c.to_dict() for c in await ops.list_clients(ambassador_id=ambassador_id)]
