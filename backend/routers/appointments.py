# routers/appointments.py — Appointments, for admins and the owning ambassador
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from auth import CurrentUser, check_ambassador_access, get_ops, require_role
from models import AppointmentStatus, UserRole
from operations import OpsService

router = APIRouter(prefix="/api/v1/appointments", tags=["Appointments"])

staff = require_role(UserRole.ADMIN, UserRole.AMBASSADOR)


# --- Schemas ---

class AppointmentCreate(BaseModel):
    ambassador_id: Optional[str] = None
    client_id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=300)
    start_at: datetime
    end_at: datetime
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    notes: Optional[str] = None


class AppointmentUpdate(BaseModel):
    client_id: Optional[str] = None
    title: Optional[str] = Field(None, min_length=1, max_length=300)
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    status: Optional[AppointmentStatus] = None
    notes: Optional[str] = None


# --- Helpers ---

async def _resolve_ambassador_id(user: CurrentUser, requested: Optional[str], ops: OpsService) -> str:
    """Ambassadors default to themselves; admins must name one"""
    if requested is None:
        if user.role != UserRole.AMBASSADOR.value:
            raise HTTPException(status_code=400, detail="ambassador_id is required")
        own = await ops.get_ambassador_for_user(user.id)
        if own is None:
            raise HTTPException(status_code=403, detail="No ambassador profile for this user")
        return own.id
    await check_ambassador_access(user, requested, ops)
    return requested


# --- Endpoints ---

@router.get("")
async def list_appointments(
    ambassador_id: Optional[str] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    user: CurrentUser = Depends(staff),
    ops: OpsService = Depends(get_ops),
):
    target = await _resolve_ambassador_id(user, ambassador_id, ops)
    return [a.to_dict() for a in await ops.list_appointments(target, start=start, end=end)]


@router.post("", status_code=201)
async def create_appointment(
    body: AppointmentCreate,
    user: CurrentUser = Depends(staff),
    ops: OpsService = Depends(get_ops),
):
    target = await _resolve_ambassador_id(user, body.ambassador_id, ops)
    appointment = await ops.create_appointment(
        target,
        body.title,
        body.start_at,
        body.end_at,
        actor=user.as_actor(),
        client_id=body.client_id,
        status=body.status,
        notes=body.notes,
    )
    return appointment.to_dict()


@router.patch("/{appointment_id}")
async def update_appointment(
    appointment_id: str,
    body: AppointmentUpdate,
    user: CurrentUser = Depends(staff),
    ops: OpsService = Depends(get_ops),
):
    current = await ops.get_appointment(appointment_id)
    await check_ambassador_access(user, current.ambassador_id, ops)
    appointment = await ops.update_appointment(
        appointment_id, body.model_dump(exclude_unset=True), actor=user.as_actor()
    )
    return appointment.to_dict()


@router.delete("/{appointment_id}")
async def delete_appointment(
    appointment_id: str,
    user: CurrentUser = Depends(staff),
    ops: OpsService = Depends(get_ops),
):
    current = await ops.get_appointment(appointment_id)
    await check_ambassador_access(user, current.ambassador_id, ops)
    await ops.delete_appointment(appointment_id, actor=user.as_actor())
    return {"status": "deleted", "id": appointment_id}
