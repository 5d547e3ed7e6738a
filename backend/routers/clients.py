# routers/clients.py — Client records, ambassador assignment, client-user login
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, EmailStr, Field

from auth import CurrentUser, get_current_user, get_ops, require_admin
from models import BillingCycle, ClientStatus, ContractType, OnboardingStatus, UserRole
from operations import OpsService

router = APIRouter(prefix="/api/v1/clients", tags=["Clients"])


# --- Schemas ---

class ClientFields(BaseModel):
    legal_name: Optional[str] = None
    industry: Optional[str] = None
    status: Optional[ClientStatus] = None
    contract_value_cents: Optional[int] = Field(None, ge=0)
    contract_currency: Optional[str] = Field(None, min_length=3, max_length=3)
    contract_type: Optional[ContractType] = None
    contract_start: Optional[date] = None
    contract_end: Optional[date] = None
    billing_cycle: Optional[BillingCycle] = None
    onboarding_status: Optional[OnboardingStatus] = None
    notes_internal: Optional[str] = None


class ClientCreate(ClientFields):
    name: str = Field(..., min_length=1, max_length=300)
    ambassador_id: Optional[str] = None
    login_email: Optional[EmailStr] = None
    login_password: Optional[str] = None


class ClientUpdate(ClientFields):
    name: Optional[str] = Field(None, min_length=1, max_length=300)


class AssignAmbassador(BaseModel):
    ambassador_id: Optional[str] = None


# --- Endpoints ---

@router.get("")
async def list_clients(
    ambassador_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    return [c.to_dict() for c in await ops.list_clients(ambassador_id=ambassador_id, status=status)]


@router.post("", status_code=201)
async def create_client(
    body: ClientCreate,
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    fields = body.model_dump(
        exclude_none=True,
        exclude={"name", "ambassador_id", "login_email", "login_password"},
    )
    client = await ops.create_client(
        body.name,
        actor=user.as_actor(),
        ambassador_id=body.ambassador_id,
        login_email=body.login_email,
        login_password=body.login_password,
        **fields,
    )
    return client.to_dict()


@router.get("/me")
async def my_client(
    user: CurrentUser = Depends(get_current_user),
    ops: OpsService = Depends(get_ops),
):
    """The client record linked to a client_user login"""
    if user.role != UserRole.CLIENT_USER.value:
        raise HTTPException(status_code=403, detail="Only client users have a linked client")
    client = await ops.get_client_for_user(user.id)
    if client is None:
        raise HTTPException(status_code=404, detail="No client linked to this user")
    return client.to_dict()


@router.get("/{client_id}")
async def get_client(
    client_id: str,
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    client = await ops.get_client(client_id)
    data = client.to_dict()
    project = await ops.get_dashboard_project(client_id)
    data["dashboard_status"] = project.dashboard_status.value if project else None
    return data


@router.patch("/{client_id}")
async def update_client(
    client_id: str,
    body: ClientUpdate,
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    client = await ops.update_client(client_id, body.model_dump(exclude_unset=True), actor=user.as_actor())
    return client.to_dict()


@router.post("/{client_id}/assign-ambassador")
async def assign_ambassador(
    client_id: str,
    body: AssignAmbassador,
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    client = await ops.assign_client_to_ambassador(client_id, body.ambassador_id, actor=user.as_actor())
    return client.to_dict()
