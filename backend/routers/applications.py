# routers/applications.py — Public ambassador application form + admin review queue
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from auth import CurrentUser, get_ops, require_admin
from models import ApplicationStatus
from operations import OpsService

logger = logging.getLogger("opsdesk.applications")

router = APIRouter(prefix="/api/v1/applications", tags=["Applications"])

APPLY_RATE_LIMIT = 5
APPLY_WINDOW_MINUTES = 10

# In-memory submissions per client address, per process
_apply_attempts: Dict[str, list] = defaultdict(list)


# --- Schemas ---

class ApplicationSubmit(BaseModel):
    full_name: str = Field(..., max_length=200)
    email: str = Field(..., max_length=320)
    message: str = Field(..., max_length=5000)
    phone: Optional[str] = Field(None, max_length=50)
    city_state: Optional[str] = Field(None, max_length=200)
    # Honeypot: hidden from people, filled in by bots
    company: Optional[str] = None


class ApplicationStatusUpdate(BaseModel):
    status: ApplicationStatus
    notes: Optional[str] = Field(None, max_length=5000)


# --- Helpers ---

def client_address(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _check_rate_limit(address: str) -> None:
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=APPLY_WINDOW_MINUTES)
    _apply_attempts[address] = [t for t in _apply_attempts[address] if t > cutoff]
    if len(_apply_attempts[address]) >= APPLY_RATE_LIMIT:
        raise HTTPException(
            status_code=429,
            detail=f"Too many applications. Try again in {APPLY_WINDOW_MINUTES} minutes.",
        )
    _apply_attempts[address].append(datetime.now(timezone.utc))


# --- Endpoints ---

@router.post("/apply", status_code=201)
async def apply(
    body: ApplicationSubmit,
    request: Request,
    ops: OpsService = Depends(get_ops),
):
    """Unauthenticated application form"""
    address = client_address(request)
    _check_rate_limit(address)
    if body.company:
        logger.info(f"Honeypot filled from {address}; application dropped")
        return {"ok": True}

    application = await ops.submit_ambassador_application(
        body.full_name,
        body.email,
        body.message,
        phone=body.phone,
        city_state=body.city_state,
        ip_address=address,
        user_agent=request.headers.get("user-agent"),
    )
    return {"ok": True, "id": application.id}


@router.get("")
async def list_applications(
    status: Optional[ApplicationStatus] = Query(None),
    q: Optional[str] = Query(None, max_length=200),
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    return [a.to_dict() for a in await ops.list_ambassador_applications(status=status, q=q)]


@router.get("/stats")
async def application_stats(
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    return await ops.ambassador_application_stats()


@router.get("/{application_id}")
async def get_application(
    application_id: str,
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    return (await ops.get_ambassador_application(application_id)).to_dict()


@router.patch("/{application_id}/status")
async def update_application_status(
    application_id: str,
    body: ApplicationStatusUpdate,
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    application = await ops.update_ambassador_application_status(
        application_id, body.status, notes=body.notes, actor=user.as_actor()
    )
    return application.to_dict()
