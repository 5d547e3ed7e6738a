# routers/dashboards.py — Client dashboard projects, insights and the AI conversation log
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from auth import CurrentUser, get_current_user, get_ops, require_admin
from change_detection import DEFAULT_PERIOD_DAYS, detect_changes, normalize_rows
from models import DashboardStatus, MessageRole, UserRole
from operations import OpsService
from telemetry import traced

router = APIRouter(prefix="/api/v1/dashboards", tags=["Dashboards"])


# --- Schemas ---

class ConfigSave(BaseModel):
    config: Dict[str, Any]
    template_key: Optional[str] = None
    data_source_type: Optional[str] = None


class AdvanceRequest(BaseModel):
    status: DashboardStatus


class InsightsRequest(BaseModel):
    records: List[Dict[str, Any]] = Field(default_factory=list)
    period_days: int = Field(DEFAULT_PERIOD_DAYS, ge=1, le=3650)


class ThreadCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)


class MessageCreate(BaseModel):
    role: MessageRole = MessageRole.USER
    content: str = Field(..., min_length=1)


# --- Helpers ---

async def _check_client_access(user: CurrentUser, client_id: str, ops: OpsService) -> None:
    """Admins see every client; a client user only its own"""
    if user.role == UserRole.ADMIN.value:
        return
    if user.role == UserRole.CLIENT_USER.value:
        own = await ops.get_client_for_user(user.id)
        if own is not None and own.id == client_id:
            return
    raise HTTPException(status_code=403, detail="Not allowed to access this client")


async def _require_project(client_id: str, ops: OpsService):
    await ops.get_client(client_id)
    project = await ops.get_dashboard_project(client_id)
    if project is None:
        raise HTTPException(status_code=404, detail=f"No dashboard project for client {client_id}")
    return project


# --- Dashboard project ---

@router.get("/{client_id}")
async def get_dashboard(
    client_id: str,
    user: CurrentUser = Depends(get_current_user),
    ops: OpsService = Depends(get_ops),
):
    await _check_client_access(user, client_id, ops)
    project = await _require_project(client_id, ops)
    return project.to_dict()


@router.post("/{client_id}", status_code=201)
async def create_dashboard(
    client_id: str,
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    project = await ops.ensure_dashboard_project(client_id, actor=user.as_actor())
    return project.to_dict()


@router.put("/{client_id}/config")
async def save_config(
    client_id: str,
    body: ConfigSave,
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    project = await ops.save_dashboard_config(
        client_id,
        body.config,
        actor=user.as_actor(),
        template_key=body.template_key,
        data_source_type=body.data_source_type,
    )
    return project.to_dict()


@router.post("/{client_id}/advance")
async def advance(
    client_id: str,
    body: AdvanceRequest,
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    project = await ops.advance_dashboard(client_id, body.status, actor=user.as_actor())
    return project.to_dict()


@router.post("/{client_id}/reset")
async def reset(
    client_id: str,
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    project = await ops.reset_dashboard(client_id, actor=user.as_actor())
    return project.to_dict()


@router.post("/{client_id}/insights")
async def insights(
    client_id: str,
    body: InsightsRequest,
    user: CurrentUser = Depends(get_current_user),
    ops: OpsService = Depends(get_ops),
):
    """Period-over-period change report over records mapped by the stored column mapping"""
    await _check_client_access(user, client_id, ops)
    project = await _require_project(client_id, ops)
    mapping = project.column_mapping
    with traced("dashboard.insights", client_id=client_id, records=len(body.records)):
        rows = normalize_rows(body.records, mapping)
        report = detect_changes(rows, body.period_days, metric_label=mapping.get("metric", "value"))
    return report.to_dict()


# --- AI conversation log ---

@router.get("/{client_id}/threads")
async def list_threads(
    client_id: str,
    user: CurrentUser = Depends(get_current_user),
    ops: OpsService = Depends(get_ops),
):
    await _check_client_access(user, client_id, ops)
    return [t.to_dict() for t in await ops.list_ai_threads(client_id)]


@router.post("/{client_id}/threads", status_code=201)
async def create_thread(
    client_id: str,
    body: ThreadCreate,
    user: CurrentUser = Depends(get_current_user),
    ops: OpsService = Depends(get_ops),
):
    await _check_client_access(user, client_id, ops)
    project = await ops.get_dashboard_project(client_id)
    thread = await ops.create_ai_thread(
        client_id, body.title, actor=user.as_actor(), project_id=project.id if project else None
    )
    return thread.to_dict()


async def _thread_for_client(client_id: str, thread_id: str, ops: OpsService):
    threads = await ops.list_ai_threads(client_id)
    thread = next((t for t in threads if t.id == thread_id), None)
    if thread is None:
        raise HTTPException(status_code=404, detail=f"AIThread not found: {thread_id}")
    return thread


@router.get("/{client_id}/threads/{thread_id}/messages")
async def list_messages(
    client_id: str,
    thread_id: str,
    user: CurrentUser = Depends(get_current_user),
    ops: OpsService = Depends(get_ops),
):
    await _check_client_access(user, client_id, ops)
    await _thread_for_client(client_id, thread_id, ops)
    return [m.to_dict() for m in await ops.list_ai_messages(thread_id)]


@router.post("/{client_id}/threads/{thread_id}/messages", status_code=201)
async def add_message(
    client_id: str,
    thread_id: str,
    body: MessageCreate,
    user: CurrentUser = Depends(get_current_user),
    ops: OpsService = Depends(get_ops),
):
    await _check_client_access(user, client_id, ops)
    await _thread_for_client(client_id, thread_id, ops)
    message = await ops.add_ai_message(thread_id, body.role, body.content, actor=user.as_actor())
    return message.to_dict()
