# routers/audit.py — Read-only audit trail and admin overview
from typing import Optional

from fastapi import APIRouter, Depends, Query

from auth import CurrentUser, get_ops, require_admin
from audit import AuditLogger
from operations import OpsService

router = APIRouter(prefix="/api/v1/audit", tags=["Audit"])


@router.get("")
async def list_audit_logs(
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    actor_user_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    limit: int = Query(default=100, ge=1, le=1000),
    include_diff: bool = Query(default=False),
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    """Newest-first audit entries"""
    entries = await ops.list_audit_logs(
        limit=limit,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        action=action,
    )
    items = []
    for entry in entries:
        data = entry.to_dict()
        if include_diff:
            data["diff"] = {k: list(v) for k, v in AuditLogger.diff(entry).items()}
        items.append(data)
    return items


@router.get("/stats")
async def admin_stats(
    user: CurrentUser = Depends(require_admin),
    ops: OpsService = Depends(get_ops),
):
    return await ops.admin_stats()
