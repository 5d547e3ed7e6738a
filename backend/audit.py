"""
OpsDesk — Audit Logger

Append-only trail of every mutation. Entries are inserted at the head of the
`audit_logs` collection, so the collection reads most-recent-first in causal
(insertion) order. Each entry carries deep before/after snapshots of the
affected entity, enough to rebuild the change without any other state.
"""

import copy
from typing import Any, Dict, List, Optional, Tuple

from entities import Actor, AuditLog, Snapshot
from models import AuditAction, utcnow


class AuditLogger:
    """Writes and reads audit entries on a Snapshot"""

    def append(
        self,
        snapshot: Snapshot,
        actor: Actor,
        action: AuditAction,
        entity_type: str,
        entity_id: str,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        entry = AuditLog(
            actor_user_id=actor.user_id,
            actor_role=actor.role,
            action=action,
            entity_type=getattr(entity_type, "value", entity_type),
            entity_id=entity_id,
            before=copy.deepcopy(before),
            after=copy.deepcopy(after),
            created_at=utcnow(),
        )
        snapshot.audit_logs.insert(0, entry)
        return entry

    @staticmethod
    def entries(
        snapshot: Snapshot,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        actor_user_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditLog]:
        """Filtered view of the trail, newest first"""
        entity_type = getattr(entity_type, "value", entity_type)
        action = getattr(action, "value", action)
        results = []
        for entry in snapshot.audit_logs:
            if entity_type and entry.entity_type != entity_type:
                continue
            if entity_id and entry.entity_id != entity_id:
                continue
            if actor_user_id and entry.actor_user_id != actor_user_id:
                continue
            if action and entry.action.value != action:
                continue
            results.append(entry)
            if len(results) >= limit:
                break
        return results

    @staticmethod
    def diff(entry: AuditLog) -> Dict[str, Tuple[Any, Any]]:
        """Field-level changes recorded by an entry: {field: (old, new)}"""
        before = entry.before or {}
        after = entry.after or {}
        changes = {}
        for key in sorted(set(before) | set(after)):
            old, new = before.get(key), after.get(key)
            if old != new:
                changes[key] = (old, new)
        return changes
