from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import AuditEvent

# bookkeeping columns that change on every write
_NOISE = frozenset({"updated_at"})


def _encode(v: Optional[dict[str, Any]]) -> Optional[str]:
    return None if v is None else json.dumps(v, sort_keys=True, default=str)


def changed_fields(before: dict[str, Any], after: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Reduce two snapshots to the keys whose values differ."""
    keys = sorted(k for k in set(before) | set(after) if k not in _NOISE and before.get(k) != after.get(k))
    return {k: before.get(k) for k in keys}, {k: after.get(k) for k in keys}


def audit_write(
    db: Session,
    *,
    actor_user_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id: Any,
    before: Optional[dict[str, Any]] = None,
    after: Optional[dict[str, Any]] = None,
) -> AuditEvent:
    """
    Record one coordinator mutation.

    Creates store ``after``, deletes store ``before``, updates store only the
    changed fields on both sides. The row is added to the session but never
    committed here; it commits or rolls back with the caller's transaction.
    """
    if before is not None and after is not None:
        before, after = changed_fields(before, after)

    row = AuditEvent(
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        before_json=_encode(before),
        after_json=_encode(after),
        created_at=datetime.utcnow(),
    )
    db.add(row)
    return row


def audit_trail(db: Session, entity_type: str, entity_id: Any) -> list[dict[str, Any]]:
    rows = db.scalars(
        select(AuditEvent)
        .where(AuditEvent.entity_type == entity_type, AuditEvent.entity_id == str(entity_id))
        .order_by(AuditEvent.id)
    ).all()
    return [
        {
            "action": r.action,
            "actor_user_id": r.actor_user_id,
            "before": json.loads(r.before_json) if r.before_json else None,
            "after": json.loads(r.after_json) if r.after_json else None,
            "created_at": r.created_at,
        }
        for r in rows
    ]
