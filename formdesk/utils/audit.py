from __future__ import annotations

import json
from typing import Any

from sqlalchemy.orm import Session

from formdesk.db.models.audit_log import AuditLog


def _dump(v: Any) -> str:
    if v is None:
        return ""
    try:
        return json.dumps(v, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(v)


def add_audit_log(
    db: Session,
    *,
    actor_id: int,
    action: str,
    entity: str,
    entity_id: int,
    before: Any = None,
    after: Any = None,
    comment: str = "",
):
    """Add an audit record to the current transaction (caller commits)."""
    db.add(
        AuditLog(
            actor_id=int(actor_id),
            action=(action or "").strip().lower(),
            entity=(entity or "").strip().lower(),
            entity_id=int(entity_id),
            before_json=_dump(before),
            after_json=_dump(after),
            comment=(comment or "").strip(),
        )
    )
