from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from formdesk.auth.deps import get_current_user
from formdesk.core.rbac import require
from formdesk.db.models.notification import Notification
from formdesk.db.session import get_db
from formdesk.utils.badges import get_badge_count, invalidate_badge

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _out(n: Notification) -> dict:
    try:
        data = json.loads(n.data_json or "{}")
    except ValueError:
        data = {}
    return {
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "data": data,
        "is_read": bool(n.is_read),
        "created_at": n.created_at,
    }


@router.get("")
def list_notifications(
    unread_only: bool = False,
    limit: int = Query(100, ge=1, le=300),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    # Users only ever see their own notifications.
    q = db.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        q = q.filter(Notification.is_read == False)  # noqa: E712
    notes = q.order_by(Notification.id.desc()).limit(limit).all()
    return {"notifications": [_out(n) for n in notes], "unread": get_badge_count(db, user)}


@router.get("/unread-count")
def unread_count(db: Session = Depends(get_db), user=Depends(get_current_user)):
    return {"unread": get_badge_count(db, user)}


@router.post("/{notification_id}/read")
def mark_read(notification_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    n = db.get(Notification, notification_id)
    require(n is not None and n.user_id == user.id, "Notification not found", 404)
    n.is_read = True
    db.commit()
    invalidate_badge(user.id)
    return {"success": True}


@router.post("/read-all")
def mark_all_read(db: Session = Depends(get_db), user=Depends(get_current_user)):
    n = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.is_read == False)  # noqa: E712
        .update({"is_read": True}, synchronize_session=False)
    )
    db.commit()
    invalidate_badge(user.id)
    return {"success": True, "updated": int(n)}
