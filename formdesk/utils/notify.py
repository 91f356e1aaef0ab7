from __future__ import annotations

import json
from typing import Any

from sqlalchemy import event
from sqlalchemy.orm import Session

from formdesk.db.models.notification import Notification
from formdesk.db.models.user import Role, User
from formdesk.utils.badges import invalidate_badge

# user ids whose cached unread count goes stale once the session commits
_STALE_BADGES = "formdesk.stale_badges"


def notify(
    db: Session,
    user_id: int,
    message: str,
    *,
    title: str = "",
    type: str = "info",
    data: dict[str, Any] | None = None,
):
    """Create an in-app notification (unread).

    Note: Caller should commit the DB session. The recipient's badge cache
    is cleared after that commit, and left alone if the session rolls back.
    """
    n = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message[:500],
        data_json=json.dumps(data or {}, default=str),
        is_read=False,
    )
    db.add(n)
    db.info.setdefault(_STALE_BADGES, set()).add(user_id)


def notify_admins(db: Session, message: str, **kwargs) -> int:
    admins = db.query(User).filter(User.role == Role.ADMIN, User.is_active == True).all()  # noqa: E712
    for a in admins:
        notify(db, a.id, message, **kwargs)
    return len(admins)


@event.listens_for(Session, "after_commit")
def _clear_badges_after_commit(session: Session) -> None:
    for user_id in sorted(session.info.pop(_STALE_BADGES, ())):
        invalidate_badge(user_id)


@event.listens_for(Session, "after_rollback")
def _drop_badges_after_rollback(session: Session) -> None:
    session.info.pop(_STALE_BADGES, None)
