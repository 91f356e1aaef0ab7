from __future__ import annotations

import logging

import redis
from sqlalchemy.orm import Session

from formdesk.core.redis import get_redis
from formdesk.db.models.notification import Notification
from formdesk.db.models.user import User

logger = logging.getLogger("formdesk.redis")

_BADGE_TTL_SECONDS = 15


def _key(user_id: int) -> str:
    return f"badge:{user_id}"


def get_badge_count(db: Session, user: User) -> int:
    """Unread notification count (cached with Redis TTL if available)."""
    r = get_redis()
    if r is not None:
        try:
            v = r.get(_key(user.id))
            if v is not None:
                return int(v)
        except redis.RedisError as exc:
            logger.warning("badge cache read failed: %s", exc)

    cnt = db.query(Notification).filter(Notification.user_id == user.id, Notification.is_read == False).count()  # noqa: E712

    if r is not None:
        try:
            r.setex(_key(user.id), _BADGE_TTL_SECONDS, int(cnt))
        except redis.RedisError as exc:
            logger.warning("badge cache write failed: %s", exc)
    return int(cnt)


def invalidate_badge(user_id: int) -> None:
    r = get_redis()
    if r is None:
        return
    try:
        r.delete(_key(user_id))
    except redis.RedisError as exc:
        logger.warning("badge cache invalidate failed: %s", exc)
