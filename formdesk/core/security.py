"""Passwords and the signed `sid` session cookie.

The cookie carries only `{"v": SESSION_VERSION, "uid": <user id>}`; role and
active state are re-read from the database on every request, so demoting or
disabling an account takes effect immediately. Bumping SESSION_VERSION
invalidates every issued cookie.
"""
from __future__ import annotations

import logging
import secrets
import string

from itsdangerous import BadSignature, URLSafeTimedSerializer
from passlib.context import CryptContext

from formdesk.core.config import settings

logger = logging.getLogger("formdesk.auth")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

SESSION_VERSION = 1
_sessions = URLSafeTimedSerializer(settings.SECRET_KEY, salt="formdesk.session")

MIN_PASSWORD_LENGTH = 6
GENERATED_PASSWORD_LENGTH = 12
_PASSWORD_ALPHABET = string.ascii_letters + string.digits


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def check_password(password: str, password_hash: str) -> tuple[bool, str | None]:
    """(matches, replacement hash). The replacement is set when the stored
    hash uses outdated parameters and should be written back."""
    try:
        return pwd_context.verify_and_update(password, password_hash)
    except ValueError:
        logger.warning("unrecognized password hash format")
        return False, None


def generate_password(length: int = GENERATED_PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


def issue_session(user_id: int) -> str:
    return _sessions.dumps({"v": SESSION_VERSION, "uid": user_id})


def read_session(token: str, max_age_seconds: int | None = None) -> int | None:
    """User id of a valid cookie, None for forged, expired or outdated ones."""
    try:
        payload = _sessions.loads(token, max_age=max_age_seconds or settings.SESSION_MAX_AGE_SECONDS)
    except BadSignature:  # includes SignatureExpired
        return None
    if not isinstance(payload, dict) or payload.get("v") != SESSION_VERSION:
        return None
    uid = payload.get("uid")
    return uid if isinstance(uid, int) and not isinstance(uid, bool) else None
