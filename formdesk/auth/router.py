from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Form
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from formdesk.auth.deps import SESSION_COOKIE, get_current_user
from formdesk.core.config import settings
from formdesk.core.security import check_password, issue_session
from formdesk.db.models.user import User
from formdesk.db.session import get_db
from formdesk.utils.tx import commit_or_500

logger = logging.getLogger("formdesk.auth")

router = APIRouter(prefix="/auth", tags=["auth"])


def _user_out(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role.value,
        "role_label": user.role_label,
    }


@router.post("/login")
def login(
    email: str = Form(...),
    password: str = Form(...),
    db: Session = Depends(get_db),
):
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    ok, new_hash = check_password(password, user.password_hash) if user else (False, None)
    if not ok:
        return JSONResponse(status_code=400, content={"detail": "Invalid email or password"})

    if not user.is_active:
        return JSONResponse(status_code=403, content={"detail": "This account is disabled"})

    if new_hash:
        user.password_hash = new_hash
        commit_or_500(db, logger, "upgrade password hash")

    resp = JSONResponse(content={"user": _user_out(user)})
    resp.set_cookie(
        SESSION_COOKIE,
        issue_session(user.id),
        httponly=True,
        samesite=settings.COOKIE_SAMESITE,
        secure=settings.COOKIE_SECURE,
        max_age=settings.SESSION_MAX_AGE_SECONDS,
    )
    return resp


@router.post("/logout")
def logout():
    resp = JSONResponse(content={"success": True})
    resp.delete_cookie(SESSION_COOKIE)
    return resp


@router.get("/me")
def me(user=Depends(get_current_user)):
    return {"user": _user_out(user)}
