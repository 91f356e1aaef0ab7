from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from formdesk.auth.deps import get_current_user
from formdesk.core.rbac import can_manage_users, require
from formdesk.core.security import MIN_PASSWORD_LENGTH, generate_password, hash_password
from formdesk.db.models.user import Role, User
from formdesk.db.session import get_db
from formdesk.modules.users.schemas import ResetPasswordIn, UserIn, UserUpdate
from formdesk.utils.audit import add_audit_log
from formdesk.utils.tx import commit_or_500

logger = logging.getLogger("formdesk.users")

router = APIRouter(prefix="/users", tags=["users"])


def user_out(u: User) -> dict:
    return {
        "id": u.id,
        "name": u.name,
        "email": u.email,
        "role": u.role.value,
        "role_label": u.role_label,
        "is_active": bool(u.is_active),
    }


def _parse_role(value: str) -> Role:
    try:
        return Role(value.strip().lower())
    except ValueError:
        require(False, f"Role must be one of: {', '.join(r.value for r in Role)}", 400)


def _clean_email(value: str) -> str:
    email = value.strip().lower()
    require("@" in email and not email.startswith("@") and not email.endswith("@"), "Invalid email", 400)
    return email


def _email_taken(db: Session, email: str, exclude_id: int | None = None) -> bool:
    q = db.query(User.id).filter(User.email == email)
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    return q.first() is not None


def _password_or_generated(value: str | None) -> tuple[str, bool]:
    pw = (value or "").strip()
    if len(pw) >= MIN_PASSWORD_LENGTH:
        return pw, False
    return generate_password(), True


def _get_user_or_404(db: Session, user_id: int) -> User:
    u = db.get(User, user_id)
    require(u is not None, "User not found", 404)
    return u


@router.get("")
def list_users(
    q: str = "",
    limit: int = Query(50, ge=1, le=100),
    cursor: int | None = None,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    """Newest first; pass `next_cursor` back as `cursor` for the next page."""
    require(can_manage_users(user))
    query = db.query(User)
    if q.strip():
        like = f"%{q.strip()}%"
        query = query.filter(or_(User.name.ilike(like), User.email.ilike(like)))
    if cursor is not None:
        query = query.filter(User.id < cursor)

    rows = query.order_by(User.id.desc()).limit(limit + 1).all()
    page = rows[:limit]
    return {
        "items": [user_out(u) for u in page],
        "next_cursor": page[-1].id if len(rows) > limit else None,
    }


@router.post("", status_code=201)
def create_user(data: UserIn, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_users(user))
    name = data.name.strip()
    require(bool(name), "Name cannot be empty", 400)
    email = _clean_email(data.email)
    role = _parse_role(data.role)
    if data.password is not None and data.password.strip():
        require(
            len(data.password.strip()) >= MIN_PASSWORD_LENGTH,
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            400,
        )
    require(not _email_taken(db, email), "A user with this email already exists", 409)

    password, generated = _password_or_generated(data.password)
    u = User(name=name, email=email, password_hash=hash_password(password), role=role, is_active=True)
    db.add(u)
    db.flush()
    add_audit_log(db, actor_id=user.id, action="create", entity="user", entity_id=u.id, after=user_out(u))
    commit_or_500(db, logger, "create user")
    logger.info("user created id=%s role=%s by=%s", u.id, role.value, user.id)
    return {"user": user_out(u), "generated_password": password if generated else None}


@router.put("/{user_id}")
def update_user(user_id: int, data: UserUpdate, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_users(user))
    u = _get_user_or_404(db, user_id)

    name = data.name.strip() if data.name is not None else None
    if name is not None:
        require(bool(name), "Name cannot be empty", 400)
    email = _clean_email(data.email) if data.email is not None else None
    if email is not None:
        require(not _email_taken(db, email, exclude_id=u.id), "A user with this email already exists", 409)
    role = _parse_role(data.role) if data.role is not None else None
    if role is not None and u.id == user.id:
        require(role == u.role, "You cannot change your own role", 400)
    new_password = (data.new_password or "").strip()
    if new_password:
        require(
            len(new_password) >= MIN_PASSWORD_LENGTH,
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            400,
        )

    before = user_out(u)
    if name is not None:
        u.name = name
    if email is not None:
        u.email = email
    if role is not None:
        u.role = role
    if new_password:
        u.password_hash = hash_password(new_password)

    add_audit_log(
        db,
        actor_id=user.id,
        action="update",
        entity="user",
        entity_id=u.id,
        before=before,
        after=user_out(u),
        comment="password changed" if new_password else "",
    )
    commit_or_500(db, logger, "update user")
    return {"user": user_out(u)}


@router.post("/{user_id}/toggle-active")
def toggle_active(user_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_users(user))
    u = _get_user_or_404(db, user_id)
    require(u.id != user.id, "You cannot disable your own account", 400)

    u.is_active = not bool(u.is_active)
    add_audit_log(
        db,
        actor_id=user.id,
        action="activate" if u.is_active else "deactivate",
        entity="user",
        entity_id=u.id,
    )
    commit_or_500(db, logger, "toggle user")
    return {"user": user_out(u)}


@router.post("/reset-password")
def reset_password(data: ResetPasswordIn, db: Session = Depends(get_db), user=Depends(get_current_user)):
    """Set a new password; anything shorter than the minimum gets a generated one."""
    require(can_manage_users(user))
    u = _get_user_or_404(db, data.user_id)

    password, generated = _password_or_generated(data.new_password)
    u.password_hash = hash_password(password)
    add_audit_log(db, actor_id=user.id, action="reset_password", entity="user", entity_id=u.id)
    commit_or_500(db, logger, "reset password")
    return {"success": True, "generated_password": password if generated else None}
