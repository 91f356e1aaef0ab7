from __future__ import annotations

from fastapi import HTTPException

from formdesk.db.models.user import User, Role


def require(condition: bool, msg: str = "Forbidden", status_code: int = 403) -> None:
    """Small helper used across routers.

    Defaults to 403 (permission denied). For validation errors, not-found or
    conflict cases, pass `status_code=400/404/409`.
    """
    if not condition:
        raise HTTPException(status_code=status_code, detail=msg)


def is_admin(user: User) -> bool:
    return user.role == Role.ADMIN


def is_lead(user: User) -> bool:
    return user.role == Role.LEAD


def can_manage_forms(user: User) -> bool:
    return is_admin(user)


def can_manage_masterdata(user: User) -> bool:
    # entities + uni mapping
    return is_admin(user)


def can_allocate(user: User) -> bool:
    """Direct allocation and approving/rejecting requests."""
    return is_admin(user)


def can_request_allocation(user: User) -> bool:
    return is_lead(user)


def can_view_allocation_requests(user: User) -> bool:
    return user.role in (Role.ADMIN, Role.LEAD)


def can_manage_users(user: User) -> bool:
    return is_admin(user)
