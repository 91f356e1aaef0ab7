from __future__ import annotations

from pydantic import BaseModel, Field


class UserIn(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    email: str = Field(min_length=3, max_length=190)
    role: str = "member"
    password: str | None = None  # generated when omitted


class UserUpdate(BaseModel):
    name: str | None = None
    email: str | None = None
    role: str | None = None
    new_password: str | None = None


class ResetPasswordIn(BaseModel):
    user_id: int
    new_password: str | None = None
