from __future__ import annotations

from pydantic import BaseModel, Field


class EntityIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    type: str = "local"


class EntityUpdate(BaseModel):
    name: str | None = None
    type: str | None = None
