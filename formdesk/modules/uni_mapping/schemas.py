from __future__ import annotations

from pydantic import BaseModel, Field


class UniMappingIn(BaseModel):
    uni_name: str = Field(min_length=1, max_length=255)
    entity_id: int


class UniMappingUpdate(BaseModel):
    uni_name: str | None = None
    entity_id: int | None = None
