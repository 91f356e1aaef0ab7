from __future__ import annotations

from pydantic import BaseModel


class AllocateEntityIn(BaseModel):
    entity_id: int


class AllocationRequestIn(BaseModel):
    submission_id: int
    requested_entity_id: int


class AllocationDecisionIn(BaseModel):
    action: str  # approve | reject
    admin_notes: str | None = None
