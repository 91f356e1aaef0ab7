from __future__ import annotations

from pydantic import BaseModel, Field


UTM_FIELD_NAMES = ("utm_campaign", "utm_medium", "utm_source", "utm_content", "utm_id")


class BulkDeleteIn(BaseModel):
    submission_ids: list[int] = Field(min_length=1)


class MoveIn(BaseModel):
    submission_ids: list[int] = Field(min_length=1)
    target_form_id: int


class BulkEditUtmIn(BaseModel):
    submission_ids: list[int] = Field(min_length=1)
    # utm field name -> new value; other keys are ignored
    updates: dict[str, str]


class EditFieldIn(BaseModel):
    field_name: str = Field(min_length=1)
    value: str | None = None
