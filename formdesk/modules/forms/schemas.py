from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class FieldIn(BaseModel):
    field_name: str = Field(min_length=1, max_length=120)
    field_label: str = ""
    field_type: str = "text"
    field_options: dict[str, Any] | None = None
    is_required: bool = False
    sort_order: int | None = None


class FormIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    code: str = Field(min_length=1, max_length=120)
    fields: list[FieldIn] = []


class FormUpdate(BaseModel):
    name: str | None = None
    code: str | None = None


class DuplicateSettingsIn(BaseModel):
    field_ids: list[int] = []


class FieldUpdate(BaseModel):
    field_name: str | None = None
    field_label: str | None = None
    field_type: str | None = None
    field_options: dict[str, Any] | None = None
    is_required: bool | None = None
    sort_order: int | None = None


class FieldOrder(BaseModel):
    id: int
    sort_order: int


class FieldReorderIn(BaseModel):
    field_orders: list[FieldOrder]
