from __future__ import annotations

import json

from sqlalchemy import Integer, ForeignKey, String, Text, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from formdesk.db.base import Base


FIELD_TYPES = ("text", "textarea", "email", "phone", "number", "date", "select", "radio", "checkbox", "database")


class FormField(Base):
    __tablename__ = "form_fields"
    __table_args__ = (UniqueConstraint("form_id", "field_name", name="uq_form_field_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    form_id: Mapped[int] = mapped_column(ForeignKey("forms.id"), index=True)

    # Stable machine name (phone/email/uni/form-code/...). Duplicate keys and lookups join on it.
    field_name: Mapped[str] = mapped_column(String(120), index=True)
    field_label: Mapped[str] = mapped_column(String(255), default="")
    field_type: Mapped[str] = mapped_column(String(30), default="text")

    # JSON text. For "database" fields: {"source": "entity" | "user" | "uni_mapping"}
    field_options: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_required: Mapped[bool] = mapped_column(Boolean, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    form = relationship("Form", back_populates="fields")

    def options(self) -> dict:
        try:
            v = json.loads(self.field_options or "{}")
        except ValueError:
            return {}
        return v if isinstance(v, dict) else {}
